"""Infer a model's variant from its on-disk layout.

No manifest inside a model folder is trusted. Every signal comes from
directory structure: Hugging Face style ``config.json`` files for the
accelerated runtime, and ``.mlmodelc`` bundles whose names hint at which
compiled-graph family the model belongs to. A single folder may hide its
real payload one level down or inside a ``Resources`` directory, so each
predicate is tried against several candidate roots.

Nothing in this module raises: an unreadable directory simply contributes
no signal.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .models import VariantTag

logger = logging.getLogger(__name__)

RESOURCE_ALIASES = frozenset({"resources", "resource", "recources", "recource"})
COMPILED_SUFFIX = ".mlmodelc"

_DISPLAY_SUFFIXES = re.compile(r"\s*\((?:MLX|CoreML|Core ML)\)", re.IGNORECASE)
_SELECTION_SUFFIXES = (" (Core ML)", " (SD3+)", " (SD-SDXL)", " (MLX)")

# resolve_resource_root scoring
_TOKENIZER_BONUS = 50
_COMPONENT_BONUS = 10
_SAFETY_PENALTY = -5


@dataclass(frozen=True)
class Classification:
    variant: VariantTag
    root: Optional[Path] = None

    @property
    def recognized(self) -> bool:
        return self.variant is not VariantTag.UNRECOGNIZED


def _list_dir(path: Path) -> List[Path]:
    """Visible children sorted by name; AppleDouble ``._*`` files are skipped."""
    try:
        children = [p for p in path.iterdir() if not p.name.startswith(".")]
    except OSError:
        return []
    return sorted(children, key=lambda p: p.name)


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError:
        return False


def _is_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


def _resource_children(folder: Path) -> List[Path]:
    return [
        child
        for child in _list_dir(folder)
        if child.name.lower() in RESOURCE_ALIASES and _is_dir(child)
    ]


def candidate_roots(folder: Path) -> List[Path]:
    """Places a model's real payload may live under ``folder``.

    Order: the folder, its resources-alias children, then every visible
    first-level subdirectory followed by that subdirectory's own
    resources-alias children. Duplicates are dropped keeping first position.
    """

    folder = Path(folder)
    ordered: List[Path] = [folder]
    ordered.extend(_resource_children(folder))
    for child in _list_dir(folder):
        if child.name.startswith(".") or not _is_dir(child):
            continue
        ordered.append(child)
        ordered.extend(_resource_children(child))

    seen: set[Path] = set()
    unique: List[Path] = []
    for candidate in ordered:
        if candidate in seen:
            continue
        seen.add(candidate)
        unique.append(candidate)
    return unique


def _is_component(path: Path, needle: str) -> bool:
    name = path.name.lower()
    return name.endswith(COMPILED_SUFFIX) and needle.lower() in name


def has_component(root: Path, needle: str) -> bool:
    """Shallow check: an immediate child of ``root`` matches ``needle``."""
    return any(_is_component(child, needle) for child in _list_dir(root))


def has_component_deep(root: Path, needle: str) -> bool:
    """Recursive check over every entry below ``root``."""

    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda _err: None):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for name in dirnames + filenames:
            if name.startswith("."):
                continue
            if _is_component(Path(dirpath) / name, needle):
                return True
    return False


def is_accelerated_root(root: Path) -> bool:
    if not _is_file(root / "unet" / "config.json"):
        return False
    return _is_file(root / "text_encoder" / "config.json") or _is_file(
        root / "text_encoder_2" / "config.json"
    )


def is_variant_c_root(root: Path) -> bool:
    return has_component_deep(root, "MultiModalDiffusionTransformer")


def is_variant_b_root(root: Path) -> bool:
    # Shallow only: a nested TextEncoder2 must not promote the folder
    return has_component(root, "TextEncoder2")


def is_legacy_root(root: Path) -> bool:
    signals = sum(
        1 for needle in ("VAE", "TextEncoder", "Unet") if has_component(root, needle)
    )
    return signals >= 2


_PRECEDENCE: Sequence[tuple[VariantTag, Callable[[Path], bool]]] = (
    (VariantTag.ACCELERATED, is_accelerated_root),
    (VariantTag.VARIANT_C, is_variant_c_root),
    (VariantTag.VARIANT_B, is_variant_b_root),
    (VariantTag.LEGACY, is_legacy_root),
)


def classify_roots(roots: Iterable[Path]) -> Classification:
    """Evaluate predicates in precedence order; first matching root wins."""

    roots = list(roots)
    for variant, predicate in _PRECEDENCE:
        for root in roots:
            if predicate(root):
                return Classification(variant, root)
    return Classification(VariantTag.UNRECOGNIZED)


def classify(roots: Iterable[Path]) -> VariantTag:
    return classify_roots(roots).variant


def classify_folder(folder: Path) -> Classification:
    result = classify_roots(candidate_roots(folder))
    logger.debug("Classified %s as %s", folder, result.variant.value)
    return result


def _has_vae_pair(root: Path) -> bool:
    return (
        _is_file(root / "model_index.json")
        and (root / "VAEEncoder.mlmodelc").exists()
        and (root / "VAEDecoder.mlmodelc").exists()
    )


def is_compiled_graph_root(root: Path) -> bool:
    return (
        is_variant_c_root(root)
        or is_variant_b_root(root)
        or is_legacy_root(root)
        or _has_vae_pair(root)
    )


def _score(root: Path) -> int:
    score = 0
    if (root / "merges.txt").exists():
        score += _TOKENIZER_BONUS
    if (root / "vocab.json").exists():
        score += _TOKENIZER_BONUS
    for needle in ("TextEncoder", "Unet", "VAE"):
        if has_component(root, needle):
            score += _COMPONENT_BONUS
    if has_component(root, "Safety"):
        score += _SAFETY_PENALTY
    return score


def resolve_resource_root(folder: Path) -> Path:
    """Pick the directory a pipeline should be built from."""

    candidates = candidate_roots(folder)
    for candidate in candidates:
        if is_accelerated_root(candidate):
            return candidate

    best: Optional[Path] = None
    best_score = 0
    for candidate in candidates:
        if not is_compiled_graph_root(candidate):
            continue
        score = _score(candidate)
        if best is None or score > best_score:
            best, best_score = candidate, score

    if best is not None and best_score > 0:
        return best
    return Path(folder)


def is_loadable_root(root: Path) -> bool:
    """Whether a resolved root looks like something a pipeline can load."""

    if _has_vae_pair(root) or is_accelerated_root(root):
        return True
    if root.name.lower().endswith(COMPILED_SUFFIX):
        return True
    for _dirpath, dirnames, filenames in os.walk(root, onerror=lambda _err: None):
        if any(n.lower().endswith(COMPILED_SUFFIX) for n in dirnames + filenames):
            return True
    return False


def clean_display_name(name: str) -> str:
    return _DISPLAY_SUFFIXES.sub("", name).strip()


def strip_selection_suffixes(name: str) -> str:
    stripped = name
    for suffix in _SELECTION_SUFFIXES:
        stripped = stripped.replace(suffix, "")
    return stripped.strip()


__all__ = [
    "Classification",
    "candidate_roots",
    "classify",
    "classify_folder",
    "classify_roots",
    "clean_display_name",
    "is_loadable_root",
    "resolve_resource_root",
    "strip_selection_suffixes",
]
