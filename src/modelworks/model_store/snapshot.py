"""Snapshot transfer from the Hugging Face Hub, plus cache purging.

The hub keeps content-addressed blobs in its cache and exposes a snapshot
tree of symlinks. We copy that tree into the models root with links
dereferenced, then drop the cache so the device does not keep two copies.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from huggingface_hub import snapshot_download
from tqdm.auto import tqdm

from .config import StoreConfig
from .errors import TransferCancelled, TransferFailed
from .models import TransferState
from .scrub import remove_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferState, float], None]


def repo_id_from_source(source: str) -> str:
    """``https://huggingface.co/org/repo`` -> ``org/repo``."""
    parsed = urlparse(source)
    path = parsed.path if parsed.scheme else source
    return path.strip("/")


def cache_folder_name(repo_id: str) -> str:
    return "models--" + repo_id.replace("/", "--")


def _make_cancellable_progress(
    check_abort: Callable[[], None],
    progress_callback: Callable[[int, int], None],
):
    class _Progress(tqdm):
        def update(self, n=1):
            check_abort()
            result = super().update(n)
            try:
                progress_callback(int(self.n), int(self.total or 0))
            except Exception:  # noqa: BLE001
                logger.debug("Progress callback failed.", exc_info=True)
            return result

        def refresh(self, *args, **kwargs):
            check_abort()
            return super().refresh(*args, **kwargs)

    return _Progress


def _tree_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path, onerror=lambda _err: None):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def purge_hf_cache(locations: Iterable[Path]) -> int:
    """Delete every given cache location entirely. Returns bytes freed."""

    freed = 0
    for location in locations:
        location = Path(location)
        if not location.exists():
            continue
        size = _tree_size(location)
        if remove_path(location) is None:
            freed += size
            logger.info(
                "Purged Hugging Face cache %s (%.1f MB freed)", location, size / 1e6
            )
    return freed


def _remove_repo_cache(repo_id: str, snapshot_path: Path, config: StoreConfig) -> None:
    folder = cache_folder_name(repo_id)
    candidates = []
    # <cache>/models--org--repo/snapshots/<revision>
    if snapshot_path.parent.name == "snapshots":
        candidates.append(snapshot_path.parent.parent)
    roots = list(config.hf_cache_locations)
    if config.hf_cache_dir is not None:
        roots.insert(0, config.hf_cache_dir)
    for root in roots:
        candidates.append(root / folder)
        candidates.append(root / "hub" / folder)
    for candidate in candidates:
        if candidate.name == folder and candidate.exists():
            remove_path(candidate)


def run_snapshot_transfer(
    name: str,
    source: str,
    config: StoreConfig,
    *,
    cancel_event: threading.Event,
    on_progress: ProgressCallback,
) -> Path:
    repo_id = repo_id_from_source(source)
    if not repo_id:
        raise TransferFailed(f"Cannot derive a repository id from {source!r}")
    target = config.model_dir(name)
    created = False

    def _check_abort() -> None:
        if cancel_event.is_set():
            raise TransferCancelled("Transfer cancelled")

    def _copy(src, dst):
        _check_abort()
        return shutil.copy2(src, dst)

    def _report(done: int, total: int) -> None:
        on_progress(TransferState.CLONING, done / total if total else 0.0)

    logger.info("Fetching snapshot %s for %s", repo_id, name)
    on_progress(TransferState.CLONING, 0.0)
    try:
        _check_abort()
        try:
            snapshot_path = Path(
                snapshot_download(
                    repo_id=repo_id,
                    cache_dir=str(config.hf_cache_dir) if config.hf_cache_dir else None,
                    tqdm_class=_make_cancellable_progress(_check_abort, _report),
                )
            )
        except TransferCancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            _check_abort()
            raise TransferFailed(f"Snapshot fetch failed for {repo_id}: {exc}") from exc

        _check_abort()
        if target.exists():
            raise TransferFailed(f"{target} is already installed")
        created = True
        try:
            shutil.copytree(
                snapshot_path, target, symlinks=False, copy_function=_copy
            )
        except (OSError, shutil.Error) as exc:
            raise TransferFailed(f"Could not copy snapshot into place: {exc}") from exc
        _check_abort()
        _remove_repo_cache(repo_id, snapshot_path, config)
    except BaseException:
        if created:
            remove_path(target)
        raise

    purge_hf_cache(config.hf_cache_locations)
    logger.info("Installed %s from %s into %s", name, repo_id, target)
    return target


__all__ = [
    "cache_folder_name",
    "purge_hf_cache",
    "repo_id_from_source",
    "run_snapshot_transfer",
]
