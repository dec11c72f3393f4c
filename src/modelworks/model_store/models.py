"""Dataclasses describing discovered models and in-flight transfers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Tuple


class VariantTag(str, Enum):
    """Model format family inferred from directory structure."""

    ACCELERATED = "accelerated-runtime"
    VARIANT_C = "variant-c"
    VARIANT_B = "variant-b"
    LEGACY = "legacy"
    UNRECOGNIZED = "unrecognized"


class TransferState(str, Enum):
    DOWNLOADING = "downloading"
    UNZIPPING = "unzipping"
    CLONING = "cloning"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {TransferState.FINISHED, TransferState.FAILED, TransferState.CANCELLED}
)


def stable_model_id(path: Path) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, str(Path(path).absolute())))


@dataclass(frozen=True)
class ModelEntry:
    """A discovered, classified model folder."""

    name: str
    display_name: str
    path: Path
    resource_root: Path
    variant: VariantTag
    size_bytes: int = 0
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            object.__setattr__(self, "id", stable_model_id(self.path))

    @property
    def size_gb(self) -> float:
        return self.size_bytes / 1_000_000_000

    def with_size(self, size_bytes: int) -> "ModelEntry":
        return replace(self, size_bytes=size_bytes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "path": str(self.path),
            "resource_root": str(self.resource_root),
            "variant": self.variant.value,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class ScanResult:
    """Immutable snapshot of the four classified collections."""

    legacy: Tuple[ModelEntry, ...] = ()
    variant_b: Tuple[ModelEntry, ...] = ()
    variant_c: Tuple[ModelEntry, ...] = ()
    accelerated: Tuple[ModelEntry, ...] = ()

    def collections(self) -> dict[VariantTag, Tuple[ModelEntry, ...]]:
        return {
            VariantTag.LEGACY: self.legacy,
            VariantTag.VARIANT_B: self.variant_b,
            VariantTag.VARIANT_C: self.variant_c,
            VariantTag.ACCELERATED: self.accelerated,
        }

    def all_entries(self) -> Iterator[ModelEntry]:
        for entries in self.collections().values():
            yield from entries

    def names(self) -> set[str]:
        return {entry.name for entry in self.all_entries()}

    def find(self, name: str) -> Optional[ModelEntry]:
        for entry in self.all_entries():
            if entry.name == name:
                return entry
        return None

    def with_entry(self, updated: ModelEntry) -> "ScanResult":
        """Return a copy with ``updated`` swapped in at its existing position."""
        attr = _COLLECTION_ATTRS[updated.variant]
        current = getattr(self, attr)
        rebuilt = tuple(updated if e.name == updated.name else e for e in current)
        return replace(self, **{attr: rebuilt})


_COLLECTION_ATTRS = {
    VariantTag.LEGACY: "legacy",
    VariantTag.VARIANT_B: "variant_b",
    VariantTag.VARIANT_C: "variant_c",
    VariantTag.ACCELERATED: "accelerated",
}


@dataclass(frozen=True)
class TransferJob:
    """Read-only projection of an acquisition handed out to observers."""

    id: str
    name: str
    source: str
    state: TransferState
    progress: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "source": self.source,
            "state": self.state.value,
            "progress": self.progress,
            "error": self.error,
        }


@dataclass
class EmergencyStopReport:
    """What an emergency stop did on the caller's thread."""

    cancelled: list[str] = field(default_factory=list)
    cleanup_failures: list[str] = field(default_factory=list)
    background: Optional[object] = None  # concurrent.futures.Future
