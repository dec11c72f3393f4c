"""Error taxonomy for the model store."""

from __future__ import annotations

from pathlib import Path

NOT_FOUND_MESSAGE = (
    "Model folder may not exist. Download or import it, or select a different "
    "model if this one fails to load."
)


class ModelStoreError(RuntimeError):
    """Base class for every error raised by the model store."""


class NotFound(ModelStoreError):
    """Resolution could not find a valid model root for a selection."""

    def __init__(self, name: str, message: str = NOT_FOUND_MESSAGE):
        super().__init__(f"{message} ({name})")
        self.name = name


class TransferFailed(ModelStoreError):
    """Network, extraction or remote-fetch failure with a readable cause."""

    def __init__(self, cause: str):
        super().__init__(cause)
        self.cause = cause


class TransferCancelled(ModelStoreError):
    """Raised inside a transport when its job has been cancelled."""


class LoadFailed(ModelStoreError):
    """Pipeline construction or resource loading failed."""

    def __init__(self, cause: str, original: BaseException | None = None):
        super().__init__(cause)
        self.cause = cause
        self.original = original


class PartialCleanupFailed(ModelStoreError):
    """A best-effort deletion did not succeed. Logged, never escalated."""

    def __init__(self, path: Path, cause: str):
        super().__init__(f"Could not remove {path}: {cause}")
        self.path = path
        self.cause = cause


__all__ = [
    "ModelStoreError",
    "NotFound",
    "TransferFailed",
    "TransferCancelled",
    "LoadFailed",
    "PartialCleanupFailed",
]
