"""Best-effort reclamation of disk and memory.

Nothing here raises. Disk failures come back as ``PartialCleanupFailed``
values so callers can report them; memory scrub failures are only logged.
"""

from __future__ import annotations

import gc
import logging
import shutil
from pathlib import Path
from typing import List, Optional

import psutil

from .errors import PartialCleanupFailed

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def remove_path(path: Path) -> Optional[PartialCleanupFailed]:
    """Delete a file or directory tree if present."""

    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            return None
    except OSError as exc:
        failure = PartialCleanupFailed(path, str(exc))
        logger.warning("%s", failure)
        return failure
    logger.debug("Removed %s", path)
    return None


def is_orphan_artifact(path: Path) -> bool:
    name = path.name
    if name.lower().endswith(".zip"):
        return True
    return name.startswith("_") and name.endswith("_extract")


def sweep_orphans(models_root: Path) -> List[PartialCleanupFailed]:
    """Remove leftover ``*.zip`` archives and ``_*_extract`` staging dirs."""

    failures: List[PartialCleanupFailed] = []
    try:
        children = list(Path(models_root).iterdir())
    except OSError as exc:
        logger.warning("Cannot sweep %s: %s", models_root, exc)
        return failures
    for child in children:
        if not is_orphan_artifact(child):
            continue
        logger.info("Sweeping orphan transfer artifact %s", child)
        failure = remove_path(child)
        if failure is not None:
            failures.append(failure)
    return failures


def scrub_budget_mb(min_mb: int, max_mb: int) -> int:
    total_mb = psutil.virtual_memory().total // _MB
    return int(max(min_mb, min(max_mb, total_mb * 3 // 4)))


def scrub_memory(min_mb: int = 256, max_mb: int = 2048, chunk_mb: int = 64) -> int:
    """Touch and release a large block of memory to push stale pages out.

    Returns the number of megabytes that were actually touched.
    """

    touched = 0
    chunks: List[bytearray] = []
    try:
        budget = scrub_budget_mb(min_mb, max_mb)
        step = max(1, int(chunk_mb))
        while touched < budget:
            size = min(step, budget - touched)
            try:
                block = bytearray(size * _MB)
            except MemoryError:
                logger.info("Memory scrub stopped early at %d MB", touched)
                break
            # One write per page is enough to force allocation
            for offset in range(0, len(block), 4096):
                block[offset] = 1
            chunks.append(block)
            touched += size
    except Exception:  # noqa: BLE001
        logger.exception("Memory scrub failed after %d MB", touched)
    finally:
        chunks.clear()
        gc.collect()
    logger.info("Memory scrub touched %d MB", touched)
    return touched


__all__ = [
    "remove_path",
    "sweep_orphans",
    "scrub_memory",
    "scrub_budget_mb",
    "is_orphan_artifact",
]
