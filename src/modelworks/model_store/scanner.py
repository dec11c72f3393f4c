"""Two-phase discovery of model folders under the models root.

Phase 1 lists and classifies folders, using cached sizes so the list can be
shown straight away. Phase 2 walks every entry to compute its real allocated
size and republishes entries one at a time as their sizes land.
"""

from __future__ import annotations

import logging
import os
import stat
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

from .classifier import classify_folder, clean_display_name
from .models import ModelEntry, ScanResult, VariantTag
from .notifications import EventBus, MODEL_LIST_CHANGED, MODEL_SIZE_UPDATED
from .preferences import Preferences, SizeCache

logger = logging.getLogger(__name__)

_BYTES_PER_GB = 1_000_000_000


def allocated_bytes(folder: Path) -> int:
    """Sum allocated bytes of every regular file below ``folder``."""

    total = 0
    for dirpath, _dirnames, filenames in os.walk(folder, onerror=lambda _err: None):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            try:
                st = os.lstat(path)
            except OSError:
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            blocks = getattr(st, "st_blocks", None)
            total += blocks * 512 if blocks is not None else st.st_size
    return total


class DirectoryScanner:
    def __init__(
        self,
        models_root: Path,
        size_cache: SizeCache,
        preferences: Preferences,
        *,
        bus: Optional[EventBus] = None,
        executor: Optional[Executor] = None,
    ):
        self.models_root = Path(models_root)
        self.size_cache = size_cache
        self.preferences = preferences
        self.bus = bus or EventBus()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="model-scan"
        )
        self._lock = threading.Lock()
        self._snapshot = ScanResult()
        self._generation = 0
        self._sizes_done: Future = Future()
        self._sizes_done.set_result(None)

    def snapshot(self) -> ScanResult:
        with self._lock:
            return self._snapshot

    def scan(self) -> "Future[ScanResult]":
        """Run a full scan on the worker pool."""
        return self._executor.submit(self.scan_now)

    def scan_now(self) -> ScanResult:
        """Run phase 1 on this thread and schedule the size pass."""

        result = self._discover()
        sizes_done: Future = Future()
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._snapshot = result
            self._sizes_done = sizes_done

        self._validate_selection(result)
        logger.info(
            "Scan found %d models under %s",
            sum(1 for _ in result.all_entries()),
            self.models_root,
        )
        self.bus.publish(MODEL_LIST_CHANGED, result=result)

        try:
            future = self._executor.submit(self._size_pass, generation, result)
        except RuntimeError:
            # Pool already shut down; sizes stay as cached
            sizes_done.set_result(None)
        else:
            future.add_done_callback(lambda _f: sizes_done.set_result(None))
        return result

    def wait_for_sizes(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            done = self._sizes_done
        done.result(timeout=timeout)

    def _list_model_dirs(self) -> List[Path]:
        try:
            self.models_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Could not create models root %s: %s", self.models_root, exc)
        try:
            children = list(self.models_root.iterdir())
        except OSError as exc:
            logger.warning("Cannot read models root %s: %s", self.models_root, exc)
            return []
        folders = []
        for child in children:
            if child.name.startswith("."):
                continue
            try:
                if child.is_dir():
                    folders.append(child)
            except OSError:
                continue
        return folders

    def _discover(self) -> ScanResult:
        buckets: Dict[VariantTag, List[ModelEntry]] = {
            VariantTag.LEGACY: [],
            VariantTag.VARIANT_B: [],
            VariantTag.VARIANT_C: [],
            VariantTag.ACCELERATED: [],
        }
        for folder in self._list_model_dirs():
            classification = classify_folder(folder)
            if not classification.recognized:
                logger.debug("Skipping unrecognized folder %s", folder)
                continue
            cached_gb = self.size_cache.get_gb(folder.name)
            buckets[classification.variant].append(
                ModelEntry(
                    name=folder.name,
                    display_name=clean_display_name(folder.name),
                    path=folder,
                    resource_root=classification.root or folder,
                    variant=classification.variant,
                    size_bytes=int(cached_gb * _BYTES_PER_GB) if cached_gb else 0,
                )
            )

        def _sorted(entries: List[ModelEntry]) -> tuple:
            return tuple(sorted(entries, key=lambda e: e.display_name))

        return ScanResult(
            legacy=_sorted(buckets[VariantTag.LEGACY]),
            variant_b=_sorted(buckets[VariantTag.VARIANT_B]),
            variant_c=_sorted(buckets[VariantTag.VARIANT_C]),
            accelerated=_sorted(buckets[VariantTag.ACCELERATED]),
        )

    def _validate_selection(self, result: ScanResult) -> None:
        selected = self.preferences.selected_model
        if selected and selected not in result.names():
            logger.info("Clearing selection of missing model %s", selected)
            self.preferences.selected_model = None

    def _size_pass(self, generation: int, result: ScanResult) -> None:
        for entry in list(result.all_entries()):
            with self._lock:
                if generation != self._generation:
                    logger.debug("Size pass %d superseded", generation)
                    return
            size = allocated_bytes(entry.path)
            self.size_cache.set_gb(entry.name, size / _BYTES_PER_GB)
            updated = entry.with_size(size)
            with self._lock:
                if generation != self._generation:
                    return
                self._snapshot = self._snapshot.with_entry(updated)
            self.bus.publish(MODEL_SIZE_UPDATED, entry=updated)


__all__ = ["DirectoryScanner", "allocated_bytes"]
