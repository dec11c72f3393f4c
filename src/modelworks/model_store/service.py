"""``ModelStore``: one object wiring scanner, transfers and lifecycle together."""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from .config import StoreConfig, get_config
from .errors import NotFound
from .lifecycle import ResourceLifecycleController
from .models import EmergencyStopReport, ScanResult, TransferJob
from .notifications import TRANSFER_UPDATED, EventBus
from .pipelines import LoaderRegistry, PipelineHandle
from .preferences import Preferences, SizeCache
from .scanner import DirectoryScanner
from .scrub import remove_path
from .transfers import TransferManager

logger = logging.getLogger(__name__)


class ModelStore:
    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        loaders: Optional[LoaderRegistry] = None,
        bus: Optional[EventBus] = None,
    ):
        self.config = config or get_config()
        self.config.ensure_directories()
        self.bus = bus or EventBus()
        self.loaders = loaders or LoaderRegistry()
        # Scans, size passes and reclamation; transfers get their own pool
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="model-store"
        )
        self.sizes = SizeCache(self.config.sizes_path)
        self.preferences = Preferences(self.config.preferences_path)
        self.scanner = DirectoryScanner(
            self.config.models_root,
            self.sizes,
            self.preferences,
            bus=self.bus,
            executor=self.executor,
        )
        self.transfers = TransferManager(self.config, bus=self.bus)
        self.lifecycle = ResourceLifecycleController(
            self.config,
            self.preferences,
            loaders=self.loaders,
            transfers=self.transfers,
            bus=self.bus,
            executor=self.executor,
        )
        self._unsubscribe = self.bus.subscribe(self._on_event)

    def _on_event(self, event: str, payload: dict) -> None:
        if event != TRANSFER_UPDATED:
            return
        job: TransferJob = payload["job"]
        if job.state.is_terminal:
            self.rescan()

    # ------------------------------------------------------------ discovery
    def rescan(self) -> Optional["Future[ScanResult]"]:
        try:
            return self.scanner.scan()
        except RuntimeError:
            logger.debug("Rescan skipped; worker pool is shut down")
            return None

    def scan_now(self) -> ScanResult:
        return self.scanner.scan_now()

    def models(self) -> ScanResult:
        return self.scanner.snapshot()

    def installed_names(self) -> set[str]:
        """Folder names present under the models root, recognized or not."""
        try:
            return {
                child.name
                for child in self.config.models_root.iterdir()
                if child.is_dir() and not child.name.startswith(".")
            }
        except OSError:
            return set()

    # ------------------------------------------------------------ transfers
    def download(self, name: str, source: str) -> Optional[str]:
        return self.transfers.start(name, source)

    def cancel_transfer(self, job_id: str) -> bool:
        cancelled = self.transfers.cancel(job_id)
        if cancelled:
            self.rescan()
        return cancelled

    def retry_transfer(self, job_id: str) -> Optional[str]:
        return self.transfers.retry(job_id)

    # ------------------------------------------------------------ lifecycle
    def select(self, name: str) -> PipelineHandle:
        return self.lifecycle.select(name)

    def unload(self) -> None:
        self.lifecycle.unload()

    def emergency_stop(self) -> EmergencyStopReport:
        report = self.lifecycle.emergency_stop()
        self.rescan()
        return report

    # ------------------------------------------------------- local folders
    def delete_model(self, name: str) -> None:
        """Remove a model folder, unloading it first if it is selected."""

        target = self.config.model_dir(name)
        if not name or target.parent != self.config.models_root or not target.is_dir():
            raise NotFound(name, "No such model folder")

        if self.preferences.selected_model == name or self.preferences.last_used_model == name:
            self.lifecycle.unload()
            self.preferences.selected_model = None
            self.preferences.last_used_model = None

        failure = remove_path(target)
        if failure is not None:
            raise failure
        self.sizes.delete(name)
        logger.info("Deleted model %s", name)
        self.rescan()

    def import_model(self, source_dir: Path) -> Optional[Path]:
        """Copy an external model folder into the models root.

        Returns the new folder, or ``None`` when a folder of the same name is
        already installed.
        """

        source_dir = Path(source_dir).expanduser()
        if not source_dir.is_dir():
            raise NotFound(str(source_dir), "Import source is not a folder")
        target = self.config.model_dir(source_dir.name)
        if target.exists():
            logger.info("Import skipped: %s already installed", source_dir.name)
            return None
        shutil.copytree(source_dir, target, symlinks=False)
        logger.info("Imported %s into %s", source_dir, target)
        self.rescan()
        return target

    def close(self, wait: bool = True) -> None:
        self._unsubscribe()
        self.transfers.shutdown(wait=False)
        self.lifecycle.unload()
        self.executor.shutdown(wait=wait, cancel_futures=True)


__all__ = ["ModelStore"]
