"""Single-slot ownership of the active pipeline, plus the emergency stop."""

from __future__ import annotations

import gc
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

from .classifier import (
    classify,
    is_loadable_root,
    resolve_resource_root,
    strip_selection_suffixes,
)
from .config import StoreConfig
from .errors import LoadFailed, NotFound
from .models import EmergencyStopReport
from .notifications import (
    EMERGENCY_STOP_TRIGGERED,
    MODEL_BACKEND_CHANGED,
    MODEL_UNLOADED,
    EventBus,
)
from .pipelines import LoaderRegistry, PipelineBackend, PipelineHandle
from .preferences import Preferences
from .scrub import remove_path, scrub_memory, sweep_orphans
from .snapshot import purge_hf_cache
from .transfers import TransferManager

logger = logging.getLogger(__name__)

CachePurger = Callable[[], object]


def detect_backend(name: str, root: Path) -> PipelineBackend:
    """Choose the pipeline for a resolved root from its structure."""

    unet = root / "unet"
    if (unet / "config.json").is_file():
        return PipelineBackend.ACCELERATED_RUNTIME
    if (unet / "diffusion_pytorch_model.safetensors").is_file() and (
        root / "text_encoder" / "config.json"
    ).is_file():
        return PipelineBackend.ACCELERATED_RUNTIME
    if "(MLX)" in name:
        return PipelineBackend.ACCELERATED_RUNTIME
    return PipelineBackend.from_variant(classify([root]))


class ResourceLifecycleController:
    """Owns at most one loaded pipeline at a time.

    ``select`` always unloads before it loads. Every ``select``, ``unload``
    and ``emergency_stop`` bumps an epoch; a ``select`` that finishes loading
    after its epoch has moved on releases what it built instead of
    installing it.
    """

    def __init__(
        self,
        config: StoreConfig,
        preferences: Preferences,
        *,
        loaders: LoaderRegistry,
        transfers: TransferManager,
        bus: Optional[EventBus] = None,
        executor: Optional[Executor] = None,
        cache_purgers: Optional[List[CachePurger]] = None,
    ):
        self.config = config
        self.preferences = preferences
        self.loaders = loaders
        self.transfers = transfers
        self.bus = bus or EventBus()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="model-reclaim"
        )
        self._cache_purgers: List[CachePurger] = list(
            cache_purgers if cache_purgers is not None else [gc.collect]
        )
        self._lock = threading.Lock()
        self._epoch = 0
        self._handle: Optional[PipelineHandle] = None
        self._backend: Optional[PipelineBackend] = None

    # ---------------------------------------------------------------- queries
    @property
    def current_backend(self) -> Optional[PipelineBackend]:
        with self._lock:
            return self._backend

    @property
    def has_pipeline(self) -> bool:
        with self._lock:
            return self._handle is not None

    def add_cache_purger(self, purger: CachePurger) -> None:
        self._cache_purgers.append(purger)

    def resolve_model_folder(self, model_name: str) -> Path:
        root = self.config.models_root
        exact = root / model_name
        if exact.is_dir():
            return exact
        stripped = root / strip_selection_suffixes(model_name)
        if stripped.is_dir():
            return stripped
        raise NotFound(model_name)

    # --------------------------------------------------------------- commands
    def select(self, model_name: str) -> PipelineHandle:
        """Unload the current pipeline and load ``model_name`` in its place."""

        with self._lock:
            self._epoch += 1
            epoch = self._epoch
            previous = self._take_slot()
        self._release(previous)

        with self._lock:
            current = epoch == self._epoch
            if current:
                self.preferences.selected_model = model_name
                self.preferences.last_used_model = model_name
        if not current:
            logger.info("[lifecycle] Selection of %s superseded before loading", model_name)
            raise LoadFailed("selection superseded")

        try:
            folder = self.resolve_model_folder(model_name)
            root = resolve_resource_root(folder)
            if not is_loadable_root(root):
                raise NotFound(model_name)
        except NotFound:
            logger.warning("[lifecycle] No loadable model folder for %s", model_name)
            self._clear_selection_if_current(epoch)
            raise

        backend = detect_backend(model_name, root)
        logger.info(
            "[lifecycle] Loading %s from %s with %s", model_name, root, backend.value
        )
        self.bus.publish(MODEL_BACKEND_CHANGED, kind=backend.kind, backend=backend)

        handle: Optional[PipelineHandle] = None
        try:
            loader = self.loaders.loader_for(backend)
            handle = loader(root, backend)
            handle.load_resources()
        except Exception as exc:  # noqa: BLE001
            if handle is not None:
                self._unload_handle(handle)
            self._clear_selection_if_current(epoch)
            logger.error("[lifecycle] Failed to load %s: %s", model_name, exc)
            if isinstance(exc, LoadFailed):
                raise
            raise LoadFailed(f"Failed to load {model_name}: {exc}", original=exc) from exc

        with self._lock:
            superseded = epoch != self._epoch
            if not superseded:
                self._handle = handle
                self._backend = backend
        if superseded:
            logger.info("[lifecycle] Selection of %s superseded; releasing", model_name)
            self._unload_handle(handle)
            raise LoadFailed("selection superseded")

        logger.info("[lifecycle] Model %s active (%s)", model_name, backend.kind.value)
        return handle

    def unload(self) -> None:
        """Release the current pipeline if any. Safe to call repeatedly."""

        with self._lock:
            self._epoch += 1
            handle = self._take_slot()
        self._release(handle)

    def emergency_stop(self) -> EmergencyStopReport:
        """Stop every transfer, drop the pipeline and reclaim disk and memory."""

        logger.warning("[lifecycle] Emergency stop requested")
        with self._lock:
            # Any select still in flight must not persist its choice
            self._epoch += 1
        report = EmergencyStopReport()
        cancelled = []

        try:
            cancelled = self.transfers.cancel_all()
            report.cancelled = [job.name for job in cancelled]
        except Exception as exc:  # noqa: BLE001
            logger.exception("[lifecycle] Cancelling transfers failed")
            report.cleanup_failures.append(f"cancel transfers: {exc}")

        try:
            self.preferences.auto_load_model = False
            self.preferences.last_used_model = None
            self.bus.publish(EMERGENCY_STOP_TRIGGERED, cancelled=list(report.cancelled))
        except Exception as exc:  # noqa: BLE001
            logger.exception("[lifecycle] Updating preferences failed")
            report.cleanup_failures.append(f"preferences: {exc}")

        try:
            with self._lock:
                self._epoch += 1
                handle = self._take_slot()
            self._release(handle)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[lifecycle] Releasing pipeline failed")
            report.cleanup_failures.append(f"unload: {exc}")

        for job in cancelled:
            for path in (
                self.config.archive_path(job.name, job.id),
                self.config.staging_dir(job.name, job.id),
            ):
                failure = remove_path(path)
                if failure is not None:
                    report.cleanup_failures.append(str(failure))

        try:
            self.preferences.selected_model = None
        except Exception as exc:  # noqa: BLE001
            logger.exception("[lifecycle] Clearing selection failed")
            report.cleanup_failures.append(f"selection: {exc}")

        report.background = self._executor.submit(self._reclaim)
        logger.warning(
            "[lifecycle] Emergency stop cancelled %d transfer(s), %d cleanup failure(s)",
            len(report.cancelled),
            len(report.cleanup_failures),
        )
        return report

    # -------------------------------------------------------------- internals
    def _take_slot(self) -> Optional[PipelineHandle]:
        handle = self._handle
        self._handle = None
        self._backend = None
        return handle

    def _unload_handle(self, handle: PipelineHandle) -> None:
        try:
            handle.unload_resources()
        except Exception:  # noqa: BLE001
            logger.exception("[lifecycle] unload_resources raised; continuing")

    def _release(self, handle: Optional[PipelineHandle]) -> None:
        if handle is not None:
            self._unload_handle(handle)
        for purger in list(self._cache_purgers):
            try:
                purger()
            except Exception:  # noqa: BLE001
                logger.exception("[lifecycle] Cache purger %r failed", purger)
        self.bus.publish(MODEL_UNLOADED)

    def _clear_selection_if_current(self, epoch: int) -> None:
        with self._lock:
            current = epoch == self._epoch
        if current:
            self.preferences.selected_model = None

    def _reclaim(self) -> None:
        failures = sweep_orphans(self.config.models_root)
        for failure in failures:
            logger.warning("[lifecycle] %s", failure)
        scrub_memory(
            self.config.scrub_min_mb,
            self.config.scrub_max_mb,
            self.config.scrub_chunk_mb,
        )
        purge_hf_cache(self.config.hf_cache_locations)
        logger.info("[lifecycle] Background reclamation finished")


__all__ = ["ResourceLifecycleController", "detect_backend"]
