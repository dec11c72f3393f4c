"""Registry and state machine for concurrent model acquisitions.

Each job runs one transport (archive or snapshot) on the worker pool and
reports through its own ``ProgressChannel``. Observers only ever see frozen
``TransferJob`` projections.

States::

    downloading -> unzipping -> finished
    cloning -> finished
    any non-terminal -> failed
    any -> cancelled
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .archive import is_archive_source, run_archive_transfer
from .config import StoreConfig
from .errors import TransferCancelled, TransferFailed
from .models import TransferJob, TransferState
from .notifications import EventBus, TRANSFER_UPDATED
from .scrub import remove_path
from .snapshot import run_snapshot_transfer

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Single-writer progress stream for one job.

    Progress never moves backwards within a phase and restarts from the
    reported value when the phase changes. Once a terminal state is reported,
    or the channel is closed, further reports are dropped.
    """

    def __init__(
        self,
        job_id: str,
        name: str,
        source: str,
        state: TransferState,
        publish: Callable[[TransferJob], None],
    ):
        self._lock = threading.Lock()
        self._publish = publish
        self._closed = False
        self._job = TransferJob(id=job_id, name=name, source=source, state=state)

    @property
    def state(self) -> TransferState:
        with self._lock:
            return self._job.state

    def snapshot(self) -> TransferJob:
        with self._lock:
            return self._job

    def report(
        self, state: TransferState, progress: float, error: Optional[str] = None
    ) -> Optional[TransferJob]:
        progress = min(1.0, max(0.0, float(progress)))
        with self._lock:
            if self._closed:
                return None
            if state is self._job.state:
                progress = max(progress, self._job.progress)
            self._job = TransferJob(
                id=self._job.id,
                name=self._job.name,
                source=self._job.source,
                state=state,
                progress=progress,
                error=error,
            )
            if state.is_terminal:
                self._closed = True
            job = self._job
        self._publish(job)
        return job

    def close(self, state: Optional[TransferState] = None) -> Optional[TransferJob]:
        """Stop accepting reports; with ``state`` record a final projection.

        Returns the final projection, or ``None`` if the channel was already
        terminal. Nothing is published from here.
        """
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            if state is not None:
                self._job = TransferJob(
                    id=self._job.id,
                    name=self._job.name,
                    source=self._job.source,
                    state=state,
                    progress=self._job.progress,
                    error=self._job.error,
                )
            return self._job


@dataclass
class _ActiveTransfer:
    job_id: str
    name: str
    source: str
    channel: ProgressChannel
    cancel_event: threading.Event
    response: Optional[object] = None
    future: Optional[Future] = None
    timer: Optional[threading.Timer] = None


class TransferManager:
    """Start, observe, cancel and retry model acquisitions."""

    def __init__(
        self,
        config: StoreConfig,
        *,
        bus: Optional[EventBus] = None,
        executor: Optional[Executor] = None,
    ):
        self.config = config
        self.bus = bus or EventBus()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="model-transfer"
        )
        self._lock = threading.Lock()
        self._registry: Dict[str, _ActiveTransfer] = {}

    # ------------------------------------------------------------------ queries
    def jobs(self) -> List[TransferJob]:
        with self._lock:
            active = list(self._registry.values())
        return [item.channel.snapshot() for item in active]

    def get(self, job_id: str) -> Optional[TransferJob]:
        with self._lock:
            item = self._registry.get(job_id)
        return item.channel.snapshot() if item else None

    def subscribe(self, callback: Callable[[TransferJob], None]) -> Callable[[], None]:
        def _forward(event: str, payload: dict) -> None:
            if event == TRANSFER_UPDATED:
                callback(payload["job"])

        return self.bus.subscribe(_forward)

    # ----------------------------------------------------------------- commands
    def start(self, name: str, source: str) -> Optional[str]:
        """Begin acquiring ``name`` from ``source``; ``None`` when rejected."""

        if not name or name in (".", "..") or "/" in name or "\\" in name:
            logger.warning("Rejected transfer with invalid model name %r", name)
            return None

        target = self.config.model_dir(name)
        with self._lock:
            if target.exists():
                logger.info("Skipping transfer of %s: %s already exists", name, target)
                return None
            for item in self._registry.values():
                if item.name == name and not item.channel.state.is_terminal:
                    logger.info("Skipping transfer of %s: already in progress", name)
                    return None
            # A failed job for the same name is superseded by the new one
            for job_id in [
                jid
                for jid, item in self._registry.items()
                if item.name == name and item.channel.state is TransferState.FAILED
            ]:
                del self._registry[job_id]

            # Stale leftovers under the plain name
            remove_path(self.config.archive_path(name))
            remove_path(self.config.staging_dir(name))

            archive = is_archive_source(source)
            initial = TransferState.DOWNLOADING if archive else TransferState.CLONING
            job_id = uuid.uuid4().hex
            item = _ActiveTransfer(
                job_id=job_id,
                name=name,
                source=source,
                channel=ProgressChannel(job_id, name, source, initial, self._publish),
                cancel_event=threading.Event(),
            )
            self._registry[job_id] = item

        logger.info(
            "Starting %s transfer %s for %s from %s",
            "archive" if archive else "snapshot",
            job_id,
            name,
            source,
        )
        self._notify(item.channel.snapshot())
        item.future = self._executor.submit(self._run, item, archive)
        return job_id

    def cancel(self, job_id: str) -> bool:
        return self._cancel(job_id) is not None

    def cancel_all(self) -> List[TransferJob]:
        """Cancel every registered job and return the cancelled projections."""

        with self._lock:
            job_ids = list(self._registry)
        cancelled = []
        for job_id in job_ids:
            job = self._cancel(job_id)
            if job is not None and job.state is TransferState.CANCELLED:
                cancelled.append(job)
        return cancelled

    def retry(self, job_id: str) -> Optional[str]:
        """Restart a failed job under a fresh id."""

        with self._lock:
            item = self._registry.get(job_id)
            if item is None or item.channel.state is not TransferState.FAILED:
                return None
            del self._registry[job_id]
        logger.info("Retrying transfer of %s", item.name)
        return self.start(item.name, item.source)

    def shutdown(self, wait: bool = True) -> None:
        self.cancel_all()
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    # ---------------------------------------------------------------- internals
    def _cancel(self, job_id: str) -> Optional[TransferJob]:
        with self._lock:
            item = self._registry.pop(job_id, None)
        if item is None:
            return None
        if item.timer is not None:
            item.timer.cancel()

        previous = item.channel.state
        if previous is TransferState.FINISHED:
            # Nothing to undo; the model is installed
            return item.channel.snapshot()

        item.cancel_event.set()
        response = item.response
        if response is not None:
            try:
                response.close()
            except Exception:  # noqa: BLE001
                logger.debug("Closing response for %s failed", item.name, exc_info=True)

        final = item.channel.close(TransferState.CANCELLED)
        if not self._name_in_use(item.name):
            remove_path(self.config.model_dir(item.name))
        logger.info("Cancelled transfer %s for %s", job_id, item.name)
        if final is None:
            return item.channel.snapshot()
        self._notify(final)
        return final

    def _name_in_use(self, name: str) -> bool:
        with self._lock:
            return any(item.name == name for item in self._registry.values())

    def _run(self, item: _ActiveTransfer, archive: bool) -> None:
        def _on_progress(state: TransferState, progress: float) -> None:
            logger.debug("%s %s %.3f", item.name, state.value, progress)
            item.channel.report(state, progress)

        def _on_response(response) -> None:
            item.response = response
            if item.cancel_event.is_set():
                response.close()

        try:
            if archive:
                run_archive_transfer(
                    item.name,
                    item.source,
                    self.config,
                    cancel_event=item.cancel_event,
                    on_progress=_on_progress,
                    on_response=_on_response,
                    job_id=item.job_id,
                )
            else:
                run_snapshot_transfer(
                    item.name,
                    item.source,
                    self.config,
                    cancel_event=item.cancel_event,
                    on_progress=_on_progress,
                )
        except TransferCancelled:
            self._after_cancel(item)
        except Exception as exc:  # noqa: BLE001
            if item.cancel_event.is_set():
                self._after_cancel(item)
                return
            cause = exc.cause if isinstance(exc, TransferFailed) else str(exc)
            cause = cause or exc.__class__.__name__
            logger.error("Transfer of %s failed: %s", item.name, cause)
            item.channel.report(TransferState.FAILED, 0.0, error=cause)
        else:
            if item.cancel_event.is_set():
                # Installed just as the cancel landed; undo our own install
                self._after_cancel(item, installed=True)
                return
            logger.info("Transfer of %s finished", item.name)
            item.channel.report(TransferState.FINISHED, 1.0)

    def _after_cancel(self, item: _ActiveTransfer, installed: bool = False) -> None:
        remove_path(self.config.archive_path(item.name, item.job_id))
        remove_path(self.config.staging_dir(item.name, item.job_id))
        if installed and not self._name_in_use(item.name):
            remove_path(self.config.model_dir(item.name))

    def _publish(self, job: TransferJob) -> None:
        if job.state is TransferState.FINISHED:
            self._schedule_removal(job.id)
        self._notify(job)

    def _notify(self, job: TransferJob) -> None:
        self.bus.publish(TRANSFER_UPDATED, job=job)

    def _schedule_removal(self, job_id: str) -> None:
        with self._lock:
            item = self._registry.get(job_id)
            if item is None:
                return
            timer = threading.Timer(self.config.finished_job_ttl_s, self._expire, (job_id,))
            timer.daemon = True
            item.timer = timer
        timer.start()

    def _expire(self, job_id: str) -> None:
        with self._lock:
            item = self._registry.get(job_id)
            if item is not None and item.channel.state is TransferState.FINISHED:
                del self._registry[job_id]
                logger.debug("Removed finished transfer %s", job_id)


__all__ = ["ProgressChannel", "TransferManager"]
