"""Archive transfer: stream a ``.zip`` over HTTP and unpack it into place."""

from __future__ import annotations

import logging
import shutil
import threading
import zipfile
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

from .config import StoreConfig
from .errors import TransferCancelled, TransferFailed
from .models import TransferState
from .scrub import remove_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferState, float], None]

_IGNORED_TOP_LEVEL = {"__MACOSX"}


def is_archive_source(source: str) -> bool:
    path = urlparse(source).path or source
    return path.lower().endswith(".zip")


def _check_cancelled(cancel_event: threading.Event) -> None:
    if cancel_event.is_set():
        raise TransferCancelled("Transfer cancelled")


def download_archive(
    url: str,
    destination: Path,
    *,
    cancel_event: threading.Event,
    on_progress: ProgressCallback,
    on_response: Optional[Callable[[requests.Response], None]] = None,
    timeout: float = 120.0,
    chunk_size: int = 1 << 20,
) -> Path:
    """Stream ``url`` to ``destination`` reporting received / Content-Length."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        response = requests.get(url, stream=True, timeout=timeout)
    except requests.RequestException as exc:
        raise TransferFailed(f"Download failed: {exc}") from exc

    if on_response is not None:
        on_response(response)

    with response:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise TransferFailed(f"Download failed: {exc}") from exc

        try:
            total = int(response.headers.get("Content-Length") or 0)
        except ValueError:
            total = 0
        received = 0
        on_progress(TransferState.DOWNLOADING, 0.0)
        try:
            with destination.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    _check_cancelled(cancel_event)
                    if not chunk:
                        continue
                    handle.write(chunk)
                    received += len(chunk)
                    if total:
                        on_progress(TransferState.DOWNLOADING, received / total)
        except requests.RequestException as exc:
            _check_cancelled(cancel_event)
            raise TransferFailed(f"Download interrupted: {exc}") from exc

    _check_cancelled(cancel_event)
    logger.debug("Downloaded %d bytes from %s", received, url)
    return destination


def _safe_member_path(staging_dir: Path, member: str) -> Path:
    root = staging_dir.resolve()
    target = (staging_dir / member).resolve()
    if target != root and root not in target.parents:
        raise TransferFailed(f"Archive member escapes extraction folder: {member}")
    return target


def extract_archive(
    archive_path: Path,
    staging_dir: Path,
    *,
    cancel_event: threading.Event,
    on_progress: ProgressCallback,
) -> Path:
    """Extract member by member, reporting members done / members total."""

    staging_dir.mkdir(parents=True, exist_ok=True)
    on_progress(TransferState.UNZIPPING, 0.0)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            members = archive.infolist()
            total = len(members) or 1
            for index, member in enumerate(members, start=1):
                _check_cancelled(cancel_event)
                _safe_member_path(staging_dir, member.filename)
                archive.extract(member, path=staging_dir)
                on_progress(TransferState.UNZIPPING, index / total)
    except zipfile.BadZipFile as exc:
        raise TransferFailed(f"Downloaded file is not a valid zip archive: {exc}") from exc
    except OSError as exc:
        raise TransferFailed(f"Extraction failed: {exc}") from exc
    return staging_dir


def payload_root(staging_dir: Path) -> Path:
    """The single top-level directory of an archive, else the staging dir."""

    entries = [p for p in staging_dir.iterdir() if p.name not in _IGNORED_TOP_LEVEL]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return staging_dir


def run_archive_transfer(
    name: str,
    url: str,
    config: StoreConfig,
    *,
    cancel_event: threading.Event,
    on_progress: ProgressCallback,
    on_response: Optional[Callable[[requests.Response], None]] = None,
    job_id: Optional[str] = None,
) -> Path:
    """Download, extract and install one archive.

    The archive and staging folder are private to ``job_id``. The installed
    folder is only removed on failure if this call created it.
    """

    archive_path = config.archive_path(name, job_id)
    staging_dir = config.staging_dir(name, job_id)
    target = config.model_dir(name)
    created = False

    logger.info("Downloading archive for %s from %s", name, url)
    try:
        download_archive(
            url,
            archive_path,
            cancel_event=cancel_event,
            on_progress=on_progress,
            on_response=on_response,
            timeout=config.request_timeout_s,
            chunk_size=config.chunk_size,
        )
        logger.info("Extracting %s", archive_path)
        extract_archive(
            archive_path,
            staging_dir,
            cancel_event=cancel_event,
            on_progress=on_progress,
        )
        _check_cancelled(cancel_event)
        payload = payload_root(staging_dir)
        if target.exists():
            raise TransferFailed(f"{target} is already installed")
        created = True
        try:
            shutil.move(str(payload), str(target))
        except OSError as exc:
            raise TransferFailed(f"Could not move extracted model into place: {exc}") from exc
        _check_cancelled(cancel_event)
    except BaseException:
        if created:
            remove_path(target)
        raise
    finally:
        remove_path(archive_path)
        remove_path(staging_dir)

    logger.info("Installed %s into %s", name, target)
    return target


__all__ = [
    "download_archive",
    "extract_archive",
    "is_archive_source",
    "payload_root",
    "run_archive_transfer",
]
