"""
Test configuration for model store tests.
"""

import io
import threading
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
import requests

from modelworks.model_store.config import StoreConfig
from modelworks.model_store.notifications import EventBus


@pytest.fixture
def store_config(tmp_path):
    """Configuration rooted entirely inside the test's tmp directory."""
    config = StoreConfig(
        models_root=tmp_path / "Models",
        state_dir=tmp_path / "state",
        hf_cache_locations=[tmp_path / "hf-cache"],
        max_workers=4,
        finished_job_ttl_s=0.05,
        request_timeout_s=5.0,
        chunk_size=4,
        scrub_min_mb=1,
        scrub_max_mb=1,
        scrub_chunk_mb=1,
    )
    config.ensure_directories()
    return config


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True, cancel_futures=True)


@pytest.fixture
def bus_events():
    """An EventBus plus the list of (event, payload) it has seen."""
    bus = EventBus()
    seen = []
    bus.subscribe(lambda event, payload: seen.append((event, payload)))
    return bus, seen


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait


@pytest.fixture
def make_model():
    """Build model folders from a list of relative entries.

    Names ending in ``.mlmodelc`` become directories, everything else a
    small file.
    """

    def _make(folder: Path, *entries: str) -> Path:
        folder.mkdir(parents=True, exist_ok=True)
        for entry in entries:
            path = folder / entry
            if path.name.endswith(".mlmodelc"):
                path.mkdir(parents=True, exist_ok=True)
                (path / "weights.bin").write_bytes(b"\0" * 64)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text("{}")
        return folder

    return _make


def build_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def legacy_zip():
    return build_zip(
        {
            "SD15Base/Unet.mlmodelc/weights.bin": b"u" * 32,
            "SD15Base/TextEncoder.mlmodelc/weights.bin": b"t" * 32,
            "SD15Base/VAEDecoder.mlmodelc/weights.bin": b"v" * 32,
            "__MACOSX/._SD15Base": b"junk",
        }
    )


@pytest.fixture
def zip_builder():
    return build_zip


class FakeResponse:
    """Streaming response stand-in for ``requests.get(..., stream=True)``."""

    def __init__(self, payload: bytes, *, status: int = 200, chunk: int = 8, gate=None):
        self.payload = payload
        self.status = status
        self.chunk = chunk
        self.gate = gate
        self.started = threading.Event()
        self.closed = False
        self.headers = {"Content-Length": str(len(payload))}

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")

    def iter_content(self, chunk_size=1):
        self.started.set()
        for offset in range(0, len(self.payload), self.chunk):
            if self.gate is not None:
                self.gate.wait(5)
            yield self.payload[offset : offset + self.chunk]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def fake_http(monkeypatch):
    """Route ``requests.get`` to a queue of FakeResponse objects."""

    calls = []

    class _Http:
        responses = []

        def respond(self, payload: bytes, **kwargs) -> FakeResponse:
            response = FakeResponse(payload, **kwargs)
            self.responses.append(response)
            return response

    http = _Http()
    http.responses = []
    http.calls = calls

    def _get(url, stream=False, timeout=None):
        calls.append(url)
        return http.responses.pop(0)

    monkeypatch.setattr(requests, "get", _get)
    return http
