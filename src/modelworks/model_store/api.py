"""FastAPI service exposing the model store."""

from __future__ import annotations

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .errors import LoadFailed, NotFound, PartialCleanupFailed
from .models import ModelEntry, TransferJob
from .service import ModelStore

app = FastAPI(title="Modelworks Model Store", version="0.1")

_STORE: Optional[ModelStore] = None


def get_store() -> ModelStore:
    global _STORE
    if _STORE is None:
        _STORE = ModelStore()
        _STORE.rescan()
    return _STORE


def set_store(store: Optional[ModelStore]) -> None:
    """Swap the store backing the app (tests, embedding)."""
    global _STORE
    _STORE = store


class ModelSummary(BaseModel):
    id: str
    name: str
    display_name: str
    variant: str
    size_gb: float
    path: str
    resource_root: str


class ModelListing(BaseModel):
    legacy: List[ModelSummary]
    variant_b: List[ModelSummary]
    variant_c: List[ModelSummary]
    accelerated: List[ModelSummary]
    selected_model: Optional[str] = None


class TransferSummary(BaseModel):
    id: str
    name: str
    source: str
    state: str
    progress: float
    error: Optional[str] = None


class TransferRequest(BaseModel):
    name: str
    source: str


class TransferStarted(BaseModel):
    id: Optional[str]
    accepted: bool


class SelectRequest(BaseModel):
    name: str


class SelectResponse(BaseModel):
    name: str
    backend: str
    kind: str


class EmergencyStopResponse(BaseModel):
    cancelled: List[str]
    cleanup_failures: List[str]


def _summary(entry: ModelEntry) -> ModelSummary:
    return ModelSummary(
        id=entry.id,
        name=entry.name,
        display_name=entry.display_name,
        variant=entry.variant.value,
        size_gb=round(entry.size_gb, 3),
        path=str(entry.path),
        resource_root=str(entry.resource_root),
    )


def _transfer(job: TransferJob) -> TransferSummary:
    return TransferSummary(**job.to_dict())


def _listing(store: ModelStore) -> ModelListing:
    result = store.models()
    return ModelListing(
        legacy=[_summary(e) for e in result.legacy],
        variant_b=[_summary(e) for e in result.variant_b],
        variant_c=[_summary(e) for e in result.variant_c],
        accelerated=[_summary(e) for e in result.accelerated],
        selected_model=store.preferences.selected_model,
    )


@app.get("/v1/models", response_model=ModelListing)
async def api_list_models():
    return _listing(get_store())


@app.post("/v1/models/rescan", response_model=ModelListing)
def api_rescan():
    store = get_store()
    store.scan_now()
    return _listing(store)


@app.delete("/v1/models/{name}")
def api_delete_model(name: str):
    try:
        get_store().delete_model(name)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PartialCleanupFailed as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"status": "deleted", "name": name}


@app.get("/v1/transfers", response_model=List[TransferSummary])
async def api_list_transfers():
    return [_transfer(job) for job in get_store().transfers.jobs()]


@app.post("/v1/transfers", response_model=TransferStarted)
async def api_start_transfer(req: TransferRequest):
    job_id = get_store().download(req.name, req.source)
    return TransferStarted(id=job_id, accepted=job_id is not None)


@app.delete("/v1/transfers/{job_id}")
async def api_cancel_transfer(job_id: str):
    if not get_store().cancel_transfer(job_id):
        raise HTTPException(status_code=404, detail=f"Unknown transfer {job_id}")
    return {"status": "cancelled", "id": job_id}


@app.post("/v1/transfers/{job_id}/retry", response_model=TransferStarted)
async def api_retry_transfer(job_id: str):
    new_id = get_store().retry_transfer(job_id)
    if new_id is None:
        raise HTTPException(status_code=409, detail=f"Transfer {job_id} cannot be retried")
    return TransferStarted(id=new_id, accepted=True)


@app.post("/v1/select", response_model=SelectResponse)
def api_select(req: SelectRequest):
    store = get_store()
    try:
        store.select(req.name)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LoadFailed as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    backend = store.lifecycle.current_backend
    if backend is None:
        raise HTTPException(status_code=409, detail="selection superseded")
    return SelectResponse(name=req.name, backend=backend.value, kind=backend.kind.value)


@app.post("/v1/unload")
def api_unload():
    get_store().unload()
    return {"status": "unloaded"}


@app.post("/v1/emergency-stop", response_model=EmergencyStopResponse)
def api_emergency_stop():
    report = get_store().emergency_stop()
    return EmergencyStopResponse(
        cancelled=report.cancelled, cleanup_failures=report.cleanup_failures
    )


# Convenience root
@app.get("/")
async def root():  # pragma: no cover
    return {"service": "modelworks-model-store", "version": "0.1"}
