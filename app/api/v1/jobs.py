"""Job intake API: enqueue approved jobs, inspect runs and captured output."""

from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.db.job_store import JobStore
from app.jobs.dispatcher import JobDispatcher

router = APIRouter()

# These will be set by main.py during lifespan, keyed by job kind name
_dispatchers: Dict[str, JobDispatcher] = {}
_stores: Dict[str, JobStore] = {}


def set_runtime(dispatchers: Dict[str, JobDispatcher], stores: Dict[str, JobStore]):
    global _dispatchers, _stores
    _dispatchers = dict(dispatchers)
    _stores = dict(stores)


def get_dispatchers() -> Dict[str, JobDispatcher]:
    return _dispatchers


class EnqueueResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    queue_depth: int


def _dispatcher_for(kind: str) -> JobDispatcher:
    if not _dispatchers:
        raise HTTPException(status_code=503, detail="Workers are not ready")
    dispatcher = _dispatchers.get(kind)
    if dispatcher is None:
        raise HTTPException(status_code=404, detail=f"Unknown or disabled job kind '{kind}'")
    return dispatcher


def _store_for(kind: str) -> JobStore:
    store = _stores.get(kind)
    if store is None:
        raise HTTPException(status_code=404, detail=f"Unknown or disabled job kind '{kind}'")
    return store


@router.post("/jobs/{kind}/{job_id}/enqueue", response_model=EnqueueResponse, status_code=202)
async def enqueue_job(kind: str, job_id: str):
    """Hand an approved job to its kind's worker queue."""
    dispatcher = _dispatcher_for(kind)
    if not dispatcher.enqueue_nowait(job_id):
        raise HTTPException(status_code=503, detail="Job queue is full, retry later")
    return EnqueueResponse(
        job_id=job_id, kind=kind, status="queued", queue_depth=dispatcher.pending()
    )


@router.get("/jobs/{kind}/{job_id}/runs")
async def list_job_runs(kind: str, job_id: str, limit: Optional[int] = Query(None, ge=1, le=200)):
    """Runs of a job, newest first."""
    store = _store_for(kind)
    runs = await store.list_runs(job_id, limit=limit)
    return {"job_id": job_id, "runs": [run.model_dump() for run in runs]}


@router.get("/jobs/{kind}/runs/{run_id}/chunks")
async def list_run_chunks(kind: str, run_id: str, limit: Optional[int] = Query(None, ge=1, le=5000)):
    """Captured stdout/stderr lines of a run in batch order."""
    store = _store_for(kind)
    run = await store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    chunks = await store.list_chunks(run_id, limit=limit)
    return {
        "run": run.model_dump(),
        "chunks": [chunk.model_dump(mode="json") for chunk in chunks],
    }
