"""StaticFlow skill-runner service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI

from app.api.v1 import jobs as jobs_api
from app.api.v1.health import router as health_root_router
from app.api.v1.router import v1_router
from app.config import Settings, settings
from app.db.job_store import JobStore
from app.db.memory_store import InMemoryJobStore
from app.db.supabase_client import get_supabase, reset_supabase
from app.db.supabase_store import SupabaseJobStore
from app.jobs.engine import JobEngine, build_engine
from app.jobs.ids import RunIdGenerator
from app.jobs.in_process_queue import InProcessQueue
from app.jobs.kinds import JobKind, get_kind
from app.notify.notifier import Notifier, SupabaseOutboxNotifier

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_job_store(kind: JobKind, cfg: Settings) -> JobStore:
    if cfg.job_store_backend == "memory":
        return InMemoryJobStore()
    if cfg.job_store_backend == "supabase":
        return SupabaseJobStore(get_supabase(cfg), kind)
    raise ValueError(f"Unknown JOB_STORE_BACKEND '{cfg.job_store_backend}'")


def build_notifier(cfg: Settings) -> Optional[Notifier]:
    if cfg.job_store_backend == "supabase":
        return SupabaseOutboxNotifier(get_supabase(cfg))
    return None


# Global runtime references
_engines: Dict[str, JobEngine] = {}
_queues: Dict[str, InProcessQueue] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    kinds: List[JobKind] = [get_kind(name) for name in settings.job_kind_names()]
    logger.info(f"Starting skill-runner service ({settings.job_store_backend} store)")

    id_generator = RunIdGenerator()
    notifier = build_notifier(settings)
    stores: Dict[str, JobStore] = {}
    for kind in kinds:
        store = build_job_store(kind, settings)
        engine = build_engine(kind, store, settings, id_generator, notifier=notifier)
        queue = InProcessQueue(engine.process, name=f"{kind.label} worker")
        await queue.start()
        stores[kind.name] = store
        _engines[kind.name] = engine
        _queues[kind.name] = queue
        logger.info(f"  {kind.label} worker ready")

    jobs_api.set_runtime(_queues, stores)

    yield

    logger.info("Shutting down skill-runner service")
    for name, queue in _queues.items():
        await queue.stop()
        engine = _engines[name]
        await engine.drain_background()
        removed = engine.cleanup_expired_handoffs()
        if removed:
            logger.info(f"  removed {removed} expired {engine.kind.label} result file(s)")
    _queues.clear()
    _engines.clear()
    jobs_api.set_runtime({}, {})
    reset_supabase()


app = FastAPI(
    title="StaticFlow Skill Runner",
    description="Runs approved article requests and music wishes through external AI skill scripts",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
