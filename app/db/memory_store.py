"""Process-local job store for local mode and tests."""

import asyncio
from typing import Dict, List, Optional

from app.db.job_store import JobStore
from app.jobs.errors import JobStoreError
from app.jobs.models import (
    ChunkRecord,
    JobRecord,
    JobStatus,
    JobTransition,
    NewChunk,
    NewRun,
    RunFinalization,
    RunRecord,
    now_ms,
    validate_transition,
)


class InMemoryJobStore(JobStore):
    """Keeps jobs, runs and chunks in dicts. Nothing survives a restart."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._runs: Dict[str, RunRecord] = {}
        self._chunks: Dict[str, List[ChunkRecord]] = {}
        self._lock = asyncio.Lock()

    def add_job(self, job: JobRecord) -> JobRecord:
        """Seed a job (normally created by the HTTP intake side)."""
        self._jobs[job.job_id] = job.model_copy(deep=True)
        return job

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def transition_job(self, job_id: str, transition: JobTransition) -> JobRecord:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobStoreError(f"job not found: {job_id}")
            validate_transition(job.status, transition.next_status.value)
            updated = job.model_copy(deep=True)
            updated.status = transition.next_status.value
            updated.updated_at = now_ms()
            if transition.admin_note is not None:
                updated.admin_note = transition.admin_note
            if transition.failure_reason is not None:
                updated.failure_reason = transition.failure_reason
            if transition.result_ref_id is not None:
                updated.result_ref_id = transition.result_ref_id
            if transition.reply_text is not None:
                updated.reply_text = transition.reply_text
            if transition.next_status == JobStatus.RUNNING:
                updated.attempt_count += 1
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def create_run(self, new_run: NewRun) -> RunRecord:
        if new_run.run_id in self._runs:
            raise JobStoreError(f"run already exists: {new_run.run_id}")
        run = RunRecord(
            run_id=new_run.run_id,
            job_id=new_run.job_id,
            runner_program=new_run.runner_program,
        )
        self._runs[run.run_id] = run
        return run.model_copy()

    async def get_run(self, run_id: str) -> Optional[RunRecord]:
        run = self._runs.get(run_id)
        return run.model_copy() if run else None

    async def finalize_run(self, run_id: str, finalization: RunFinalization) -> None:
        run = self._runs.get(run_id)
        if run is None:
            raise JobStoreError(f"run not found: {run_id}")
        now = now_ms()
        run.status = finalization.status.value
        run.exit_code = finalization.exit_code
        run.failure_reason = finalization.failure_reason
        run.reply_text = finalization.reply_text
        run.updated_at = now
        run.completed_at = now

    async def append_chunk(self, chunk: NewChunk) -> None:
        record = ChunkRecord(**chunk.model_dump())
        self._chunks.setdefault(chunk.run_id, []).append(record)

    async def list_runs(self, job_id: str, limit: Optional[int] = None) -> List[RunRecord]:
        runs = sorted(
            (r for r in self._runs.values() if r.job_id == job_id),
            key=lambda r: r.started_at,
            reverse=True,
        )
        return [r.model_copy() for r in runs[:limit]]

    async def list_chunks(self, run_id: str, limit: Optional[int] = None) -> List[ChunkRecord]:
        chunks = sorted(self._chunks.get(run_id, []), key=lambda c: c.batch_index)
        return chunks[:limit]
