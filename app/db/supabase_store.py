"""Job store backed by Supabase tables.

Each job kind has three tables (jobs, ai runs, ai run chunks) whose names
and id columns come from the JobKind. The supabase client is synchronous,
so every call is pushed to the default thread executor to keep the event
loop free while the engine is pumping runner output.
"""

import asyncio
import functools
from typing import Any, Callable, Dict, List, Optional

from supabase import Client

from app.db.job_store import JobStore
from app.jobs.errors import JobStoreError
from app.jobs.kinds import JobKind
from app.jobs.models import (
    ChunkRecord,
    JobRecord,
    JobStatus,
    JobTransition,
    NewChunk,
    NewRun,
    RunFinalization,
    RunRecord,
    RunStatus,
    now_ms,
    validate_transition,
)


class SupabaseJobStore(JobStore):
    """JobStore for a single job kind."""

    def __init__(self, client: Client, kind: JobKind):
        self._client = client
        self._kind = kind

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except JobStoreError:
            raise
        except Exception as e:
            raise JobStoreError(f"{self._kind.label} store request failed: {e}") from e

    # ---------- Jobs ----------

    def _fetch_job_row(self, job_id: str) -> Optional[Dict[str, Any]]:
        response = (
            self._client.table(self._kind.jobs_table)
            .select("*")
            .eq(self._kind.id_column, job_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        row = await self._call(self._fetch_job_row, job_id)
        return self._kind.row_to_job(row) if row else None

    def _apply_transition(self, job_id: str, transition: JobTransition) -> Dict[str, Any]:
        row = self._fetch_job_row(job_id)
        if row is None:
            raise JobStoreError(f"{self._kind.label} not found: {job_id}")
        current = row.get("status") or ""
        next_status = transition.next_status.value
        validate_transition(current, next_status)

        update: Dict[str, Any] = {"status": next_status, "updated_at": now_ms()}
        if transition.admin_note is not None:
            update["admin_note"] = transition.admin_note
        if transition.failure_reason is not None:
            update["failure_reason"] = transition.failure_reason
        if transition.result_ref_id is not None:
            update[self._kind.result_ref_column] = transition.result_ref_id
        if transition.reply_text is not None:
            update["ai_reply"] = transition.reply_text
        if transition.next_status == JobStatus.RUNNING:
            update["attempt_count"] = (row.get("attempt_count") or 0) + 1

        # Conditional on the status we validated against
        response = (
            self._client.table(self._kind.jobs_table)
            .update(update)
            .eq(self._kind.id_column, job_id)
            .eq("status", current)
            .execute()
        )
        if not response.data:
            raise JobStoreError(
                f"{self._kind.label} {job_id} changed concurrently (expected status {current})"
            )
        return response.data[0]

    async def transition_job(self, job_id: str, transition: JobTransition) -> JobRecord:
        row = await self._call(self._apply_transition, job_id, transition)
        return self._kind.row_to_job(row)

    # ---------- Runs ----------

    def _insert_run(self, record: RunRecord) -> None:
        self._client.table(self._kind.runs_table).insert(self._run_to_row(record)).execute()

    async def create_run(self, new_run: NewRun) -> RunRecord:
        record = RunRecord(
            run_id=new_run.run_id,
            job_id=new_run.job_id,
            runner_program=new_run.runner_program,
        )
        await self._call(self._insert_run, record)
        return record

    def _fetch_run_rows(self, column: str, value: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        query = (
            self._client.table(self._kind.runs_table)
            .select("*")
            .eq(column, value)
            .order("started_at", desc=True)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.execute().data or []

    async def get_run(self, run_id: str) -> Optional[RunRecord]:
        rows = await self._call(self._fetch_run_rows, "run_id", run_id, 1)
        return self._row_to_run(rows[0]) if rows else None

    async def list_runs(self, job_id: str, limit: Optional[int] = None) -> List[RunRecord]:
        rows = await self._call(self._fetch_run_rows, self._kind.id_column, job_id, limit)
        return [self._row_to_run(row) for row in rows]

    def _update_run(self, run_id: str, finalization: RunFinalization) -> None:
        now = now_ms()
        response = (
            self._client.table(self._kind.runs_table)
            .update({
                "status": finalization.status.value,
                "exit_code": finalization.exit_code,
                "failure_reason": finalization.failure_reason,
                "final_reply_markdown": finalization.reply_text,
                "updated_at": now,
                "completed_at": now,
            })
            .eq("run_id", run_id)
            .execute()
        )
        if not response.data:
            raise JobStoreError(f"ai run not found: {run_id}")

    async def finalize_run(self, run_id: str, finalization: RunFinalization) -> None:
        await self._call(self._update_run, run_id, finalization)

    # ---------- Chunks ----------

    def _insert_chunk(self, chunk: NewChunk) -> None:
        self._client.table(self._kind.chunks_table).insert({
            "chunk_id": chunk.chunk_id,
            "run_id": chunk.run_id,
            self._kind.id_column: chunk.job_id,
            "stream": chunk.stream.value,
            "batch_index": chunk.batch_index,
            "content": chunk.content,
            "created_at": now_ms(),
        }).execute()

    async def append_chunk(self, chunk: NewChunk) -> None:
        await self._call(self._insert_chunk, chunk)

    def _fetch_chunk_rows(self, run_id: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        query = (
            self._client.table(self._kind.chunks_table)
            .select("*")
            .eq("run_id", run_id)
            .order("batch_index")
        )
        if limit is not None:
            query = query.limit(limit)
        return query.execute().data or []

    async def list_chunks(self, run_id: str, limit: Optional[int] = None) -> List[ChunkRecord]:
        rows = await self._call(self._fetch_chunk_rows, run_id, limit)
        return [
            ChunkRecord(
                chunk_id=row["chunk_id"],
                run_id=row["run_id"],
                job_id=row[self._kind.id_column],
                stream=row["stream"],
                batch_index=row["batch_index"],
                content=row.get("content") or "",
                created_at=row.get("created_at") or 0,
            )
            for row in rows
        ]

    # ---------- Row mapping ----------

    def _run_to_row(self, record: RunRecord) -> Dict[str, Any]:
        return {
            "run_id": record.run_id,
            self._kind.id_column: record.job_id,
            "status": record.status,
            "runner_program": record.runner_program,
            "exit_code": record.exit_code,
            "final_reply_markdown": record.reply_text,
            "failure_reason": record.failure_reason,
            "started_at": record.started_at,
            "updated_at": record.updated_at,
            "completed_at": record.completed_at,
        }

    def _row_to_run(self, row: Dict[str, Any]) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            job_id=row[self._kind.id_column],
            status=row.get("status") or RunStatus.RUNNING.value,
            runner_program=row.get("runner_program") or "",
            exit_code=row.get("exit_code"),
            reply_text=row.get("final_reply_markdown"),
            failure_reason=row.get("failure_reason"),
            started_at=row.get("started_at") or 0,
            updated_at=row.get("updated_at") or 0,
            completed_at=row.get("completed_at"),
        )
