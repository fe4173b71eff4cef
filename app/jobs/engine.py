"""Job lifecycle controller for skill-runner jobs.

Drives one job from pickup to a terminal state:

1. Fetch the job; skip missing, finalized (done/rejected) or unexpected statuses
2. approved -> running (a job already running is resumed as-is)
3. Create a run record, then run the external program via ProcessSupervisor
4. Read the result file and finalize: running -> done, run -> success
5. On any failure: run -> failed, job -> failed (best-effort, never retried)

A timeout is not always a failure: if the runner was killed but had
already written a parseable result file, the job is finalized exactly as
on the normal success path, with no exit code.
"""

import asyncio
import logging
from typing import Any, Optional, Set

from app.config import RunnerSettings, Settings
from app.db.job_store import JobStore
from app.jobs.errors import ResultFileError, RunnerError, RunnerTimeoutError
from app.jobs.ids import RunIdGenerator
from app.jobs.kinds import JobKind
from app.jobs.models import (
    JobRecord,
    JobStatus,
    JobTransition,
    NewRun,
    RunFinalization,
    RunStatus,
)
from app.jobs.result_file import extract_result_fields, read_result_json
from app.jobs.supervisor import ProcessSupervisor
from app.notify.notifier import Notifier
from app.storage.handoff_files import HandoffFiles

logger = logging.getLogger(__name__)


class JobEngine:
    """Processes jobs of one kind. Not safe to call process() concurrently
    for the same kind; the dispatch queue serializes calls."""

    def __init__(
        self,
        kind: JobKind,
        store: JobStore,
        supervisor: ProcessSupervisor,
        files: HandoffFiles,
        id_generator: RunIdGenerator,
        runner_program: str,
        cleanup_result_file_on_success: bool = True,
        notifier: Optional[Notifier] = None,
    ):
        self.kind = kind
        self._store = store
        self._supervisor = supervisor
        self._files = files
        self._ids = id_generator
        self._runner_program = runner_program
        self._cleanup_result = cleanup_result_file_on_success
        self._notifier = notifier
        self._background: Set[asyncio.Task] = set()

    async def process(self, job_id: str) -> None:
        """Run one job to a terminal state. Never raises (except cancellation)."""
        try:
            await self._process(job_id)
        except Exception as e:
            logger.error(f"{self.kind.label} worker failed for {job_id}: {e}", exc_info=True)

    async def drain_background(self) -> None:
        """Wait for detached notification tasks started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def cleanup_expired_handoffs(self) -> int:
        """Remove result files left behind longer than the handoff TTL."""
        return self._files.cleanup_expired()

    # ---------- Lifecycle ----------

    async def _process(self, job_id: str) -> None:
        job = await self._store.get_job(job_id)
        if job is None:
            logger.warning(f"{self.kind.label} worker skipped missing job {job_id}")
            return

        if job.status in (JobStatus.REJECTED.value, JobStatus.DONE.value):
            logger.info(f"{self.kind.label} worker skipped finalized job {job_id} ({job.status})")
            return

        if job.status == JobStatus.APPROVED.value:
            job = await self._store.transition_job(
                job_id, JobTransition(next_status=JobStatus.RUNNING)
            )
        elif job.status != JobStatus.RUNNING.value:
            logger.warning(f"{self.kind.label} worker skipped job {job_id} with status {job.status}")
            return

        run_id = self._ids.new_run_id(self.kind.run_id_prefix, job_id)
        try:
            await self._store.create_run(NewRun(
                run_id=run_id, job_id=job_id, runner_program=self._runner_program
            ))
        except Exception as e:
            await self._mark_job_failed(job_id, f"failed to create {self.kind.label} ai run: {e}")
            return

        logger.info(f"Processing {self.kind.label} {job_id} run_id={run_id}")
        try:
            await self._run(job, run_id)
        except Exception as e:
            reason = f"{self.kind.label} processing error: {e}"
            logger.error(f"{reason} run_id={run_id}", exc_info=True)
            await self._fail(job_id, run_id, reason)

    async def _run(self, job: JobRecord, run_id: str) -> None:
        try:
            outcome = await self._supervisor.run(job, run_id)
        except RunnerTimeoutError as e:
            if await self._recover_from_timeout(job, run_id):
                return
            await self._fail(job.job_id, run_id, str(e))
            return
        except RunnerError as e:
            await self._fail(job.job_id, run_id, str(e))
            return

        try:
            document = await read_result_json(outcome.result_file_path)
        except ResultFileError as e:
            reason = (
                f"{self.kind.label} result file invalid: {e} "
                f"path={outcome.result_file_path} exit_code={outcome.exit_code}"
            )
            await self._fail(job.job_id, run_id, reason, exit_code=outcome.exit_code)
            return

        await self._complete(job, run_id, document, outcome.exit_code, outcome.result_file_path)

    async def _recover_from_timeout(self, job: JobRecord, run_id: str) -> bool:
        """Treat a timed-out run as done if its result file is already usable."""
        result_path = self._files.result_path(job.job_id)
        try:
            document = await read_result_json(result_path)
        except ResultFileError:
            return False
        logger.info(
            f"{self.kind.label} runner timed out but result file exists for {job.job_id}, "
            f"treating as success"
        )
        await self._complete(job, run_id, document, None, result_path)
        return True

    async def _complete(
        self,
        job: JobRecord,
        run_id: str,
        document: Any,
        exit_code: Optional[int],
        result_path: str,
    ) -> None:
        result_ref_id, reply_text = extract_result_fields(
            document, self.kind.result_ref_field, self.kind.reply_field
        )
        try:
            done_job = await self._store.transition_job(job.job_id, JobTransition(
                next_status=JobStatus.DONE,
                result_ref_id=result_ref_id,
                reply_text=reply_text,
            ))
        except Exception as e:
            await self._fail(
                job.job_id,
                run_id,
                f"failed to mark {self.kind.label} done: {e}",
                exit_code=exit_code,
                reply_text=reply_text,
            )
            return

        self._schedule_notification(done_job, result_ref_id, reply_text)
        await self._finalize_run(run_id, RunFinalization(
            status=RunStatus.SUCCESS, exit_code=exit_code, reply_text=reply_text
        ))
        if self._cleanup_result:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, self._files.remove_quietly, result_path)
        logger.info(f"{self.kind.label} {job.job_id} done run_id={run_id}")

    # ---------- Failure paths ----------

    async def _fail(
        self,
        job_id: str,
        run_id: str,
        reason: str,
        exit_code: Optional[int] = None,
        reply_text: Optional[str] = None,
    ) -> None:
        logger.warning(f"{self.kind.label} {job_id} failed run_id={run_id}: {reason}")
        await self._finalize_run(run_id, RunFinalization(
            status=RunStatus.FAILED,
            exit_code=exit_code,
            failure_reason=reason,
            reply_text=reply_text,
        ))
        await self._mark_job_failed(job_id, reason)

    async def _finalize_run(self, run_id: str, finalization: RunFinalization) -> None:
        try:
            await self._store.finalize_run(run_id, finalization)
        except Exception as e:
            logger.warning(f"Failed to finalize run {run_id} as {finalization.status.value}: {e}")

    async def _mark_job_failed(self, job_id: str, reason: str) -> None:
        try:
            await self._store.transition_job(
                job_id, JobTransition(next_status=JobStatus.FAILED, failure_reason=reason)
            )
        except Exception as e:
            logger.warning(f"Failed to mark {self.kind.label} {job_id} failed: {e}")

    # ---------- Notifications ----------

    def _schedule_notification(
        self, job: JobRecord, result_ref_id: Optional[str], reply_text: str
    ) -> None:
        """Fire-and-forget: the job is already done and never waits on this."""
        if self._notifier is None or not job.requester_email:
            return
        task = asyncio.create_task(self._notify(job, result_ref_id, reply_text))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, job: JobRecord, result_ref_id: Optional[str], reply_text: str) -> None:
        try:
            await self._notifier.notify_job_done(self.kind, job, result_ref_id, reply_text)
        except Exception as e:
            logger.warning(f"Failed to send done notification for {self.kind.label} {job.job_id}: {e}")


def build_engine(
    kind: JobKind,
    store: JobStore,
    cfg: Settings,
    id_generator: RunIdGenerator,
    notifier: Optional[Notifier] = None,
    runner_settings: Optional[RunnerSettings] = None,
) -> JobEngine:
    """Assemble the engine, supervisor and handoff files for one job kind."""
    runner_settings = runner_settings or kind.load_settings()
    files = HandoffFiles(
        result_dir=runner_settings.result_dir,
        result_prefix=kind.result_file_prefix,
        payload_slug=kind.payload_file_slug,
        ttl_hours=cfg.handoff_ttl_hours,
    )
    supervisor = ProcessSupervisor(
        kind, runner_settings, store, files, store_path=kind.store_path(cfg)
    )
    return JobEngine(
        kind,
        store,
        supervisor,
        files,
        id_generator,
        runner_program=runner_settings.runner_program,
        cleanup_result_file_on_success=runner_settings.result_cleanup_on_success,
        notifier=notifier,
    )
