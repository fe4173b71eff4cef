"""Runs the external skill runner for one job under a wall-clock budget."""

import asyncio
import logging
import os
import signal
from typing import List, Optional, Sequence

from app.config import RunnerSettings
from app.db.job_store import JobStore
from app.jobs.chunk_pump import RunChunkSequence, pump_stream
from app.jobs.errors import RunnerError, RunnerTimeoutError
from app.jobs.kinds import MAX_PARENT_CHAIN_DEPTH, JobKind
from app.jobs.models import ChunkStream, JobRecord, RunnerOutcome
from app.storage.handoff_files import HandoffFiles

logger = logging.getLogger(__name__)

# Per-line read limit for runner pipes (JSON event streams can be long)
STREAM_LIMIT_BYTES = 8 * 1024 * 1024

# How long pumps get to hit EOF after the runner is killed
KILL_DRAIN_GRACE_SECONDS = 5.0


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    try:
        if os.name == "posix":
            # Runner is a session leader, so its pid is also the group id
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


class ProcessSupervisor:
    """Spawns the runner, pumps its output, and enforces the timeout.

    run() writes the payload file, starts
    ``<runner_program> <runner_args...> <payload_path>`` with the kind's
    environment, and returns a RunnerOutcome once the process has exited and
    both output pumps are drained. The payload file is removed on every
    exit path.
    """

    def __init__(
        self,
        kind: JobKind,
        runner_settings: RunnerSettings,
        store: JobStore,
        files: HandoffFiles,
        store_path: str,
        kill_grace_seconds: float = KILL_DRAIN_GRACE_SECONDS,
    ):
        self._kind = kind
        self._settings = runner_settings
        self._store = store
        self._files = files
        self._store_path = store_path
        self._kill_grace = kill_grace_seconds

    async def run(self, job: JobRecord, run_id: str) -> RunnerOutcome:
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self._files.ensure_result_dir)
        except OSError as e:
            raise RunnerError(
                f"failed to ensure {self._kind.label} result dir {self._files.result_dir}: {e}"
            ) from e
        result_path = self._files.result_path(job.job_id)
        # A stale file from an earlier attempt would read as this run's result
        await loop.run_in_executor(None, self._files.remove_quietly, result_path)

        parent_chain = await self._parent_chain(job)
        payload = self._kind.build_payload(
            job,
            store_path=self._store_path,
            skill_path=str(self._settings.skill_path),
            parent_chain=parent_chain,
        )
        payload_path = self._files.payload_path(job.job_id)
        try:
            try:
                await loop.run_in_executor(None, self._files.write_payload, payload_path, payload)
            except (OSError, TypeError, ValueError) as e:
                raise RunnerError(f"failed to write payload {payload_path}: {e}") from e
            return await self._execute(job, run_id, payload_path, result_path)
        finally:
            await loop.run_in_executor(None, self._files.remove_quietly, payload_path)

    async def _parent_chain(self, job: JobRecord) -> List[JobRecord]:
        if not self._kind.chainable or not job.parent_job_id:
            return []
        try:
            return await self._store.build_parent_chain(job.parent_job_id, MAX_PARENT_CHAIN_DEPTH)
        except Exception as e:
            logger.warning(f"Parent chain unavailable for {self._kind.label} {job.job_id}: {e}")
            return []

    def _command(self, payload_path: str) -> List[str]:
        return [self._settings.runner_program, *self._settings.runner_argv, payload_path]

    async def _execute(
        self, job: JobRecord, run_id: str, payload_path: str, result_path: str
    ) -> RunnerOutcome:
        env = dict(os.environ)
        env.update(self._kind.runner_env(
            self._settings, store_path=self._store_path, result_file_path=result_path
        ))
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(payload_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._settings.workdir,
                env=env,
                limit=STREAM_LIMIT_BYTES,
                start_new_session=(os.name == "posix"),
            )
        except (OSError, ValueError) as e:
            raise RunnerError(f"failed to execute {self._kind.label} runner command: {e}") from e

        if process.stdout is None or process.stderr is None:
            _kill_process_tree(process)
            await process.wait()
            raise RunnerError("missing runner stdout/stderr pipe")

        logger.info(f"Started {self._kind.label} runner pid={process.pid} run_id={run_id}")
        sequence = RunChunkSequence()
        stdout_task = asyncio.create_task(pump_stream(
            process.stdout, store=self._store, run_id=run_id, job_id=job.job_id,
            stream=ChunkStream.STDOUT, sequence=sequence,
        ))
        stderr_task = asyncio.create_task(pump_stream(
            process.stderr, store=self._store, run_id=run_id, job_id=job.job_id,
            stream=ChunkStream.STDERR, sequence=sequence,
        ))
        pumps = [stdout_task, stderr_task]

        loop = asyncio.get_event_loop()
        timeout = float(self._settings.timeout_seconds)
        deadline = loop.time() + timeout
        returncode: Optional[int] = None
        timed_out = False
        try:
            try:
                returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
            if not timed_out:
                # Descendants may still hold the pipes open after the runner exits;
                # trailing output gets at least the kill grace period
                drain_window = max(self._kill_grace, deadline - loop.time())
                _, pending = await asyncio.wait(pumps, timeout=drain_window)
                timed_out = bool(pending)
        except asyncio.CancelledError:
            _kill_process_tree(process)
            for task in pumps:
                task.cancel()
            raise
        except Exception as e:
            _kill_process_tree(process)
            await self._drain(pumps)
            raise RunnerError(f"failed to wait {self._kind.label} runner: {e}") from e

        if timed_out:
            logger.warning(f"{self._kind.label} runner exceeded {timeout:g}s, killing run_id={run_id}")
            _kill_process_tree(process)
            await process.wait()
            await self._drain(pumps)
            raise RunnerTimeoutError(self._kind.label, timeout)

        stdout_text = self._pump_text(stdout_task, ChunkStream.STDOUT)
        stderr_text = self._pump_text(stderr_task, ChunkStream.STDERR)
        logger.info(
            f"{self._kind.label} runner exited code={returncode} run_id={run_id} "
            f"chunks={sequence.persisted}"
        )
        return RunnerOutcome(
            success=returncode == 0,
            # Negative return codes mean "killed by signal": no exit code
            exit_code=returncode if returncode is not None and returncode >= 0 else None,
            stdout_text=stdout_text,
            stderr_text=stderr_text,
            result_file_path=result_path,
        )

    async def _drain(self, pumps: Sequence[asyncio.Task]) -> None:
        """Give the pumps a grace period to reach EOF, then cancel stragglers."""
        _, pending = await asyncio.wait(pumps, timeout=self._kill_grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)

    @staticmethod
    def _pump_text(task: asyncio.Task, stream: ChunkStream) -> str:
        try:
            return task.result()
        except Exception as e:
            raise RunnerError(f"{stream.value} pump failed: {e}") from e
