"""Job, run and chunk records shared by the engine and the job stores."""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.jobs.errors import InvalidTransitionError


def now_ms() -> int:
    return int(time.time() * 1000)


class JobStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    REJECTED = "rejected"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ChunkStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


# current -> allowed next statuses
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.APPROVED, JobStatus.RUNNING, JobStatus.REJECTED},
    JobStatus.APPROVED: {JobStatus.RUNNING, JobStatus.REJECTED},
    JobStatus.RUNNING: {JobStatus.DONE, JobStatus.FAILED},
    JobStatus.FAILED: {JobStatus.APPROVED, JobStatus.RUNNING, JobStatus.REJECTED, JobStatus.DONE},
}


def validate_transition(current: str, next_status: str) -> None:
    """Raise InvalidTransitionError unless current -> next_status is allowed."""
    try:
        cur = JobStatus(current)
        nxt = JobStatus(next_status)
    except ValueError:
        raise InvalidTransitionError(f"invalid job transition: {current} -> {next_status}")
    if nxt not in _ALLOWED_TRANSITIONS.get(cur, set()):
        raise InvalidTransitionError(f"invalid job transition: {current} -> {next_status}")


class JobRecord(BaseModel):
    """One unit of delegated work as seen by the engine."""
    job_id: str
    kind: str
    status: str = JobStatus.PENDING.value
    params: Dict[str, Any] = Field(default_factory=dict)
    parent_job_id: Optional[str] = None
    result_ref_id: Optional[str] = None
    reply_text: Optional[str] = None
    failure_reason: Optional[str] = None
    admin_note: Optional[str] = None
    requester_email: Optional[str] = None
    frontend_page_url: Optional[str] = None
    attempt_count: int = 0
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class JobTransition(BaseModel):
    """Requested status change plus the optional fields written with it."""
    next_status: JobStatus
    admin_note: Optional[str] = None
    failure_reason: Optional[str] = None
    result_ref_id: Optional[str] = None
    reply_text: Optional[str] = None


class NewRun(BaseModel):
    run_id: str
    job_id: str
    runner_program: str


class RunRecord(BaseModel):
    run_id: str
    job_id: str
    status: str = RunStatus.RUNNING.value
    runner_program: str
    exit_code: Optional[int] = None
    reply_text: Optional[str] = None
    failure_reason: Optional[str] = None
    started_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    completed_at: Optional[int] = None


class RunFinalization(BaseModel):
    status: RunStatus
    exit_code: Optional[int] = None
    failure_reason: Optional[str] = None
    reply_text: Optional[str] = None


class NewChunk(BaseModel):
    chunk_id: str
    run_id: str
    job_id: str
    stream: ChunkStream
    batch_index: int
    content: str


class ChunkRecord(NewChunk):
    created_at: int = Field(default_factory=now_ms)


class RunnerOutcome(BaseModel):
    """Normalized result of one external runner invocation."""
    success: bool
    exit_code: Optional[int] = None
    stdout_text: str = ""
    stderr_text: str = ""
    result_file_path: str
