"""Job store interface used by the skill-runner engine."""

from abc import ABC, abstractmethod
from typing import List, Optional

from app.jobs.models import (
    ChunkRecord,
    JobRecord,
    JobTransition,
    NewChunk,
    NewRun,
    RunFinalization,
    RunRecord,
)


class JobStore(ABC):
    """Abstract interface for job persistence (Supabase or in-memory).

    Implementations raise JobStoreError (or a subclass) for backend
    failures, missing records and disallowed transitions.
    """

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Fetch a job by id, or None if it does not exist."""
        ...

    @abstractmethod
    async def transition_job(self, job_id: str, transition: JobTransition) -> JobRecord:
        """Move a job to a new status, writing the optional fields with it."""
        ...

    @abstractmethod
    async def create_run(self, new_run: NewRun) -> RunRecord:
        """Create an in-progress run record."""
        ...

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[RunRecord]:
        ...

    @abstractmethod
    async def finalize_run(self, run_id: str, finalization: RunFinalization) -> None:
        """Mark a run as finished."""
        ...

    @abstractmethod
    async def append_chunk(self, chunk: NewChunk) -> None:
        """Persist one captured output line."""
        ...

    @abstractmethod
    async def list_runs(self, job_id: str, limit: Optional[int] = None) -> List[RunRecord]:
        ...

    @abstractmethod
    async def list_chunks(self, run_id: str, limit: Optional[int] = None) -> List[ChunkRecord]:
        """Chunks of a run ordered by batch index."""
        ...

    async def build_parent_chain(self, start_job_id: str, max_depth: int) -> List[JobRecord]:
        """Walk parent_job_id upward from start_job_id.

        Returns ``[start, its parent, ...]`` with at most max_depth entries,
        stopping early at a missing record or an empty parent id.
        """
        chain: List[JobRecord] = []
        current_id = start_job_id
        for _ in range(max_depth):
            record = await self.get_job(current_id)
            if record is None:
                break
            chain.append(record)
            if not record.parent_job_id:
                break
            current_id = record.parent_job_id
        return chain
