"""Job dispatcher interface."""

from abc import ABC, abstractmethod


class JobDispatcher(ABC):
    """Abstract interface for handing job ids to a background worker."""

    @abstractmethod
    async def enqueue(self, job_id: str) -> None:
        """Queue a job id, waiting only while the queue is full."""
        ...

    @abstractmethod
    def enqueue_nowait(self, job_id: str) -> bool:
        """Queue a job id without waiting. Returns False if the queue is full."""
        ...

    @abstractmethod
    def pending(self) -> int:
        """Number of job ids waiting to be picked up."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher."""
        ...
