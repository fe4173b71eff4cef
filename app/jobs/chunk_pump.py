"""Streams one runner output pipe into the job store, line by line."""

import asyncio
import itertools
import logging
from typing import Dict, List, Tuple

from app.db.job_store import JobStore
from app.jobs.models import ChunkStream, NewChunk

logger = logging.getLogger(__name__)

RUN_CHUNK_MAX_SEGMENTS = 4096

# Benign lines dropped before accumulation and persistence, per stream
NOISE_MARKERS: Dict[ChunkStream, Tuple[str, ...]] = {
    ChunkStream.STDERR: ("state db missing rollout path for thread",),
}


def is_noise(stream: ChunkStream, line: str) -> bool:
    stripped = line.strip()
    return any(marker in stripped for marker in NOISE_MARKERS.get(stream, ()))


class RunChunkSequence:
    """Batch-index counter and persisted-chunk budget shared by one run's pumps.

    Indices come from a single counter so stdout and stderr chunks are
    ordered within the run. A budget slot is reserved before the store
    write and released if the write fails, so the number of persisted
    chunks never exceeds ``max_chunks``.
    """

    def __init__(self, max_chunks: int = RUN_CHUNK_MAX_SEGMENTS):
        self._indices = itertools.count()
        self._max_chunks = max_chunks
        self._reserved = 0

    def next_index(self) -> int:
        return next(self._indices)

    def try_reserve(self) -> bool:
        if self._reserved >= self._max_chunks:
            return False
        self._reserved += 1
        return True

    def release(self) -> None:
        self._reserved -= 1

    @property
    def persisted(self) -> int:
        return self._reserved


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    """Read one line of any length; returns b"" at EOF.

    Lines longer than the reader limit are collected in pieces instead of
    failing the read.
    """
    parts: List[bytes] = []
    while True:
        try:
            parts.append(await reader.readuntil(b"\n"))
            break
        except asyncio.LimitOverrunError as e:
            parts.append(await reader.readexactly(e.consumed))
        except asyncio.IncompleteReadError as e:
            parts.append(e.partial)
            break
    return b"".join(parts)


async def pump_stream(
    reader: asyncio.StreamReader,
    *,
    store: JobStore,
    run_id: str,
    job_id: str,
    stream: ChunkStream,
    sequence: RunChunkSequence,
) -> str:
    """Read ``reader`` to EOF and return the accepted lines joined by newlines.

    Every accepted line is kept in the returned text; lines are persisted as
    chunks only while the run's budget lasts. Store failures are logged and
    do not interrupt the pump. Read errors propagate.
    """
    collected: List[str] = []
    while True:
        raw = await _read_line(reader)
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\n").rstrip("\r")
        if is_noise(stream, line):
            continue
        collected.append(line)

        if not sequence.try_reserve():
            continue
        batch_index = sequence.next_index()
        chunk = NewChunk(
            chunk_id=f"{run_id}-{batch_index}",
            run_id=run_id,
            job_id=job_id,
            stream=stream,
            batch_index=batch_index,
            content=line,
        )
        try:
            await store.append_chunk(chunk)
        except Exception as e:
            sequence.release()
            logger.warning(f"Failed to append {stream.value} chunk run_id={run_id}: {e}")

    return "\n".join(collected)
