import pytest

from app.db.memory_store import InMemoryJobStore
from app.jobs.errors import InvalidTransitionError, JobStoreError
from app.jobs.models import (
    ChunkStream,
    JobRecord,
    JobStatus,
    JobTransition,
    NewChunk,
    NewRun,
    RunFinalization,
    RunStatus,
    validate_transition,
)


@pytest.mark.parametrize("current,nxt", [
    ("pending", "approved"),
    ("pending", "running"),
    ("approved", "running"),
    ("approved", "rejected"),
    ("running", "done"),
    ("running", "failed"),
    ("failed", "approved"),
    ("failed", "done"),
])
def test_allowed_transitions(current, nxt):
    validate_transition(current, nxt)


@pytest.mark.parametrize("current,nxt", [
    ("done", "running"),
    ("rejected", "approved"),
    ("running", "approved"),
    ("approved", "done"),
    ("pending", "done"),
    ("bogus", "running"),
])
def test_disallowed_transitions(current, nxt):
    with pytest.raises(InvalidTransitionError):
        validate_transition(current, nxt)


@pytest.mark.asyncio
async def test_transition_writes_fields_and_counts_attempts():
    store = InMemoryJobStore()
    store.add_job(JobRecord(job_id="j1", kind="article_request", status="approved"))

    running = await store.transition_job("j1", JobTransition(next_status=JobStatus.RUNNING))
    done = await store.transition_job("j1", JobTransition(
        next_status=JobStatus.DONE, result_ref_id="a-1", reply_text="hi"
    ))

    assert running.attempt_count == 1
    assert done.status == "done"
    assert done.result_ref_id == "a-1"
    assert done.reply_text == "hi"
    assert (await store.get_job("j1")).status == "done"


@pytest.mark.asyncio
async def test_transition_errors():
    store = InMemoryJobStore()
    store.add_job(JobRecord(job_id="j1", kind="article_request", status="done"))

    with pytest.raises(InvalidTransitionError):
        await store.transition_job("j1", JobTransition(next_status=JobStatus.RUNNING))
    with pytest.raises(JobStoreError, match="job not found"):
        await store.transition_job("nope", JobTransition(next_status=JobStatus.RUNNING))


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = InMemoryJobStore()
    store.add_job(JobRecord(job_id="j1", kind="article_request", params={"article_url": "u"}))

    job = await store.get_job("j1")
    job.params["article_url"] = "changed"

    assert (await store.get_job("j1")).params["article_url"] == "u"


@pytest.mark.asyncio
async def test_runs_and_chunks():
    store = InMemoryJobStore()
    await store.create_run(NewRun(run_id="r1", job_id="j1", runner_program="bash"))
    with pytest.raises(JobStoreError, match="already exists"):
        await store.create_run(NewRun(run_id="r1", job_id="j1", runner_program="bash"))

    for index, content in [(2, "c"), (0, "a"), (1, "b")]:
        await store.append_chunk(NewChunk(
            chunk_id=f"r1-{index}", run_id="r1", job_id="j1",
            stream=ChunkStream.STDOUT, batch_index=index, content=content,
        ))
    await store.finalize_run("r1", RunFinalization(status=RunStatus.SUCCESS, exit_code=0))

    run = await store.get_run("r1")
    assert run.status == "success"
    assert run.exit_code == 0
    assert run.completed_at is not None
    assert [c.content for c in await store.list_chunks("r1")] == ["a", "b", "c"]
    assert [c.content for c in await store.list_chunks("r1", limit=2)] == ["a", "b"]
    assert [r.run_id for r in await store.list_runs("j1")] == ["r1"]

    with pytest.raises(JobStoreError):
        await store.finalize_run("missing", RunFinalization(status=RunStatus.FAILED))


@pytest.mark.asyncio
async def test_parent_chain_is_bounded():
    store = InMemoryJobStore()
    for i in range(8):
        parent = f"j{i - 1}" if i else None
        store.add_job(JobRecord(job_id=f"j{i}", kind="article_request", parent_job_id=parent))

    chain = await store.build_parent_chain("j7", max_depth=5)
    assert [j.job_id for j in chain] == ["j7", "j6", "j5", "j4", "j3"]

    short = await store.build_parent_chain("j1", max_depth=5)
    assert [j.job_id for j in short] == ["j1", "j0"]

    assert await store.build_parent_chain("missing", max_depth=5) == []
