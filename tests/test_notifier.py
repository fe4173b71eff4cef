import pytest

from app.jobs.kinds import KINDS
from app.jobs.models import JobRecord
from app.notify.notifier import SupabaseOutboxNotifier, build_detail_url


def test_detail_url_keeps_site_prefix():
    url = build_detail_url(
        "https://blog.example.com/static_flow/requests?tab=1#top", "posts", "abc"
    )
    assert url == "https://blog.example.com/static_flow/posts/abc"


def test_detail_url_without_prefix_and_with_port():
    url = build_detail_url("http://localhost:8080/music", "/media/audio/", "song 1/2")
    assert url == "http://localhost:8080/media/audio/song%201%2F2"


@pytest.mark.parametrize("page_url,ref_id", [
    ("ftp://example.com/x", "abc"),
    ("https:///no-host", "abc"),
    ("https://example.com/", "  "),
])
def test_detail_url_rejects_bad_input(page_url, ref_id):
    with pytest.raises(ValueError):
        build_detail_url(page_url, "posts", ref_id)


class FakeTable:
    def __init__(self, sink):
        self._sink = sink

    def insert(self, row):
        self._sink.append(row)
        return self

    def execute(self):
        return self


class FakeClient:
    def __init__(self):
        self.rows = []
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return FakeTable(self.rows)


@pytest.mark.asyncio
async def test_outbox_notifier_queues_row():
    client = FakeClient()
    notifier = SupabaseOutboxNotifier(client)
    job = JobRecord(
        job_id="wish-1",
        kind="music_wish",
        requester_email="fan@example.com",
        frontend_page_url="https://example.com/static_flow/wishes",
    )

    await notifier.notify_job_done(KINDS["music_wish"], job, "song-9", "added")

    assert client.tables == ["notification_outbox"]
    row = client.rows[0]
    assert row["recipient"] == "fan@example.com"
    assert row["link"] == "https://example.com/static_flow/media/audio/song-9"
    assert row["body"] == "added"
    assert row["kind"] == "music_wish"


@pytest.mark.asyncio
async def test_outbox_notifier_without_page_url_sends_no_link():
    client = FakeClient()
    job = JobRecord(job_id="req-1", kind="article_request", requester_email="r@example.com")

    await SupabaseOutboxNotifier(client).notify_job_done(KINDS["article_request"], job, "a-1", "ok")

    assert client.rows[0]["link"] is None


@pytest.mark.asyncio
async def test_outbox_notifier_unusable_page_url_still_notifies():
    client = FakeClient()
    job = JobRecord(
        job_id="req-1",
        kind="article_request",
        requester_email="r@example.com",
        frontend_page_url="javascript:alert(1)",
    )

    await SupabaseOutboxNotifier(client).notify_job_done(KINDS["article_request"], job, "art-1", "ok")

    assert len(client.rows) == 1
    assert client.rows[0]["recipient"] == "r@example.com"
    assert client.rows[0]["link"] is None
