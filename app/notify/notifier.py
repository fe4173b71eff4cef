"""Done-notifications for finished skill-runner jobs."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from supabase import Client

from app.jobs.models import JobRecord, now_ms

if TYPE_CHECKING:
    from app.jobs.kinds import JobKind

logger = logging.getLogger(__name__)

_SITE_PREFIX = "/static_flow"


def build_detail_url(frontend_page_url: str, detail_path: str, ref_id: str) -> str:
    """Link to the ingested item on the same origin as the requesting page.

    ``https://host/static_flow/anything?q#f`` + ``posts`` + ``abc`` ->
    ``https://host/static_flow/posts/abc``.
    """
    if not ref_id.strip():
        raise ValueError("result id is required")
    parts = urlsplit(frontend_page_url)
    if parts.scheme not in ("http", "https"):
        raise ValueError("frontend_page_url must use http or https")
    if not parts.hostname:
        raise ValueError("frontend_page_url must include a host")
    path = parts.path
    prefix = _SITE_PREFIX if path == _SITE_PREFIX or path.startswith(_SITE_PREFIX + "/") else ""
    target = f"{prefix}/{detail_path.strip('/')}/{quote(ref_id, safe='')}"
    return urlunsplit((parts.scheme, parts.netloc, target, "", ""))


class Notifier(ABC):
    """Tells the requester that their job finished."""

    @abstractmethod
    async def notify_job_done(
        self,
        kind: "JobKind",
        job: JobRecord,
        result_ref_id: Optional[str],
        reply_text: str,
    ) -> None:
        ...


class SupabaseOutboxNotifier(Notifier):
    """Queues a notification row for the external mailer to deliver."""

    def __init__(self, client: Client, table: str = "notification_outbox"):
        self._client = client
        self._table = table

    async def notify_job_done(self, kind, job, result_ref_id, reply_text):
        if not job.requester_email:
            return
        link = None
        if job.frontend_page_url and result_ref_id:
            try:
                link = build_detail_url(job.frontend_page_url, kind.detail_path, result_ref_id)
            except ValueError as e:
                logger.warning(f"No detail link for {kind.label} {job.job_id}: {e}")

        row = {
            "kind": kind.name,
            "job_id": job.job_id,
            "recipient": job.requester_email,
            "subject": f"Your {kind.label} {job.job_id} is done",
            "body": reply_text,
            "link": link,
            "created_at": now_ms(),
        }
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None, lambda: self._client.table(self._table).insert(row).execute()
        )
