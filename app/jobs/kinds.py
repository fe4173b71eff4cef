"""Job kinds: the per-kind half of the skill-runner engine.

Everything that differs between article requests and music wishes lives
here (status table names, payload shape, environment variable names,
result fields, parent chaining). The engine itself is kind-agnostic.

To add a job kind:
1. Subclass JobKind and fill in the class attributes
2. Implement build_payload() and store_path()
3. Register the instance in KINDS
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

from app.config import (
    ArticleRequestRunnerSettings,
    MusicWishRunnerSettings,
    RunnerSettings,
    Settings,
)
from app.jobs.models import JobRecord

MAX_PARENT_CHAIN_DEPTH = 5


class JobKind(ABC):
    name: str
    label: str
    run_id_prefix: str
    result_file_prefix: str
    payload_file_slug: str
    env_prefix: str
    store_path_env: str
    chainable: bool = False
    settings_class: Type[RunnerSettings]

    # Result file fields
    result_ref_field: str
    reply_field: str = "reply_markdown"

    # Notification link: <origin>/<detail_path>/<result_ref_id>
    detail_path: str

    # Supabase table layout
    jobs_table: str
    runs_table: str
    chunks_table: str
    id_column: str
    result_ref_column: str
    param_columns: Tuple[str, ...] = ()

    def load_settings(self) -> RunnerSettings:
        return self.settings_class()

    @abstractmethod
    def store_path(self, settings: Settings) -> str:
        """Backing content-store path handed to the runner."""
        ...

    @abstractmethod
    def build_payload(
        self,
        job: JobRecord,
        *,
        store_path: str,
        skill_path: str,
        parent_chain: Optional[List[JobRecord]] = None,
    ) -> Dict[str, Any]:
        """Build the JSON document written to the payload file."""
        ...

    def runner_env(
        self,
        runner_settings: RunnerSettings,
        *,
        store_path: str,
        result_file_path: str,
    ) -> Dict[str, str]:
        return {
            f"{self.env_prefix}_SKILL_PATH": str(runner_settings.skill_path),
            self.store_path_env: store_path,
            f"{self.env_prefix}_RESULT_DIR": runner_settings.result_dir,
            f"{self.env_prefix}_RESULT_PATH": result_file_path,
        }

    def row_to_job(self, row: Dict[str, Any]) -> JobRecord:
        """Map a stored row onto a JobRecord."""
        return JobRecord(
            job_id=row[self.id_column],
            kind=self.name,
            status=row.get("status") or "pending",
            params={col: row.get(col) for col in self.param_columns},
            parent_job_id=row.get("parent_request_id") if self.chainable else None,
            result_ref_id=row.get(self.result_ref_column),
            reply_text=row.get("ai_reply"),
            failure_reason=row.get("failure_reason"),
            admin_note=row.get("admin_note"),
            requester_email=row.get("requester_email"),
            frontend_page_url=row.get("frontend_page_url"),
            attempt_count=row.get("attempt_count") or 0,
            created_at=row.get("created_at") or 0,
            updated_at=row.get("updated_at") or 0,
        )


class ArticleRequestKind(JobKind):
    name = "article_request"
    label = "article request"
    run_id_prefix = "arrun"
    result_file_prefix = "request"
    payload_file_slug = "article-request"
    env_prefix = "ARTICLE_REQUEST"
    store_path_env = "CONTENT_DB_PATH"
    chainable = True
    settings_class = ArticleRequestRunnerSettings

    result_ref_field = "ingested_article_id"
    detail_path = "posts"

    jobs_table = "article_requests"
    runs_table = "article_request_ai_runs"
    chunks_table = "article_request_ai_run_chunks"
    id_column = "request_id"
    result_ref_column = "ingested_article_id"
    param_columns = ("article_url", "title_hint", "request_message")

    def store_path(self, settings: Settings) -> str:
        return settings.content_db_path

    def build_payload(
        self,
        job: JobRecord,
        *,
        store_path: str,
        skill_path: str,
        parent_chain: Optional[List[JobRecord]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "request_id": job.job_id,
            "article_url": job.params.get("article_url") or "",
            "title_hint": job.params.get("title_hint"),
            "request_message": job.params.get("request_message") or "",
            "content_db_path": store_path,
            "skill_path": skill_path,
        }
        if job.parent_job_id:
            payload["parent_request_id"] = job.parent_job_id
        if parent_chain:
            payload["parent_context"] = [
                {
                    "request_id": parent.job_id,
                    "article_url": parent.params.get("article_url") or "",
                    "request_message": parent.params.get("request_message") or "",
                    "ingested_article_id": parent.result_ref_id,
                    "ai_reply": parent.reply_text,
                }
                for parent in parent_chain
            ]
        return payload


class MusicWishKind(JobKind):
    name = "music_wish"
    label = "music wish"
    run_id_prefix = "mwrun"
    result_file_prefix = "wish"
    payload_file_slug = "music-wish"
    env_prefix = "MUSIC_WISH"
    store_path_env = "MUSIC_DB_PATH"
    settings_class = MusicWishRunnerSettings

    result_ref_field = "ingested_song_id"
    detail_path = "media/audio"

    jobs_table = "music_wishes"
    runs_table = "music_wish_ai_runs"
    chunks_table = "music_wish_ai_run_chunks"
    id_column = "wish_id"
    result_ref_column = "ingested_song_id"
    param_columns = ("song_name", "artist_hint", "wish_message")

    def store_path(self, settings: Settings) -> str:
        return settings.music_db_path

    def build_payload(
        self,
        job: JobRecord,
        *,
        store_path: str,
        skill_path: str,
        parent_chain: Optional[List[JobRecord]] = None,
    ) -> Dict[str, Any]:
        return {
            "wish_id": job.job_id,
            "song_name": job.params.get("song_name") or "",
            "artist_hint": job.params.get("artist_hint"),
            "wish_message": job.params.get("wish_message") or "",
            "music_db_path": store_path,
            "skill_path": skill_path,
        }


KINDS: Dict[str, JobKind] = {
    kind.name: kind for kind in (ArticleRequestKind(), MusicWishKind())
}


def get_kind(name: str) -> JobKind:
    kind = KINDS.get(name)
    if kind is None:
        raise ValueError(f"Unknown job kind '{name}'")
    return kind
