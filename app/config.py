"""Application configuration via environment variables."""

import os
import tempfile
from typing import ClassVar, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_TIMEOUT_SECONDS = 30


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Job store: "supabase" or "memory"
    job_store_backend: str = "supabase"

    # Backing content stores handed to the skill scripts
    content_db_path: str = "data/content"
    music_db_path: str = "data/music"

    # Engine
    enabled_job_kinds: str = "article_request,music_wish"
    handoff_ttl_hours: int = 24
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def job_kind_names(self) -> List[str]:
        return [k.strip() for k in self.enabled_job_kinds.split(",") if k.strip()]


class RunnerSettings(BaseSettings):
    """How one job kind invokes its external skill runner.

    Subclasses set the env prefix and the kind-specific defaults.
    """

    default_runner_args: ClassVar[str] = ""
    default_skill_relpath: ClassVar[str] = ""

    runner_program: str = "bash"
    runner_args: str = ""
    timeout_seconds: int = 300
    workdir: str = ""
    skill_path: Optional[str] = None
    result_dir: str = ""
    result_cleanup_on_success: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("timeout_seconds")
    @classmethod
    def _apply_timeout_floor(cls, value: int) -> int:
        return max(MIN_TIMEOUT_SECONDS, value)

    @model_validator(mode="after")
    def _fill_derived_defaults(self):
        if not self.workdir:
            self.workdir = os.getcwd()
        if not self.skill_path:
            self.skill_path = os.path.join(self.workdir, self.default_skill_relpath)
        return self

    @property
    def runner_argv(self) -> List[str]:
        """Runner arguments split on whitespace, falling back to the kind default."""
        args = self.runner_args.split()
        return args or self.default_runner_args.split()


class ArticleRequestRunnerSettings(RunnerSettings):
    default_runner_args: ClassVar[str] = "scripts/article_request_worker_runner.sh"
    default_skill_relpath: ClassVar[str] = "skills/external-blog-repost-publisher/SKILL.md"

    timeout_seconds: int = 3600
    result_dir: str = os.path.join(tempfile.gettempdir(), "staticflow-article-request-results")

    model_config = SettingsConfigDict(
        env_prefix="ARTICLE_REQUEST_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class MusicWishRunnerSettings(RunnerSettings):
    default_runner_args: ClassVar[str] = "scripts/music_wish_worker_runner.sh"
    default_skill_relpath: ClassVar[str] = "skills/music-ingestion-publisher/SKILL.md"

    timeout_seconds: int = 300
    result_dir: str = os.path.join(tempfile.gettempdir(), "staticflow-music-wish-results")

    model_config = SettingsConfigDict(
        env_prefix="MUSIC_WISH_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


settings = Settings()
