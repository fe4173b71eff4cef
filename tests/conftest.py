"""Pytest configuration and fixtures."""

import sys
import textwrap

import pytest

from app.config import ArticleRequestRunnerSettings, MusicWishRunnerSettings
from app.db.memory_store import InMemoryJobStore
from app.jobs.engine import JobEngine
from app.jobs.ids import RunIdGenerator
from app.jobs.kinds import KINDS
from app.jobs.models import JobRecord
from app.jobs.supervisor import ProcessSupervisor
from app.storage.handoff_files import HandoffFiles

_SETTINGS_CLASSES = {
    "article_request": ArticleRequestRunnerSettings,
    "music_wish": MusicWishRunnerSettings,
}

# Prepended to every runner script: loads the payload and knows where the
# result file goes. Scripts call write_result({...}) to finish.
_RUNNER_PRELUDE = """\
import json, os, sys, time

payload_path = sys.argv[-1]
with open(payload_path, encoding="utf-8") as f:
    payload = json.load(f)
result_path = os.environ["{env_prefix}_RESULT_PATH"]


def write_result(doc):
    tmp = result_path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(doc, f)
    os.replace(tmp, result_path)

"""


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def make_job(store):
    """Seed a job into the in-memory store."""

    def _make(job_id="req-1", kind="article_request", status="approved", **fields):
        if "params" not in fields:
            if kind == "article_request":
                fields["params"] = {
                    "article_url": "https://example.com/post",
                    "title_hint": None,
                    "request_message": "please repost",
                }
            else:
                fields["params"] = {
                    "song_name": "Song",
                    "artist_hint": "Artist",
                    "wish_message": "play it",
                }
        job = JobRecord(job_id=job_id, kind=kind, status=status, **fields)
        store.add_job(job)
        return job

    return _make


@pytest.fixture
def runner_script(tmp_path):
    """Write a Python runner script; returns its path."""
    counter = {"n": 0}

    def _write(body: str, kind: str = "article_request") -> str:
        counter["n"] += 1
        path = tmp_path / f"runner_{counter['n']}.py"
        prelude = _RUNNER_PRELUDE.format(env_prefix=KINDS[kind].env_prefix)
        path.write_text(prelude + textwrap.dedent(body), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def runner_settings(tmp_path):
    def _settings(script: str, kind: str = "article_request", timeout: float = 10, **overrides):
        cls = _SETTINGS_CLASSES[kind]
        cfg = cls(
            runner_program=sys.executable,
            runner_args=script,
            workdir=str(tmp_path),
            result_dir=str(tmp_path / "results"),
            skill_path=str(tmp_path / "SKILL.md"),
        )
        # Below the production floor so timeouts are quick to exercise
        return cfg.model_copy(update={"timeout_seconds": timeout, **overrides})

    return _settings


@pytest.fixture
def handoff_files(tmp_path):
    def _files(kind: str = "article_request") -> HandoffFiles:
        job_kind = KINDS[kind]
        payload_dir = tmp_path / "payloads"
        payload_dir.mkdir(exist_ok=True)
        return HandoffFiles(
            result_dir=str(tmp_path / "results"),
            result_prefix=job_kind.result_file_prefix,
            payload_slug=job_kind.payload_file_slug,
            payload_dir=str(payload_dir),
        )

    return _files


@pytest.fixture
def make_engine(store, runner_settings, handoff_files, tmp_path):
    """Engine wired to the in-memory store and a Python runner script."""

    def _engine(
        script: str,
        kind: str = "article_request",
        timeout: float = 10,
        notifier=None,
        job_store=None,
        cleanup: bool = True,
        runner_program=None,
    ) -> JobEngine:
        job_kind = KINDS[kind]
        job_store = job_store or store
        overrides = {"result_cleanup_on_success": cleanup}
        if runner_program:
            overrides["runner_program"] = runner_program
        cfg = runner_settings(script, kind=kind, timeout=timeout, **overrides)
        files = handoff_files(kind)
        supervisor = ProcessSupervisor(
            job_kind, cfg, job_store, files,
            store_path=str(tmp_path / "db"),
            kill_grace_seconds=2.0,
        )
        return JobEngine(
            job_kind,
            job_store,
            supervisor,
            files,
            RunIdGenerator(),
            runner_program=cfg.runner_program,
            cleanup_result_file_on_success=cfg.result_cleanup_on_success,
            notifier=notifier,
        )

    return _engine
