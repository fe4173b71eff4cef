"""Payload and result handoff files exchanged with the external runner."""

import json
import logging
import os
import re
import tempfile
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_id_for_path(job_id: str) -> str:
    """Make a job id safe to embed in a file name."""
    safe = _UNSAFE_ID_CHARS.sub("_", job_id)
    return safe or "unknown"


class HandoffFiles:
    """Manages the payload and result files for one job kind.

    Result files live under ``result_dir`` and are named
    ``<result_prefix>-<safe id>.json``; payload files go to the system temp
    directory unless ``payload_dir`` is given.
    """

    def __init__(
        self,
        result_dir: str,
        result_prefix: str,
        payload_slug: str,
        payload_dir: Optional[str] = None,
        ttl_hours: int = 24,
    ):
        self._result_dir = result_dir
        self._result_prefix = result_prefix
        self._payload_slug = payload_slug
        self._payload_dir = payload_dir or tempfile.gettempdir()
        self._ttl_seconds = ttl_hours * 3600

    @property
    def result_dir(self) -> str:
        return self._result_dir

    def ensure_result_dir(self) -> None:
        os.makedirs(self._result_dir, exist_ok=True)

    def result_path(self, job_id: str) -> str:
        safe = sanitize_id_for_path(job_id)
        return os.path.join(self._result_dir, f"{self._result_prefix}-{safe}.json")

    def payload_path(self, job_id: str) -> str:
        safe = sanitize_id_for_path(job_id)
        return os.path.join(self._payload_dir, f"staticflow-{self._payload_slug}-{safe}.json")

    def write_payload(self, path: str, payload: Dict[str, Any]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

    def remove_quietly(self, path: str) -> bool:
        """Delete a file if present. Returns True if something was removed."""
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not remove handoff file {path}: {e}")
            return False

    def cleanup_expired(self) -> int:
        """Remove result files older than TTL. Returns count of removed files."""
        now = time.time()
        removed = 0
        if not os.path.isdir(self._result_dir):
            return 0
        prefix = f"{self._result_prefix}-"
        for entry in os.listdir(self._result_dir):
            if not (entry.startswith(prefix) and entry.endswith(".json")):
                continue
            path = os.path.join(self._result_dir, entry)
            if not os.path.isfile(path):
                continue
            if now - os.path.getmtime(path) > self._ttl_seconds:
                if self.remove_quietly(path):
                    removed += 1
        return removed
