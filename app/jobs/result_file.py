"""Reads the JSON result file written by the external runner."""

import asyncio
import json
from typing import Any, Optional, Tuple

from app.jobs.errors import ResultFileError


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


async def read_result_json(path: str) -> Any:
    """Parse the result file at ``path``.

    Raises ResultFileError if the file is missing or unreadable, empty after
    trimming, or not valid JSON. No schema is enforced.
    """
    loop = asyncio.get_event_loop()
    try:
        raw = await loop.run_in_executor(None, _read_text, path)
    except (OSError, UnicodeDecodeError) as e:
        raise ResultFileError(f"failed to read result file {path}: {e}") from e
    trimmed = raw.strip()
    if not trimmed:
        raise ResultFileError(f"result file is empty: {path}")
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as e:
        raise ResultFileError(f"result file is not valid JSON: {path}: {e}") from e


def extract_result_fields(
    document: Any, result_ref_field: str, reply_field: str
) -> Tuple[Optional[str], str]:
    """Pull (result_ref_id, reply_text) out of a parsed result document.

    Non-string or absent values yield None / "" rather than errors.
    """
    if not isinstance(document, dict):
        return None, ""
    ref = document.get(result_ref_field)
    reply = document.get(reply_field)
    return (
        ref if isinstance(ref, str) else None,
        reply if isinstance(reply, str) else "",
    )
