import pytest

from app.jobs.errors import ResultFileError
from app.jobs.result_file import extract_result_fields, read_result_json


@pytest.mark.asyncio
async def test_reads_valid_json(tmp_path):
    path = tmp_path / "request-1.json"
    path.write_text('  {"ingested_article_id": "a1", "reply_markdown": "ok"}\n', encoding="utf-8")

    doc = await read_result_json(str(path))

    assert doc == {"ingested_article_id": "a1", "reply_markdown": "ok"}


@pytest.mark.asyncio
async def test_missing_file(tmp_path):
    path = tmp_path / "nope.json"
    with pytest.raises(ResultFileError, match="failed to read result file"):
        await read_result_json(str(path))


@pytest.mark.asyncio
async def test_empty_file(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text(" \n\t", encoding="utf-8")
    with pytest.raises(ResultFileError, match="result file is empty"):
        await read_result_json(str(path))


@pytest.mark.asyncio
async def test_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ResultFileError, match="not valid JSON") as exc:
        await read_result_json(str(path))
    assert str(path) in str(exc.value)


def test_extract_fields_defaults():
    assert extract_result_fields({}, "ingested_song_id", "reply_markdown") == (None, "")
    assert extract_result_fields(
        {"ingested_song_id": 42, "reply_markdown": None}, "ingested_song_id", "reply_markdown"
    ) == (None, "")
    assert extract_result_fields(["unexpected"], "ingested_song_id", "reply_markdown") == (None, "")
    assert extract_result_fields(
        {"ingested_song_id": "s-1", "reply_markdown": "added"}, "ingested_song_id", "reply_markdown"
    ) == ("s-1", "added")
