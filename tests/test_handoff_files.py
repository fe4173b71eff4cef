import json
import os
import time

from app.jobs.ids import RunIdGenerator
from app.storage.handoff_files import HandoffFiles, sanitize_id_for_path


def test_sanitize_id_for_path():
    assert sanitize_id_for_path("req-1.a_b") == "req-1.a_b"
    assert sanitize_id_for_path("../etc/passwd") == ".._etc_passwd"
    assert sanitize_id_for_path("") == "unknown"


def test_paths(tmp_path):
    files = HandoffFiles(str(tmp_path / "results"), "request", "article-request",
                         payload_dir=str(tmp_path))

    assert files.result_path("a/b") == str(tmp_path / "results" / "request-a_b.json")
    assert files.payload_path("a/b") == str(tmp_path / "staticflow-article-request-a_b.json")


def test_write_payload_and_remove(tmp_path):
    files = HandoffFiles(str(tmp_path / "results"), "wish", "music-wish", payload_dir=str(tmp_path))
    path = files.payload_path("wish-1")

    files.write_payload(path, {"song_name": "Café"})

    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"song_name": "Café"}
    assert files.remove_quietly(path) is True
    assert files.remove_quietly(path) is False


def test_cleanup_expired_only_touches_old_result_files(tmp_path):
    files = HandoffFiles(str(tmp_path / "results"), "wish", "music-wish", ttl_hours=1)
    assert files.cleanup_expired() == 0

    files.ensure_result_dir()
    old = files.result_path("old")
    fresh = files.result_path("fresh")
    other = os.path.join(files.result_dir, "notes.json")
    for path in (old, fresh, other):
        with open(path, "w", encoding="utf-8") as f:
            f.write("{}")
    two_hours_ago = time.time() - 7200
    os.utime(old, (two_hours_ago, two_hours_ago))
    os.utime(other, (two_hours_ago, two_hours_ago))

    assert files.cleanup_expired() == 1
    assert not os.path.exists(old)
    assert os.path.exists(fresh)
    assert os.path.exists(other)


def test_run_ids_are_strictly_increasing_within_a_millisecond():
    generator = RunIdGenerator(clock=lambda: 1700000000.0)

    first = generator.new_run_id("arrun", "req-1")
    second = generator.new_run_id("arrun", "req-1")
    third = generator.new_run_id("mwrun", "wish-1")

    assert first == "arrun-req-1-1700000000000"
    assert second == "arrun-req-1-1700000000001"
    assert third == "mwrun-wish-1-1700000000002"
