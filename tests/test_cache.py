"""Tests for core.cache — skip decisions and fail-open behaviour."""

import json

from core.cache import FAILURE, SUCCESS, StageCache, content_hash
from core.state import StageDescriptor

STAGE = StageDescriptor(stack="core", number=3, path="stacks/core/003_x.md")


def _cache(tmp_path, **kwargs):
    return StageCache(str(tmp_path / "cache.json"), **kwargs)


def test_empty_cache_never_skips(tmp_path):
    assert _cache(tmp_path).should_skip(STAGE, "text") is False


def test_skip_after_success(tmp_path):
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", SUCCESS)
    assert cache.should_skip(STAGE, "text") is True


def test_persisted_between_instances(tmp_path):
    _cache(tmp_path).record(STAGE, "text", SUCCESS)
    assert _cache(tmp_path).should_skip(STAGE, "text") is True
    data = json.loads((tmp_path / "cache.json").read_text())
    assert data == {"core/3": {"hash": content_hash("text"), "outcome": "success"}}


def test_changed_text_is_not_skipped(tmp_path):
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", SUCCESS)
    assert cache.should_skip(STAGE, "text, edited") is False


def test_failure_is_not_skipped(tmp_path):
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", FAILURE)
    assert cache.should_skip(STAGE, "text") is False


def test_other_stack_same_number_not_skipped(tmp_path):
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", SUCCESS)
    other = StageDescriptor(stack="tests", number=3, path="stacks/tests/003_x.md")
    assert cache.should_skip(other, "text") is False


def test_invalid_json_is_treated_as_empty(tmp_path, caplog):
    (tmp_path / "cache.json").write_text("{{{ not json")
    cache = _cache(tmp_path)
    assert cache.should_skip(STAGE, "text") is False
    assert "Ignoring unreadable cache" in caplog.text


def test_wrong_shape_is_treated_as_empty(tmp_path):
    (tmp_path / "cache.json").write_text(json.dumps(["core/3"]))
    assert _cache(tmp_path).should_skip(STAGE, "text") is False


def test_malformed_entry_ignored(tmp_path):
    (tmp_path / "cache.json").write_text(json.dumps({"core/3": {"hash": 5}}))
    assert _cache(tmp_path).entries() == {}


def test_record_recovers_malformed_store(tmp_path):
    (tmp_path / "cache.json").write_text("garbage")
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", SUCCESS)
    assert _cache(tmp_path).should_skip(STAGE, "text") is True


def test_unwritable_store_does_not_raise(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    cache = StageCache(str(blocker / "cache.json"))
    cache.record(STAGE, "text", SUCCESS)
    assert "Could not write cache" in caplog.text


def test_clear_deletes_store(tmp_path):
    cache = _cache(tmp_path)
    cache.record(STAGE, "text", SUCCESS)
    cache.clear()
    assert not (tmp_path / "cache.json").exists()
    assert cache.should_skip(STAGE, "text") is False


def test_clear_without_store_is_fine(tmp_path):
    _cache(tmp_path).clear()


def test_disabled_cache_neither_skips_nor_records(tmp_path):
    cache = _cache(tmp_path, enabled=False)
    cache.record(STAGE, "text", SUCCESS)
    assert cache.should_skip(STAGE, "text") is False
    assert not (tmp_path / "cache.json").exists()
