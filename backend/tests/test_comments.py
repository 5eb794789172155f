"""
Tests for comment lookup, debounced saving and flush points.
"""
import time

import pytest

from measurement_workflow.comments import CommentDebouncer, CommentWriter, load_initial_comment
from measurement_workflow.domain import Side
from measurement_workflow.errors import WriteError


class TestInitialComment:
    """Upstream lookup with global-comment fallback."""

    def test_upstream_comment_wins_and_is_cached(self, snapshot_reader, comment_store):
        snapshot_reader.snapshots[("SN1", "left")] = {"Comment": "  delam on tail  "}
        comment_store.set_global("SN1", "older note")

        assert load_initial_comment("SN1", "left", snapshot_reader, comment_store) == "delam on tail"
        assert comment_store.get_global("SN1") == "delam on tail"

    def test_falls_back_to_stored_comment(self, snapshot_reader, comment_store):
        comment_store.set_global("SN2", "check edge")
        snapshot_reader.snapshots[("SN2", "left")] = {"comment": "   "}
        assert load_initial_comment("SN2", "left", snapshot_reader, comment_store) == "check edge"

    def test_lookup_failure_falls_back(self, snapshot_reader, comment_store):
        snapshot_reader.fail = True
        comment_store.set_global("SN3", "stored")
        assert load_initial_comment("SN3", "right", snapshot_reader, comment_store) == "stored"

    def test_nothing_known(self, comment_store):
        assert load_initial_comment("SN4", "left", None, comment_store) == ""


class TestCommentDebouncer:
    """Trailing-edge debounce."""

    def test_only_last_edit_saved(self):
        saved = []
        debouncer = CommentDebouncer(saved.append, delay=0.05)
        debouncer.update("s")
        debouncer.update("sc")
        debouncer.update("scratch")
        time.sleep(0.3)
        assert saved == ["scratch"]
        assert not debouncer.has_pending

    def test_flush_saves_immediately(self):
        saved = []
        debouncer = CommentDebouncer(saved.append, delay=10)
        debouncer.update("scratch")
        debouncer.flush()
        assert saved == ["scratch"]
        debouncer.flush()
        assert saved == ["scratch"]

    def test_cancel_drops_pending(self):
        saved = []
        debouncer = CommentDebouncer(saved.append, delay=0.05)
        debouncer.update("scratch")
        debouncer.cancel()
        time.sleep(0.2)
        assert saved == []

    def test_flush_propagates_write_error(self):
        def broken(text):
            raise WriteError("db down")

        debouncer = CommentDebouncer(broken, delay=10)
        debouncer.update("scratch")
        with pytest.raises(WriteError):
            debouncer.flush()

    def test_failed_background_save_is_retried_on_flush(self):
        attempts = []

        def flaky(text):
            attempts.append(text)
            if len(attempts) == 1:
                raise WriteError("db busy")

        debouncer = CommentDebouncer(flaky, delay=0.05)
        debouncer.update("scratch")
        time.sleep(0.3)
        assert debouncer.last_error == "db busy"
        assert debouncer.has_pending
        debouncer.flush()
        assert attempts == ["scratch", "scratch"]

    def test_flush_during_slow_background_save_keeps_latest(self):
        saved = []

        def slow(text):
            if text == "old":
                time.sleep(0.3)
            saved.append(text)

        debouncer = CommentDebouncer(slow, delay=0.05)
        debouncer.update("old")
        time.sleep(0.1)
        debouncer.update("new")
        debouncer.flush()
        time.sleep(0.4)
        assert saved[-1] == "new"
        assert saved == ["old", "new"]
        assert not debouncer.has_pending

    def test_superseded_background_save_is_skipped(self):
        saved = []
        debouncer = CommentDebouncer(saved.append, delay=0.05)
        with debouncer._save_lock:
            debouncer.update("old")
            time.sleep(0.15)
            debouncer.update("new")
        debouncer.flush()
        time.sleep(0.2)
        assert saved == ["new"]


class TestCommentWriter:
    """Per-record and global persistence."""

    def test_writes_every_record_and_global(self, record_store, comment_store):
        left = record_store.insert("SN9", None, Side.LEFT, "op", None)
        right = record_store.insert("SN9", None, Side.RIGHT, "op", None)
        writer = CommentWriter("SN9", [left.id, right.id], record_store, comment_store)

        writer.save("bubble near binding")
        assert record_store.get(left.id).comment == "bubble near binding"
        assert record_store.get(right.id).comment == "bubble near binding"
        assert comment_store.get_global("SN9") == "bubble near binding"

        writer.save("")
        assert record_store.get(left.id).comment is None
        assert comment_store.get_global("SN9") == ""


class TestSessionComment:
    """Comment flushing at session transitions."""

    def test_flushed_before_fail_confirmation(self, service, snapshot_reader, record_store):
        snapshot_reader.fail = True
        nav = service.start_session("core_check", "SN10", side="left")
        nav.comment_debouncer.delay = 10
        service.set_comment(nav.session_id, "core void")

        nav.request_fail()
        nav.confirm_fail()
        assert record_store.get(nav.units.primary.id).comment == "core void"

    def test_flushed_before_summary(self, service, snapshot_reader, comment_store):
        snapshot_reader.fail = True
        nav = service.start_session("core_check", "SN11", side="left")
        nav.comment_debouncer.delay = 10
        nav.set_comment("ok after rework")
        nav.validate("no")
        assert comment_store.get_global("SN11") == "ok after rework"

    def test_abandon_drops_unsaved_comment(self, service, snapshot_reader, comment_store):
        snapshot_reader.fail = True
        nav = service.start_session("core_check", "SN12", side="left")
        nav.comment_debouncer.delay = 10
        nav.set_comment("never saved")
        service.abandon_session(nav.session_id)
        assert comment_store.get_global("SN12") is None
