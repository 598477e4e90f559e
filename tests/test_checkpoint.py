"""Tests for cursor persistence and the resume policy."""

import os

import pytest

from conftest import FakeJournalSource, make_entry
from journal_ingest.checkpoint import (
    CheckpointStore,
    ResumeMode,
    apply_resume_policy,
    resolve_state_path,
)
from journal_ingest.errors import CheckpointError, ResumeError


def _entries(n: int):
    return [make_entry(f"MESSAGE={i}".encode()) for i in range(n)]


class TestResolvePath:
    def test_relative_joined_to_workdir(self):
        assert resolve_state_path("imjournal.state", "/var/lib/rsyslog") == "/var/lib/rsyslog/imjournal.state"

    def test_absolute_unchanged(self):
        assert resolve_state_path("/tmp/state", "/var/lib/rsyslog") == "/tmp/state"


class TestCheckpointStore:
    def test_load_missing_returns_none(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        assert store.load() is None

    def test_save_and_load(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        store.save("s=abc;i=1f;b=deadbeef")
        assert store.load() == "s=abc;i=1f;b=deadbeef"
        assert (tmp_path / "state").read_text() == "s=abc;i=1f;b=deadbeef"

    def test_save_overwrites(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        store.save("first-cursor-that-is-long")
        store.save("second")
        assert (tmp_path / "state").read_text() == "second"

    def test_save_creates_directory(self, tmp_path):
        store = CheckpointStore("nested/dir/state", str(tmp_path))
        store.save("c1")
        assert store.load() == "c1"

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        store.save("c1")
        store.save("c2")
        assert os.listdir(tmp_path) == ["state"]

    def test_load_strips_trailing_newline(self, tmp_path):
        (tmp_path / "state").write_text("cursor-value\n")
        assert CheckpointStore("state", str(tmp_path)).load() == "cursor-value"

    def test_empty_file_is_an_error(self, tmp_path):
        (tmp_path / "state").write_text("")
        with pytest.raises(CheckpointError):
            CheckpointStore("state", str(tmp_path)).load()

    def test_oversized_cursor_is_an_error(self, tmp_path):
        (tmp_path / "state").write_text("x" * 1000)
        with pytest.raises(CheckpointError):
            CheckpointStore("state", str(tmp_path)).load()

    def test_save_failure_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = CheckpointStore("state", str(blocker))
        with pytest.raises(CheckpointError):
            store.save("c1")

    def test_round_trip_positions_source_identically(self, tmp_path):
        source = FakeJournalSource(_entries(5))
        for _ in range(3):
            source.advance()
        store = CheckpointStore("state", str(tmp_path))
        store.save(source.get_cursor())

        original_next = source.position
        restored = FakeJournalSource(_entries(5))
        restored.seek_cursor(store.load())
        restored.advance()
        assert restored.position == original_next
        assert restored.get_cursor() == source.get_cursor()


class TestResumePolicy:
    def test_cursor_wins_over_ignore_previous(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        store.save("s=fake;i=2")
        source = FakeJournalSource(_entries(6))
        mode = apply_resume_policy(source, store, ignore_previous=True)
        assert mode is ResumeMode.CURSOR
        assert ("seek_cursor", "s=fake;i=2") in source.calls
        assert ("seek_tail",) not in source.calls
        # Positioned on the checkpointed entry; the next advance yields the one after it.
        assert source.advance() is True
        assert source.get_cursor() == "s=fake;i=3"

    def test_ignore_previous_without_checkpoint(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        source = FakeJournalSource(_entries(4))
        mode = apply_resume_policy(source, store, ignore_previous=True)
        assert mode is ResumeMode.TAIL
        assert source.calls == [("seek_tail",), ("step_back",)]
        assert source.advance() is False

    def test_ignore_previous_without_store(self):
        source = FakeJournalSource(_entries(4))
        assert apply_resume_policy(source, None, ignore_previous=True) is ResumeMode.TAIL

    def test_default_position(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        source = FakeJournalSource(_entries(3))
        mode = apply_resume_policy(source, store, ignore_previous=False)
        assert mode is ResumeMode.HEAD
        assert source.calls == []
        assert source.position == 0

    def test_unseekable_cursor_is_a_hard_error(self, tmp_path):
        store = CheckpointStore("state", str(tmp_path))
        store.save("s=other;i=9")
        source = FakeJournalSource(_entries(3))
        with pytest.raises(ResumeError):
            apply_resume_policy(source, store, ignore_previous=True)
        assert ("seek_tail",) not in source.calls

    def test_unreadable_state_falls_through_to_tail(self, tmp_path):
        (tmp_path / "state").write_text("   \n")
        store = CheckpointStore("state", str(tmp_path))
        source = FakeJournalSource(_entries(3))
        assert apply_resume_policy(source, store, ignore_previous=True) is ResumeMode.TAIL

    def test_unreadable_state_falls_through_to_head(self, tmp_path):
        (tmp_path / "state").write_text("")
        store = CheckpointStore("state", str(tmp_path))
        source = FakeJournalSource(_entries(3))
        assert apply_resume_policy(source, store, ignore_previous=False) is ResumeMode.HEAD
