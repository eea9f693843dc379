"""
Tests for maxwell.mailbox.MailboxPoller.

Covers:
  - drain ordering, joining and deletion
  - malformed and ignored entries are deleted without blocking later ones
  - non-.json files are left alone
  - the close sentinel wins over pending messages
  - wait_for_next sleeps between empty polls
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from maxwell.mailbox import MailboxPoller


@pytest.fixture()
def inbox(workspace: Path) -> Path:
    return workspace / "ipc" / "input"


@pytest.fixture()
def poller(inbox: Path) -> MailboxPoller:
    return MailboxPoller(inbox, inbox / "_close", poll_interval=0.01)


def _write(inbox: Path, name: str, payload) -> Path:
    path = inbox / name
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return path


class TestDrain:
    def test_drains_in_filename_order_and_deletes(self, inbox, poller):
        _write(inbox, "msg-002.json", {"type": "message", "text": "b"})
        _write(inbox, "msg-001.json", {"type": "message", "text": "a"})

        assert poller.drain() == ["a", "b"]
        assert list(inbox.iterdir()) == []

    def test_invalid_json_is_deleted_and_skipped(self, inbox, poller):
        _write(inbox, "msg-001.json", "{not json")
        _write(inbox, "msg-002.json", {"type": "message", "text": "still here"})

        assert poller.drain() == ["still here"]
        assert not (inbox / "msg-001.json").exists()
        assert not (inbox / "msg-002.json").exists()
        assert poller.stats["discarded"] == 1

    def test_ignored_types_are_deleted(self, inbox, poller):
        _write(inbox, "a.json", {"type": "typing"})
        _write(inbox, "b.json", {"type": "message"})
        _write(inbox, "c.json", {"text": "no type"})

        assert poller.drain() == []
        assert list(inbox.iterdir()) == []

    def test_non_json_files_untouched(self, inbox, poller):
        keep = _write(inbox, "notes.txt", "leave me")
        _write(inbox, "m.json", {"type": "message", "text": "x"})

        assert poller.drain() == ["x"]
        assert keep.exists()

    def test_missing_directory_is_empty(self, tmp_path):
        poller = MailboxPoller(tmp_path / "nope", tmp_path / "nope" / "_close")
        assert poller.drain() == []


class TestCloseSentinel:
    def test_check_close_consumes_sentinel(self, inbox, poller):
        sentinel = inbox / "_close"
        sentinel.touch()

        assert poller.check_close() is True
        assert not sentinel.exists()
        assert poller.check_close() is False

    @pytest.mark.asyncio
    async def test_sentinel_wins_over_pending_messages(self, inbox, poller):
        _write(inbox, "msg-001.json", {"type": "message", "text": "late"})
        (inbox / "_close").touch()

        assert await poller.wait_for_next() is None
        assert not (inbox / "_close").exists()
        # Pending message is left for nobody; it was not drained.
        assert (inbox / "msg-001.json").exists()


class TestWaitForNext:
    @pytest.mark.asyncio
    async def test_returns_joined_messages(self, inbox, poller):
        _write(inbox, "msg-001.json", {"type": "message", "text": "a"})
        _write(inbox, "msg-002.json", {"type": "message", "text": "b"})

        assert await poller.wait_for_next() == "a\nb"
        assert list(inbox.iterdir()) == []

    @pytest.mark.asyncio
    async def test_sleeps_until_message_arrives(self, inbox):
        sleeps: list[float] = []

        async def fake_sleep(interval: float) -> None:
            sleeps.append(interval)
            if len(sleeps) == 3:
                _write(inbox, "msg-001.json", {"type": "message", "text": "finally"})

        poller = MailboxPoller(inbox, inbox / "_close", poll_interval=0.5, sleep=fake_sleep)

        assert await poller.wait_for_next() == "finally"
        assert sleeps == [0.5, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_only_malformed_entries_keep_waiting(self, inbox):
        calls = 0

        async def fake_sleep(interval: float) -> None:
            nonlocal calls
            calls += 1
            (inbox / "_close").touch()

        _write(inbox, "bad.json", "][")
        poller = MailboxPoller(inbox, inbox / "_close", sleep=fake_sleep)

        assert await poller.wait_for_next() is None
        assert calls == 1
        assert not (inbox / "bad.json").exists()
