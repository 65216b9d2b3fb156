"""
Unit tests for backend/datachat/services/session_store.py
Tests: session lifecycle, dataset switching, idle expiry, housekeeping pass.
"""

import os
import time

import pytest

from datachat.services.agent.state import ChatTurn
from datachat.services.housekeeping import run_housekeeping_once
from datachat.services.session_store import SessionStore


class TestSessionStore:

    def test_get_or_create_is_idempotent(self):
        store = SessionStore()
        a = store.get_or_create("abc")
        assert store.get_or_create("abc") is a
        assert len(store) == 1

    def test_generated_id(self):
        session = SessionStore().get_or_create()
        assert len(session.id) == 32

    def test_messages_kept_in_order(self):
        store = SessionStore()
        store.add_message("s", ChatTurn(role="user", content="one"))
        store.add_message("s", ChatTurn(role="assistant", content="two"))
        assert [t.content for t in store.find("s").history()] == ["one", "two"]

    def test_latest_upload_is_current(self, sample_dataset):
        store = SessionStore()
        store.add_dataset("s", sample_dataset)
        second = sample_dataset.__class__(
            name="other.csv", path=sample_dataset.path, columns=("x",),
            column_types={"x": "numeric"}, total_rows=1,
        )
        store.add_dataset("s", second)
        session = store.find("s")
        assert session.current_dataset is second
        assert len(session.datasets) == 2

    def test_delete(self):
        store = SessionStore()
        store.get_or_create("s")
        assert store.delete("s").id == "s"
        assert store.delete("s") is None
        assert store.find("s") is None

    def test_to_dict(self, sample_dataset):
        store = SessionStore()
        store.add_dataset("s", sample_dataset)
        d = store.find("s").to_dict()
        assert d["session_id"] == "s"
        assert d["current_dataset"]["name"] == "employees.csv"


class TestExpiry:

    def test_idle_sessions_expire(self):
        store = SessionStore(timeout_minutes=1)
        store.get_or_create("old")
        store.get_or_create("fresh")
        store.find("old").last_activity = time.time() - 120

        expired = store.cleanup_expired()
        assert [s.id for s in expired] == ["old"]
        assert store.find("fresh") is not None

    @pytest.mark.asyncio
    async def test_housekeeping_removes_expired_uploads_and_results(self, sample_dataset, tmp_path):
        store = SessionStore(timeout_minutes=1)
        store.add_dataset("old", sample_dataset)
        store.find("old").last_activity = time.time() - 120

        results = tmp_path / "results"
        stale = results / ("a" * 32)
        stale.mkdir(parents=True)
        past = time.time() - 7 * 24 * 3600
        os.utime(stale, (past, past))

        counts = await run_housekeeping_once(store, str(results))

        assert counts == {"sessions": 1, "dataset_files": 1, "result_dirs": 1}
        assert not os.path.exists(sample_dataset.path)
        assert not stale.exists()
