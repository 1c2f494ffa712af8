"""
Sync service and conversation helper tests (no database: the session is mocked).
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from portal.db.models import Feedback
from portal.schemas import SyncItem
from portal.services.conversation_service import derive_title
from portal.services.feedback_service import build_feedback
from portal.services.sync_service import sync_payloads, STATUS_ERROR, STATUS_REJECTED, STATUS_SYNCED


def _session(fail_on_commit=()):
    """Mock AsyncSession whose n-th commit (1-based) raises when listed in ``fail_on_commit``."""
    db = MagicMock()
    db.rollback = AsyncMock()
    calls = {"n": 0}

    async def commit():
        calls["n"] += 1
        if calls["n"] in fail_on_commit:
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    db.commit = AsyncMock(side_effect=commit)
    return db


class TestSyncPayloads(unittest.TestCase):

    def _run(self, db, items):
        return asyncio.run(sync_payloads(db, [SyncItem(**item) for item in items]))

    def test_storage_failure_is_transient_and_isolated(self):
        db = _session(fail_on_commit={2})
        result = self._run(db, [
            {"id": 1, "type": "feedback", "payload": {"rating": 5}},
            {"id": 2, "type": "feedback", "payload": {"rating": 4}},
            {"id": 3, "type": "feedback", "payload": {"rating": 3}},
        ])

        self.assertEqual([r["status"] for r in result["results"]], [STATUS_SYNCED, STATUS_ERROR, STATUS_SYNCED])
        self.assertEqual(result["synced"], 2)
        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["message"], "Successfully synced 2 items, 1 errors")
        db.rollback.assert_awaited_once()

    def test_rejections_never_touch_the_database(self):
        db = _session()
        result = self._run(db, [
            {"id": 1, "type": None, "payload": {"rating": 5}},
            {"id": 2, "type": "feedback", "payload": {"rating": "five"}},
        ])

        self.assertEqual([r["status"] for r in result["results"]], [STATUS_REJECTED, STATUS_REJECTED])
        db.add.assert_not_called()
        db.commit.assert_not_awaited()

    def test_synced_rows_are_tagged(self):
        db = _session()
        self._run(db, [{"type": "feedback", "payload": {"rating": 2, "serviceId": "svc_passport"}}])

        row = db.add.call_args[0][0]
        self.assertIsInstance(row, Feedback)
        self.assertEqual(row.source, "sync")
        self.assertEqual(row.service_id, "svc_passport")


class TestBuildFeedback(unittest.TestCase):

    def test_blank_text_becomes_none(self):
        row = build_feedback({"rating": "4", "comment": "   ", "suggestion": " Plus d'horaires "})
        self.assertEqual(row.rating, 4)
        self.assertIsNone(row.comment)
        self.assertEqual(row.suggestion, "Plus d'horaires")

    def test_rating_bounds(self):
        for rating in (0, 6, None, "x"):
            with self.assertRaises(ValueError):
                build_feedback({"rating": rating})


class TestDeriveTitle(unittest.TestCase):

    def test_short_message_kept(self):
        self.assertEqual(derive_title("  Passeport  "), "Passeport")

    def test_long_message_truncated(self):
        text = "a" * 60
        self.assertEqual(derive_title(text), "a" * 50 + "...")

    def test_exactly_fifty_characters(self):
        self.assertEqual(derive_title("b" * 50), "b" * 50)


if __name__ == "__main__":
    unittest.main()
