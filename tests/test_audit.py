from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from app.audit import audit_request, log_audit
from app.models import AuditActorType


def _request(**state):  # type: ignore[no-untyped-def]
    return SimpleNamespace(state=SimpleNamespace(**state))


class AuditTests(unittest.TestCase):
    def test_admin_request_is_recorded_as_admin(self) -> None:
        db = MagicMock()
        request = _request(actor="admin", actor_id="admin", request_id="req-1")

        entry = audit_request(request, db, action="CONTROL_ITEM_APPROVED", entity_type="control_item", entity_id=7)  # type: ignore[arg-type]

        self.assertIsNotNone(entry)
        self.assertEqual(entry.actor_type, AuditActorType.ADMIN)
        self.assertEqual(entry.actor_id, "admin")
        self.assertEqual(entry.entity_id, "7")
        self.assertEqual(entry.details, {})
        db.add.assert_called_once_with(entry)
        db.commit.assert_called_once()

    def test_user_request_is_recorded_as_user(self) -> None:
        db = MagicMock()
        request = _request(actor="user", actor_id="alice")

        entry = audit_request(request, db, action="CONTROL_ITEMS_MOVED", entity_type="control_item", success=False)  # type: ignore[arg-type]

        self.assertEqual(entry.actor_type, AuditActorType.USER)
        self.assertFalse(entry.success)
        self.assertIsNone(entry.entity_id)

    def test_failed_write_is_rolled_back(self) -> None:
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("db down"))

        with self.assertLogs("app.audit", level="ERROR"):
            entry = log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id="system",
                action="CONTROL_ITEM_DELETED",
                success=True,
            )

        self.assertIsNone(entry)
        db.rollback.assert_called_once()


if __name__ == "__main__":
    unittest.main()
