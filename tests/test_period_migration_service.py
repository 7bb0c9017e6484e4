from __future__ import annotations

import threading
import unittest
from datetime import date
from unittest.mock import patch

from app.errors import ConflictError, NotFoundError, PartialFailureError, ValidationError
from app.models import ApprovalStatus
from app.services.period_migration import (
    _period_pair_lock,
    ensure_complete,
    exclude_duplicates,
    move_period,
)
from app.services.storage import ControlItemStore
from tests.db_utils import add_item, make_engine, make_session_factory

TODAY = date(2025, 3, 10)


class PeriodMigrationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session_factory(self.engine)()
        self.store = ControlItemStore(self.db)
        today_patcher = patch("app.services.period_migration.local_today", return_value=TODAY)
        today_patcher.start()
        self.addCleanup(today_patcher.stop)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _titles(self, period: str) -> list[str]:
        self.db.expire_all()
        return sorted(item.title for item in self.store.list_items(period=period))

    def test_moves_completed_and_not_done_items(self) -> None:
        add_item(self.db, title="Pompa", status="Tamamlandı", approval_status=ApprovalStatus.APPROVED)
        add_item(self.db, title="Vana", status="Yapılmadı")

        summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.eligible_count, 2)
        self.assertEqual(summary.moved_count, 2)
        self.assertEqual(summary.failed_count, 0)
        self.assertEqual(self._titles("Daily"), [])
        self.assertEqual(self._titles("Weekly"), ["Pompa", "Vana"])
        moved = {item.title: item for item in self.store.list_items(period="Weekly")}
        self.assertEqual(moved["Pompa"].date, TODAY)
        self.assertEqual(moved["Pompa"].status, "Tamamlandı")
        self.assertEqual(moved["Pompa"].approval_status, ApprovalStatus.PENDING)
        self.assertIsNone(moved["Pompa"].approved_by)
        self.assertEqual(sorted(summary.moved_item_ids), sorted(item.id for item in moved.values()))

    def test_date_range_excludes_items_outside_bounds(self) -> None:
        add_item(self.db, title="Ocak", status="Tamamlandı", item_date=date(2025, 1, 1))
        add_item(self.db, title="Şubat", status="Tamamlandı", item_date=date(2025, 2, 1))

        summary = move_period(
            self.store,
            "Daily",
            "Weekly",
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
        )

        self.assertEqual(summary.moved_count, 1)
        self.assertEqual(self._titles("Daily"), ["Şubat"])
        self.assertEqual(self._titles("Weekly"), ["Ocak"])

    def test_date_range_bounds_are_inclusive(self) -> None:
        add_item(self.db, title="Start", status="Tamamlandı", item_date=date(2025, 1, 1))
        add_item(self.db, title="End", status="Tamamlandı", item_date=date(2025, 1, 31))

        summary = move_period(
            self.store,
            "Daily",
            "Weekly",
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
        )

        self.assertEqual(summary.moved_count, 2)

    def test_non_migratable_statuses_stay_in_source(self) -> None:
        add_item(self.db, title="Bekleyen", status="Beklemede")
        add_item(self.db, title="Süren", status="İşlemde")
        add_item(self.db, title="İptal", status="İptal")
        add_item(self.db, title="Biten", status="Tamamlandı")

        summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.moved_count, 1)
        self.assertEqual(self._titles("Daily"), ["Bekleyen", "Süren", "İptal"])
        self.assertEqual(self._titles("Weekly"), ["Biten"])

    def test_duplicate_in_target_is_skipped(self) -> None:
        add_item(self.db, title="Check A", description="d", facility_id="1", period="Weekly", status="Beklemede")
        add_item(self.db, title="Check A", description="d", facility_id="1", status="Tamamlandı")
        add_item(self.db, title="Check B", description="d", facility_id="1", status="Tamamlandı")

        summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.skipped_duplicates, 1)
        self.assertEqual(summary.moved_count, 1)
        self.assertEqual(self._titles("Daily"), ["Check A"])
        self.assertEqual(self._titles("Weekly"), ["Check A", "Check B"])

    def test_only_duplicates_raise_conflict(self) -> None:
        add_item(self.db, title="Check A", description="d", facility_id="1", period="Weekly")
        add_item(self.db, title="Check A", description="d", facility_id="1", status="Tamamlandı")

        with self.assertRaises(ConflictError) as ctx:
            move_period(self.store, "Daily", "Weekly")

        self.assertEqual(ctx.exception.code, "ALL_ITEMS_ALREADY_IN_TARGET")
        self.assertEqual(self._titles("Daily"), ["Check A"])
        self.assertEqual(len(self.store.list_items(period="Weekly")), 1)

    def test_duplicate_match_is_exact(self) -> None:
        add_item(self.db, title="Check A", description="d", facility_id="1", period="Weekly")
        add_item(self.db, title="check a", description="d", facility_id="1", status="Tamamlandı")
        add_item(self.db, title="Check A", description="d", facility_id="2", status="Tamamlandı")

        summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.moved_count, 2)
        self.assertEqual(summary.skipped_duplicates, 0)

    def test_repeated_move_never_duplicates_target(self) -> None:
        add_item(self.db, title="Check A", description="d", facility_id="1", status="Tamamlandı")
        add_item(self.db, title="Check A", description="d", facility_id="1", status="Yapılmadı")

        first = move_period(self.store, "Daily", "Weekly")
        self.assertEqual(first.moved_count, 1)
        self.assertEqual(first.skipped_duplicates, 1)

        with self.assertRaises(ConflictError):
            move_period(self.store, "Daily", "Weekly")

        weekly = self.store.list_items(period="Weekly")
        self.assertEqual(len({item.duplicate_key() for item in weekly}), len(weekly))

    def test_validation_errors(self) -> None:
        cases = [
            (("", "Weekly"), {}, "PERIOD_REQUIRED"),
            (("Daily", None), {}, "PERIOD_REQUIRED"),
            (("Daily", "Daily"), {}, "PERIODS_IDENTICAL"),
            (("Daily", "Fortnightly"), {}, "UNKNOWN_PERIOD"),
            (("Daily", "Weekly"), {"start_date": date(2025, 1, 1)}, "INVALID_DATE_RANGE"),
            (
                ("Daily", "Weekly"),
                {"start_date": date(2025, 2, 1), "end_date": date(2025, 1, 1)},
                "INVALID_DATE_RANGE",
            ),
        ]
        for args, kwargs, code in cases:
            with self.subTest(code=code, args=args):
                with self.assertRaises(ValidationError) as ctx:
                    move_period(self.store, *args, **kwargs)
                self.assertEqual(ctx.exception.code, code)

    def test_not_found_errors_name_the_empty_stage(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            move_period(self.store, "Daily", "Weekly")
        self.assertEqual(ctx.exception.code, "SOURCE_PERIOD_EMPTY")

        add_item(self.db, title="Eski", status="Tamamlandı", item_date=date(2024, 6, 1))
        with self.assertRaises(NotFoundError) as ctx:
            move_period(self.store, "Daily", "Weekly", start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))
        self.assertEqual(ctx.exception.code, "NO_ITEMS_IN_DATE_RANGE")

        add_item(self.db, title="Bekleyen", status="Beklemede", item_date=date(2025, 1, 5))
        with self.assertRaises(NotFoundError) as ctx:
            move_period(self.store, "Daily", "Weekly", start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))
        self.assertEqual(ctx.exception.code, "NO_ELIGIBLE_ITEMS")

    def test_partial_failure_accounting(self) -> None:
        items = [add_item(self.db, title=f"Item {idx}", status="Tamamlandı") for idx in range(4)]
        failing_id = items[1].id
        original_delete = ControlItemStore.delete_item

        def _flaky_delete(store, item_id):  # type: ignore[no-untyped-def]
            if item_id == failing_id:
                raise RuntimeError("disk full")
            return original_delete(store, item_id)

        with patch.object(ControlItemStore, "delete_item", _flaky_delete):
            summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.eligible_count, 4)
        self.assertEqual(summary.moved_count, 3)
        self.assertEqual(summary.failed_count, 1)
        self.assertEqual(summary.failures[0].item_id, failing_id)
        self.assertEqual(summary.failures[0].stage, "delete")
        self.assertEqual(summary.failures[0].error, "disk full")
        self.assertEqual(self._titles("Daily"), ["Item 1"])
        self.assertEqual(self._titles("Weekly"), ["Item 0", "Item 2", "Item 3"])
        remaining = self.store.list_items(period="Daily")[0]
        self.assertEqual(remaining.id, failing_id)
        self.assertEqual(remaining.date, date(2025, 1, 1))

        with self.assertRaises(PartialFailureError) as ctx:
            ensure_complete(summary)
        self.assertEqual(ctx.exception.status_code, 207)
        self.assertEqual(ctx.exception.details["moved_count"], 3)

    def test_create_failure_is_recorded(self) -> None:
        add_item(self.db, title="Only", status="Tamamlandı")

        with patch.object(ControlItemStore, "create_item", side_effect=RuntimeError("insert failed")):
            summary = move_period(self.store, "Daily", "Weekly")

        self.assertEqual(summary.moved_count, 0)
        self.assertEqual(summary.failures[0].stage, "create")
        self.assertEqual(self._titles("Daily"), ["Only"])
        with self.assertRaises(PartialFailureError) as ctx:
            ensure_complete(summary)
        self.assertEqual(ctx.exception.status_code, 500)

    def test_atomic_mode_rolls_back_whole_batch(self) -> None:
        items = [add_item(self.db, title=f"Item {idx}", status="Tamamlandı") for idx in range(3)]
        failing_id = items[2].id
        original_delete = ControlItemStore.delete_item

        def _flaky_delete(store, item_id):  # type: ignore[no-untyped-def]
            if item_id == failing_id:
                raise RuntimeError("constraint")
            return original_delete(store, item_id)

        with patch.object(ControlItemStore, "delete_item", _flaky_delete):
            with self.assertRaises(PartialFailureError) as ctx:
                move_period(self.store, "Daily", "Weekly", atomic=True)

        self.assertEqual(ctx.exception.code, "MOVE_ROLLED_BACK")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(self._titles("Daily"), ["Item 0", "Item 1", "Item 2"])
        self.assertEqual(self._titles("Weekly"), [])

    def test_ensure_complete_passes_clean_summary(self) -> None:
        add_item(self.db, title="Only", status="Tamamlandı")

        summary = move_period(self.store, "Daily", "Weekly")

        self.assertIs(ensure_complete(summary), summary)


class ExcludeDuplicatesTests(unittest.TestCase):
    def test_first_item_by_id_wins_within_batch(self) -> None:
        engine = make_engine()
        db = make_session_factory(engine)()
        self.addCleanup(engine.dispose)
        self.addCleanup(db.close)
        first = add_item(db, title="Same", status="Tamamlandı")
        second = add_item(db, title="Same", status="Yapılmadı")

        to_move, skipped = exclude_duplicates([second, first], [])

        self.assertEqual([item.id for item in to_move], [first.id])
        self.assertEqual(skipped, 1)


class PeriodPairLockTests(unittest.TestCase):
    def test_reverse_direction_shares_lock(self) -> None:
        entered = threading.Event()

        def _reverse_move() -> None:
            with _period_pair_lock("Weekly", "Daily"):
                entered.set()

        with _period_pair_lock("Daily", "Weekly"):
            worker = threading.Thread(target=_reverse_move)
            worker.start()
            self.assertFalse(entered.wait(0.2))

        worker.join(timeout=2)
        self.assertTrue(entered.is_set())

    def test_unrelated_pair_is_not_blocked(self) -> None:
        entered = threading.Event()

        def _other_move() -> None:
            with _period_pair_lock("Monthly", "Yearly"):
                entered.set()

        with _period_pair_lock("Daily", "Weekly"):
            worker = threading.Thread(target=_other_move)
            worker.start()
            self.assertTrue(entered.wait(2))
        worker.join(timeout=2)


if __name__ == "__main__":
    unittest.main()
