"""Tests for the recurrence processor."""

import threading
import pytest
from datetime import date
from decimal import Decimal

from conftest import EDITOR_ID, OWNER_ID, make_recurrence
from tally.models.dashboard import DashboardMember, MemberStatus
from tally.models.recurrence import Frequency, RecurrenceDefinition, RecurrenceOccurrence
from tally.models.transaction import InstallmentStatus, Transaction
from tally.services.permission_service import DatabasePermissionGate
from tally.services.processor_service import (
    process_due_recurrences,
    process_recurrence,
    run_due_processing,
)


def _generated(db, recurrence_id):
    return db.query(Transaction).filter(
        Transaction.recurrence_id == recurrence_id
    ).order_by(Transaction.date, Transaction.installment_number).all()


class TestCatchUp:
    """Test generation of elapsed occurrences."""

    def test_generates_every_elapsed_period(self, db_session, sample_recurrence):
        """Four months elapsed should produce four transactions."""
        report = process_due_recurrences(db_session, date(2024, 4, 15))

        rows = _generated(db_session, sample_recurrence.id)
        assert [r.date for r in rows] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)]
        assert all(r.amount == Decimal("1200.00") for r in rows)
        assert all(r.occurrence_date == r.date for r in rows)
        assert len(report.created) == 4
        assert [o.status for o in report.outcomes] == ["ok"]

        db_session.refresh(sample_recurrence)
        assert sample_recurrence.next_due_date == date(2024, 5, 1)
        assert sample_recurrence.occurrence_index == 4
        assert sample_recurrence.last_generated_at is not None

    def test_never_generates_future_occurrences(self, db_session, sample_recurrence):
        process_due_recurrences(db_session, date(2024, 2, 29))
        rows = _generated(db_session, sample_recurrence.id)
        assert max(r.date for r in rows) <= date(2024, 2, 29)

    def test_not_due_yet(self, db_session, dashboard):
        recurrence = make_recurrence(db_session, dashboard, start_date=date(2024, 6, 1))
        report = process_due_recurrences(db_session, date(2024, 5, 31))
        assert report.created == []
        assert report.outcomes == []
        assert _generated(db_session, recurrence.id) == []

    def test_template_copied(self, db_session, dashboard, sample_account):
        recurrence = make_recurrence(
            db_session,
            dashboard,
            account_id=sample_account.id,
            subcategory="Apartment",
            notes="Paid by transfer",
        )
        process_due_recurrences(db_session, date(2024, 1, 1))

        row = _generated(db_session, recurrence.id)[0]
        assert row.dashboard_id == dashboard.id
        assert row.user_id == OWNER_ID
        assert row.account_id == sample_account.id
        assert row.category == "Housing"
        assert row.subcategory == "Apartment"
        assert row.notes == "Paid by transfer"
        assert row.group_id is None
        assert row.installment_status == InstallmentStatus.not_applicable

    def test_month_end_anchor(self, db_session, dashboard):
        """A definition on the 31st should clamp in February and return to the 31st."""
        recurrence = make_recurrence(db_session, dashboard, start_date=date(2024, 1, 31))
        process_due_recurrences(db_session, date(2024, 3, 31))

        rows = _generated(db_session, recurrence.id)
        assert [r.date for r in rows] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
        db_session.refresh(recurrence)
        assert recurrence.next_due_date == date(2024, 4, 30)

    def test_biweekly(self, db_session, dashboard):
        recurrence = make_recurrence(
            db_session, dashboard, frequency=Frequency.BIWEEKLY, start_date=date(2024, 1, 5)
        )
        process_due_recurrences(db_session, date(2024, 2, 10))
        rows = _generated(db_session, recurrence.id)
        assert [r.date for r in rows] == [date(2024, 1, 5), date(2024, 1, 19), date(2024, 2, 2)]


class TestEndDate:
    """Test deactivation at the end date."""

    def test_end_date_is_inclusive(self, db_session, dashboard):
        """end_date equal to the third occurrence should yield exactly three rows."""
        recurrence = make_recurrence(db_session, dashboard, end_date=date(2024, 3, 1))
        process_due_recurrences(db_session, date(2024, 12, 31))

        assert len(_generated(db_session, recurrence.id)) == 3
        db_session.refresh(recurrence)
        assert recurrence.is_active is False

    def test_end_date_holds_across_runs(self, db_session, dashboard):
        """Repeated runs at later dates never go past the end date."""
        recurrence = make_recurrence(db_session, dashboard, end_date=date(2024, 3, 1))
        for now in (date(2024, 1, 5), date(2024, 2, 5), date(2024, 3, 1), date(2024, 6, 1), date(2025, 1, 1)):
            process_due_recurrences(db_session, now)

        rows = _generated(db_session, recurrence.id)
        assert [r.date for r in rows] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        db_session.refresh(recurrence)
        assert recurrence.is_active is False

    def test_still_active_before_end(self, db_session, dashboard):
        recurrence = make_recurrence(db_session, dashboard, end_date=date(2024, 6, 1))
        process_due_recurrences(db_session, date(2024, 2, 15))

        assert len(_generated(db_session, recurrence.id)) == 2
        db_session.refresh(recurrence)
        assert recurrence.is_active is True

    def test_inactive_skipped(self, db_session, sample_recurrence):
        sample_recurrence.is_active = False
        db_session.commit()

        report = process_due_recurrences(db_session, date(2024, 4, 1))
        assert report.outcomes == []
        assert _generated(db_session, sample_recurrence.id) == []


class TestIdempotency:
    """Test that reruns never duplicate occurrences."""

    def test_second_run_creates_nothing(self, db_session, sample_recurrence):
        first = process_due_recurrences(db_session, date(2024, 3, 15))
        second = process_due_recurrences(db_session, date(2024, 3, 15))

        assert len(first.created) == 3
        assert second.created == []
        assert len(_generated(db_session, sample_recurrence.id)) == 3

    def test_ledger_records_each_occurrence(self, db_session, sample_recurrence):
        process_due_recurrences(db_session, date(2024, 3, 15))
        ledger = db_session.query(RecurrenceOccurrence).filter(
            RecurrenceOccurrence.recurrence_id == sample_recurrence.id
        ).all()
        assert sorted(o.occurrence_date for o in ledger) == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]

    def test_skips_occurrence_already_in_ledger(self, db_session, sample_recurrence):
        """An occurrence generated before a crash should not be generated again."""
        db_session.add(RecurrenceOccurrence(
            recurrence_id=sample_recurrence.id,
            occurrence_date=date(2024, 2, 1),
            transaction_count=1,
        ))
        db_session.commit()

        report = process_due_recurrences(db_session, date(2024, 3, 15))

        assert [r.date for r in report.created] == [date(2024, 1, 1), date(2024, 3, 1)]
        db_session.refresh(sample_recurrence)
        assert sample_recurrence.next_due_date == date(2024, 4, 1)

    def test_process_recurrence_not_due_returns_none(self, db_session, sample_recurrence, gate):
        process_recurrence(db_session, sample_recurrence.id, date(2024, 1, 1), gate)
        created, recurrence = process_recurrence(db_session, sample_recurrence.id, date(2024, 1, 1), gate)
        assert created == []
        assert recurrence is None


class TestInstallmentRecurrence:
    """Test definitions that split each occurrence."""

    def test_occurrence_becomes_installment_group(self, db_session, dashboard):
        recurrence = make_recurrence(
            db_session,
            dashboard,
            amount=Decimal("100.00"),
            installment_count=3,
            start_date=date(2024, 1, 10),
        )
        report = process_due_recurrences(db_session, date(2024, 1, 10))

        rows = _generated(db_session, recurrence.id)
        assert len(report.created) == 3
        assert len({r.group_id for r in rows}) == 1
        assert [r.installment_number for r in rows] == [1, 2, 3]
        assert [r.date for r in rows] == [date(2024, 1, 10), date(2024, 2, 10), date(2024, 3, 10)]
        assert [r.amount for r in rows] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert all(r.occurrence_date == date(2024, 1, 10) for r in rows)
        assert all(r.installment_total == 3 for r in rows)

        ledger = db_session.query(RecurrenceOccurrence).filter(
            RecurrenceOccurrence.recurrence_id == recurrence.id
        ).one()
        assert ledger.transaction_count == 3


class TestFailureIsolation:
    """Test that one definition's failure does not affect others."""

    def test_forbidden_owner_is_skipped(self, db_session, dashboard):
        """A definition whose owner lost write access stays put; others proceed."""
        allowed = make_recurrence(db_session, dashboard, user_id=OWNER_ID)
        revoked = make_recurrence(db_session, dashboard, user_id=EDITOR_ID, description="Gym")

        member = db_session.query(DashboardMember).filter(
            DashboardMember.dashboard_id == dashboard.id,
            DashboardMember.user_id == EDITOR_ID
        ).one()
        member.status = MemberStatus.REJECTED
        db_session.commit()

        report = process_due_recurrences(db_session, date(2024, 2, 15))

        statuses = {o.recurrence_id: o.status for o in report.outcomes}
        assert statuses == {allowed.id: "ok", revoked.id: "forbidden"}
        assert len(_generated(db_session, allowed.id)) == 2
        assert _generated(db_session, revoked.id) == []

        db_session.refresh(revoked)
        assert revoked.next_due_date == date(2024, 1, 1)
        assert revoked.occurrence_index == 0

    def test_unexpected_error_is_reported(self, db_session, dashboard, monkeypatch):
        broken = make_recurrence(db_session, dashboard, description="Broken")
        healthy = make_recurrence(db_session, dashboard, description="Healthy")
        broken_id = broken.id

        from tally.services import processor_service
        original = processor_service._materialize

        def flaky(recurrence, occurrence):
            if recurrence.id == broken_id:
                raise RuntimeError("boom")
            return original(recurrence, occurrence)

        monkeypatch.setattr(processor_service, "_materialize", flaky)
        report = process_due_recurrences(db_session, date(2024, 1, 1))

        statuses = {o.recurrence_id: o.status for o in report.outcomes}
        assert statuses[broken.id] == "error"
        assert statuses[healthy.id] == "ok"
        assert _generated(db_session, broken.id) == []
        assert len(_generated(db_session, healthy.id)) == 1


class _CancellingGate:
    """Permission gate that requests cancellation the first time it is asked."""

    def __init__(self, db, event):
        self.inner = DatabasePermissionGate(db)
        self.event = event

    def check(self, user_id, dashboard_id, allowed_roles=None):
        self.event.set()
        return self.inner.check(user_id, dashboard_id, allowed_roles)


class TestCancellation:
    """Test cooperative cancellation between definitions."""

    def test_stops_between_definitions(self, db_session, dashboard):
        first = make_recurrence(db_session, dashboard, start_date=date(2024, 1, 1))
        second = make_recurrence(db_session, dashboard, start_date=date(2024, 1, 2))
        event = threading.Event()

        report = process_due_recurrences(
            db_session,
            date(2024, 1, 31),
            gate=_CancellingGate(db_session, event),
            cancel_event=event,
        )

        assert report.cancelled is True
        assert len(report.outcomes) == 1
        # The definition that started is committed as a whole
        assert len(_generated(db_session, first.id)) == 1
        assert _generated(db_session, second.id) == []

    def test_cancelled_before_start(self, db_session, sample_recurrence):
        event = threading.Event()
        event.set()
        report = process_due_recurrences(db_session, date(2024, 4, 1), cancel_event=event)
        assert report.cancelled is True
        assert report.created == []


class TestRunDueProcessing:
    """Test the multi-dashboard entry point used by the scheduler."""

    def test_processes_each_dashboard(self, db_session, session_factory, dashboard, other_dashboard):
        mine = make_recurrence(db_session, dashboard)
        theirs = make_recurrence(db_session, other_dashboard, user_id=other_dashboard.owner_id)

        report = run_due_processing(session_factory, date(2024, 2, 1), max_workers=1)

        assert len(report.created) == 4
        assert report.failed == []
        assert len(_generated(db_session, mine.id)) == 2
        assert len(_generated(db_session, theirs.id)) == 2

    def test_nothing_due(self, session_factory, dashboard):
        report = run_due_processing(session_factory, date(2024, 2, 1))
        assert report.created == []
        assert report.outcomes == []


def test_dashboard_filter(db_session, dashboard, other_dashboard):
    mine = make_recurrence(db_session, dashboard)
    theirs = make_recurrence(db_session, other_dashboard, user_id=other_dashboard.owner_id)

    process_due_recurrences(db_session, date(2024, 1, 1), dashboard_id=dashboard.id)

    assert len(_generated(db_session, mine.id)) == 1
    assert _generated(db_session, theirs.id) == []
    assert db_session.get(RecurrenceDefinition, theirs.id).next_due_date == date(2024, 1, 1)
