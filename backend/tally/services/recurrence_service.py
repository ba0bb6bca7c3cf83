"""Service for recurrence definition management."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tally.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from tally.models.account import Account
from tally.models.recurrence import RecurrenceDefinition, RecurrenceOccurrence
from tally.schemas.recurrence import RecurrenceCreate, RecurrenceUpdate
from tally.services import period_calculator
from tally.services.installment_service import check_money, split_amount
from tally.services.locks import recurrence_locks
from tally.services.permission_service import PermissionGate, WRITE_ROLES

logger = logging.getLogger(__name__)

# Fields a client may clear by sending null
NULLABLE_FIELDS = {"subcategory", "notes", "account_id", "end_date", "installment_count"}


def _validate_schedule(interval, start_date, end_date, installment_count) -> None:
    if interval is None or interval <= 0:
        raise ValidationError("interval must be a positive integer", {"interval": interval})
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must not be before start_date", {"end_date": end_date.isoformat()})
    if installment_count is not None and installment_count < 1:
        raise ValidationError("installment_count must be at least 1", {"installment_count": installment_count})


def _validate_amount(amount: Decimal, installment_count: Optional[int] = None) -> None:
    """Reject amounts the processor could not materialize."""
    check_money(amount, "amount")
    if installment_count is not None and installment_count >= 2:
        split_amount(amount, installment_count)


def _check_account(db: Session, account_id: Optional[str], dashboard_id: str) -> None:
    if not account_id:
        return
    account = db.query(Account).filter(
        Account.id == account_id,
        Account.dashboard_id == dashboard_id
    ).first()
    if not account:
        raise NotFoundError("Account")


def create_recurrence(
    db: Session,
    dashboard_id: str,
    user_id: str,
    data: RecurrenceCreate,
    gate: PermissionGate
) -> RecurrenceDefinition:
    """Create a definition whose first occurrence is its start date."""
    _validate_schedule(data.interval, data.start_date, data.end_date, data.installment_count)
    _validate_amount(data.amount, data.installment_count)

    gate.check(user_id, dashboard_id, WRITE_ROLES)
    _check_account(db, data.account_id, dashboard_id)

    recurrence = RecurrenceDefinition(
        dashboard_id=dashboard_id,
        user_id=user_id,
        description=data.description,
        amount=data.amount,
        entry_type=data.entry_type,
        category=data.category,
        subcategory=data.subcategory,
        notes=data.notes,
        account_id=data.account_id,
        frequency=data.frequency,
        interval=data.interval,
        start_date=data.start_date,
        end_date=data.end_date,
        installment_count=data.installment_count,
        anchor_date=data.start_date,
        occurrence_index=0,
        next_due_date=data.start_date,
        is_active=True,
    )
    db.add(recurrence)
    db.commit()
    db.refresh(recurrence)

    logger.info(f"Created recurrence {recurrence.id} ({recurrence.frequency.value}) in dashboard {dashboard_id}")
    return recurrence


def get_recurrences(
    db: Session,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate,
    include_inactive: bool = False
) -> List[RecurrenceDefinition]:
    """Get the dashboard's definitions ordered by next due date."""
    gate.check(user_id, dashboard_id)

    query = db.query(RecurrenceDefinition).filter(
        RecurrenceDefinition.dashboard_id == dashboard_id,
        RecurrenceDefinition.deleted_at.is_(None)
    )
    if not include_inactive:
        query = query.filter(RecurrenceDefinition.is_active == True)

    return query.order_by(RecurrenceDefinition.next_due_date).all()


def get_recurrence(
    db: Session,
    recurrence_id: str,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate
) -> RecurrenceDefinition:
    gate.check(user_id, dashboard_id)
    return _load(db, recurrence_id, dashboard_id)


def _load(db: Session, recurrence_id: str, dashboard_id: str) -> RecurrenceDefinition:
    recurrence = db.query(RecurrenceDefinition).filter(
        RecurrenceDefinition.id == recurrence_id,
        RecurrenceDefinition.dashboard_id == dashboard_id,
        RecurrenceDefinition.deleted_at.is_(None)
    ).first()
    if not recurrence:
        raise NotFoundError("Recurrence")
    return recurrence


def get_generated_count(db: Session, recurrence_id: str) -> int:
    """Number of occurrences materialized so far."""
    return db.query(RecurrenceOccurrence).filter(
        RecurrenceOccurrence.recurrence_id == recurrence_id
    ).count()


def update_recurrence(
    db: Session,
    recurrence_id: str,
    dashboard_id: str,
    user_id: str,
    update: RecurrenceUpdate,
    gate: PermissionGate
) -> RecurrenceDefinition:
    """
    Update template and schedule fields.

    Already generated transactions are never touched. A frequency or interval
    change re-anchors the schedule at the current cursor, so the next
    occurrence keeps its date and later ones follow the new period.
    """
    update_data = {
        field: value
        for field, value in update.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    if "amount" in update_data:
        _validate_amount(update_data["amount"], update_data.get("installment_count"))
    if "interval" in update_data and (update_data["interval"] is None or update_data["interval"] <= 0):
        raise ValidationError("interval must be a positive integer", {"interval": update_data["interval"]})

    gate.check(user_id, dashboard_id, WRITE_ROLES)

    with recurrence_locks.hold(recurrence_id):
        recurrence = _load(db, recurrence_id, dashboard_id)
        _validate_schedule(
            update_data.get("interval", recurrence.interval),
            recurrence.start_date,
            update_data.get("end_date", recurrence.end_date),
            update_data.get("installment_count", recurrence.installment_count),
        )
        if "amount" in update_data or "installment_count" in update_data:
            _validate_amount(
                update_data.get("amount", recurrence.amount),
                update_data.get("installment_count", recurrence.installment_count),
            )
        if "account_id" in update_data:
            _check_account(db, update_data["account_id"], dashboard_id)

        schedule_changed = (
            ("frequency" in update_data and update_data["frequency"] != recurrence.frequency)
            or ("interval" in update_data and update_data["interval"] != recurrence.interval)
        )

        for field, value in update_data.items():
            setattr(recurrence, field, value)

        if schedule_changed:
            recurrence.anchor_date = recurrence.next_due_date
            recurrence.occurrence_index = 0

        if recurrence.end_date is not None and recurrence.next_due_date > recurrence.end_date:
            recurrence.is_active = False
        elif "end_date" in update_data and "is_active" not in update_data:
            # An extended end date revives a definition that had run out
            recurrence.is_active = True

        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConcurrencyConflict("Recurrence was modified concurrently, retry the update")

    db.refresh(recurrence)
    return recurrence


def delete_recurrence(
    db: Session,
    recurrence_id: str,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate
) -> None:
    """Soft-deactivate; generated transactions keep their back-reference."""
    gate.check(user_id, dashboard_id, WRITE_ROLES)

    with recurrence_locks.hold(recurrence_id):
        recurrence = _load(db, recurrence_id, dashboard_id)
        recurrence.is_active = False
        recurrence.deleted_at = datetime.utcnow()
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConcurrencyConflict("Recurrence was modified concurrently, retry the delete")

    logger.info(f"Deactivated recurrence {recurrence_id}")


def preview_occurrences(recurrence: RecurrenceDefinition, count: int = 5) -> List:
    """Return up to count upcoming occurrence dates without writing anything."""
    if count < 1:
        raise ValidationError("count must be at least 1", {"count": count})
    if not recurrence.is_active:
        return []

    dates = []
    for _, occurrence in period_calculator.iter_occurrences(
        recurrence.frequency,
        recurrence.interval,
        recurrence.anchor_date,
        until=recurrence.end_date,
        start_index=recurrence.occurrence_index,
    ):
        dates.append(occurrence)
        if len(dates) >= count:
            break
    return dates
