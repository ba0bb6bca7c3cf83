"""Installment planning and scoped edits/deletes over installment groups.

A group is the set of live transactions sharing a ``group_id``. Readers may
rely on the following after every committed operation:

* installment_number runs exactly 1..N,
* every row has installment_total == N,
* dates are strictly increasing with installment_number.

Every mutation runs under the group's lock and inside one database
transaction; a broken invariant is detected before commit and rolled back.
"""

import logging
import uuid
from contextlib import ExitStack
from datetime import datetime, date
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from tally.config import settings
from tally.database import atomic
from tally.exceptions import ConsistencyViolation, NotFoundError, ValidationError
from tally.models.account import Account
from tally.models.recurrence import EntryType, Frequency
from tally.models.transaction import InstallmentStatus, Transaction
from tally.schemas.installment import InstallmentGroupPatch, InstallmentPlanCreate, InstallmentScope
from tally.services import period_calculator
from tally.services.locks import group_locks
from tally.services.permission_service import PermissionGate, WRITE_ROLES

logger = logging.getLogger(__name__)

# Copied as-is onto every row in scope
UNIFORM_FIELDS = ("description", "category", "subcategory", "notes", "entry_type", "account_id", "installment_status")
NULLABLE_FIELDS = {"subcategory", "notes", "account_id"}


def _quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.currency_precision)


def check_money(value: Decimal, field: str) -> None:
    if value is None or value <= 0:
        raise ValidationError(f"{field} must be greater than zero", {field: str(value)})
    if value != value.quantize(_quantum()):
        raise ValidationError(
            f"{field} has more than {settings.currency_precision} decimal places",
            {field: str(value)},
        )


def split_amount(total: Decimal, count: int) -> List[Decimal]:
    """
    Split total into count amounts that sum to it exactly.

    Each share is total / count floored to currency precision; the last one
    absorbs the remainder (100.00 / 3 -> 33.33, 33.33, 33.34).
    """
    if count < 1:
        raise ValidationError("installment count must be at least 1", {"count": count})
    quantum = _quantum()
    total = Decimal(total)
    base = (total / count).quantize(quantum, rounding=ROUND_FLOOR)
    if base < quantum:
        raise ValidationError(
            f"{total} cannot be split into {count} installments",
            {"total_amount": str(total), "count": count},
        )
    amounts = [base] * count
    amounts[-1] = total - base * (count - 1)
    return amounts


def plan_installments(
    total_amount: Decimal,
    count: int,
    first_due_date: date,
    frequency: Frequency = Frequency.MONTHLY,
    interval: int = 1,
    *,
    template: Optional[Dict[str, Any]] = None
) -> List[Transaction]:
    """
    Build (without saving) the rows of a new installment group.

    template carries the fields shared by every row (dashboard_id, user_id,
    description, category, ...). Row k is due on the (k-1)-th period after
    first_due_date.
    """
    check_money(total_amount, "total_amount")
    amounts = split_amount(total_amount, count)
    group_id = str(uuid.uuid4())
    template = dict(template or {})
    template.setdefault("entry_type", EntryType.expense)

    rows = []
    for index, amount in enumerate(amounts):
        rows.append(Transaction(
            id=str(uuid.uuid4()),
            date=period_calculator.occurrence_date(frequency, interval, first_due_date, index),
            amount=amount,
            group_id=group_id,
            installment_number=index + 1,
            installment_total=count,
            installment_frequency=frequency,
            installment_interval=interval,
            installment_status=InstallmentStatus.pending,
            **template
        ))
    return rows


def _check_account(db: Session, account_id: Optional[str], dashboard_id: str) -> None:
    if not account_id:
        return
    exists = db.query(Account).filter(
        Account.id == account_id,
        Account.dashboard_id == dashboard_id
    ).first()
    if not exists:
        raise NotFoundError("Account")


def create_installment_plan(
    db: Session,
    dashboard_id: str,
    user_id: str,
    data: InstallmentPlanCreate,
    gate: PermissionGate
) -> List[Transaction]:
    """Plan a purchase and persist all of its installments, or none of them."""
    rows = plan_installments(
        data.total_amount,
        data.count,
        data.first_due_date,
        data.frequency,
        data.interval,
        template={
            "dashboard_id": dashboard_id,
            "user_id": user_id,
            "account_id": data.account_id,
            "entry_type": data.entry_type,
            "description": data.description,
            "category": data.category,
            "subcategory": data.subcategory,
            "notes": data.notes,
        },
    )

    gate.check(user_id, dashboard_id, WRITE_ROLES)
    _check_account(db, data.account_id, dashboard_id)

    group_id = rows[0].group_id
    with atomic(db):
        db.add_all(rows)
        db.flush()
        verify_group_consistency(_live_rows(db, group_id, dashboard_id), group_id)

    logger.info(f"Created installment group {group_id} with {len(rows)} installments")
    return _live_rows(db, group_id, dashboard_id)


def parse_scope(scope) -> InstallmentScope:
    if isinstance(scope, InstallmentScope):
        return scope
    try:
        return InstallmentScope(scope)
    except ValueError:
        raise ValidationError(
            f"Invalid scope: {scope!r}",
            {"allowed": [s.value for s in InstallmentScope]},
        )


def verify_group_consistency(rows: List[Transaction], group_id: str) -> None:
    """Raise ConsistencyViolation unless rows form a gap-free group (an empty group is fine)."""
    if not rows:
        return
    rows = sorted(rows, key=lambda r: r.installment_number or 0)
    size = len(rows)
    problems = []

    numbers = [r.installment_number for r in rows]
    if numbers != list(range(1, size + 1)):
        problems.append(f"numbers {numbers} are not 1..{size}")
    totals = {r.installment_total for r in rows}
    if totals != {size}:
        problems.append(f"installment_total {sorted(totals, key=str)} does not match {size} rows")
    for previous, current in zip(rows, rows[1:]):
        if current.date <= previous.date:
            problems.append(
                f"installment {current.installment_number} on {current.date} "
                f"is not after installment {previous.installment_number} on {previous.date}"
            )
            break

    if problems:
        logger.error(f"Installment group {group_id} is inconsistent: {'; '.join(problems)}")
        raise ConsistencyViolation(
            "Installment group would be left inconsistent",
            {"group_id": group_id, "problems": problems},
        )


def _live_rows(db: Session, group_id: str, dashboard_id: str, lock: bool = False) -> List[Transaction]:
    query = db.query(Transaction).filter(
        Transaction.group_id == group_id,
        Transaction.dashboard_id == dashboard_id,
        Transaction.deleted_at.is_(None)
    ).order_by(Transaction.installment_number)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.all()


def _load_group(db: Session, group_id: str, dashboard_id: str, lock: bool = False) -> List[Transaction]:
    rows = _live_rows(db, group_id, dashboard_id, lock=lock)
    if not rows:
        raise NotFoundError("Installment group")
    return rows


def _target_index(rows: List[Transaction], transaction_id: str) -> int:
    for index, row in enumerate(rows):
        if row.id == transaction_id:
            return index
    raise NotFoundError("Installment")


def _renumber(rows: List[Transaction]) -> None:
    for number, row in enumerate(rows, start=1):
        row.installment_number = number
        row.installment_total = len(rows)


def _step(row: Transaction):
    return row.installment_frequency or Frequency.MONTHLY, row.installment_interval or 1


def get_installment_group(
    db: Session,
    group_id: str,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate
) -> List[Transaction]:
    """All live installments of a group, in installment order."""
    gate.check(user_id, dashboard_id)
    return _load_group(db, group_id, dashboard_id)


def _patch_fields(patch: InstallmentGroupPatch) -> Dict[str, Any]:
    return {
        field: value
        for field, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }


def _apply_uniform(rows: List[Transaction], changes: Dict[str, Any]) -> None:
    for row in rows:
        for field in UNIFORM_FIELDS:
            if field in changes:
                setattr(row, field, changes[field])


def _apply_single(rows: List[Transaction], index: int, changes: Dict[str, Any]) -> None:
    target = rows[index]
    _apply_uniform([target], changes)
    if "amount" in changes:
        target.amount = changes["amount"]
    if "date" in changes:
        new_date = changes["date"]
        if index > 0 and new_date <= rows[index - 1].date:
            raise ValidationError("date must be after the previous installment", {"date": new_date.isoformat()})
        if index + 1 < len(rows) and new_date >= rows[index + 1].date:
            raise ValidationError("date must be before the next installment", {"date": new_date.isoformat()})
        target.date = new_date


def _apply_remaining(rows: List[Transaction], index: int, changes: Dict[str, Any], group_id: str) -> None:
    target = rows[index]
    earlier = rows[:index]
    later = rows[index + 1:]
    _apply_uniform(rows[index:], changes)

    if "date" in changes:
        new_date = changes["date"]
        if earlier and new_date <= earlier[-1].date:
            raise ValidationError("date must be after the previous installment", {"date": new_date.isoformat()})
        frequency, interval = _step(target)
        for offset, row in enumerate(rows[index:]):
            row.date = period_calculator.occurrence_date(frequency, interval, new_date, offset)

    if "amount" in changes:
        new_amount = changes["amount"]
        if not later:
            # Nothing left to absorb the difference, the group total moves
            logger.info(f"Group {group_id}: last installment amount set to {new_amount}, group total changes")
            target.amount = new_amount
            return
        group_total = sum((row.amount for row in rows), Decimal("0"))
        balance = group_total - sum((row.amount for row in earlier), Decimal("0")) - new_amount
        if balance < _quantum() * len(later):
            raise ValidationError(
                "amount leaves too little for the remaining installments",
                {"amount": str(new_amount), "balance": str(balance), "remaining": len(later)},
            )
        target.amount = new_amount
        for row, amount in zip(later, split_amount(balance, len(later))):
            row.amount = amount


def _apply_all(rows: List[Transaction], changes: Dict[str, Any]) -> None:
    _apply_uniform(rows, changes)
    if "amount" in changes:
        for row in rows:
            row.amount = changes["amount"]
    if "total_amount" in changes:
        for row, amount in zip(rows, split_amount(changes["total_amount"], len(rows))):
            row.amount = amount
    if "date" in changes:
        frequency, interval = _step(rows[0])
        for offset, row in enumerate(rows):
            row.date = period_calculator.occurrence_date(frequency, interval, changes["date"], offset)


def update_installment_group(
    db: Session,
    group_id: str,
    patch: InstallmentGroupPatch,
    scope,
    *,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate,
    transaction_id: Optional[str] = None
) -> List[Transaction]:
    """
    Apply patch to the installments selected by scope.

    single: the targeted row. remaining: the targeted row and every later
    one; an amount change is balanced over the later rows so the group total
    is kept. all: every row; date re-anchors the schedule and total_amount
    re-splits the purchase.
    """
    scope = parse_scope(scope)
    changes = _patch_fields(patch)
    if not changes:
        raise ValidationError("Nothing to update")
    if scope != InstallmentScope.all and not transaction_id:
        raise ValidationError(f"transaction_id is required for scope {scope.value}")
    if "total_amount" in changes and scope != InstallmentScope.all:
        raise ValidationError("total_amount can only be changed with scope all")
    if "total_amount" in changes and "amount" in changes:
        raise ValidationError("Send either amount or total_amount, not both")
    for field in ("amount", "total_amount"):
        if field in changes:
            check_money(changes[field], field)

    gate.check(user_id, dashboard_id, WRITE_ROLES)

    with group_locks.hold(group_id):
        with atomic(db):
            rows = _load_group(db, group_id, dashboard_id, lock=True)
            if "account_id" in changes:
                _check_account(db, changes["account_id"], dashboard_id)

            if scope == InstallmentScope.all:
                _apply_all(rows, changes)
            else:
                index = _target_index(rows, transaction_id)
                if scope == InstallmentScope.single:
                    _apply_single(rows, index, changes)
                else:
                    _apply_remaining(rows, index, changes, group_id)

            db.flush()
            verify_group_consistency(_live_rows(db, group_id, dashboard_id), group_id)

    logger.info(f"Updated installment group {group_id} (scope={scope.value}, fields={sorted(changes)})")
    return _live_rows(db, group_id, dashboard_id)


def delete_installment_scope(
    db: Session,
    group_id: str,
    scope,
    *,
    include_future: bool,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate,
    transaction_id: Optional[str] = None
) -> Dict[str, int]:
    """
    Soft-delete the installments selected by scope and close the gap.

    single removes the targeted row and renumbers the rest. remaining removes
    the targeted row and, when include_future is set, every later row. all
    removes the group regardless of include_future. Survivors always end up
    numbered 1..N with installment_total == N.
    """
    scope = parse_scope(scope)
    if scope != InstallmentScope.all and not transaction_id:
        raise ValidationError(f"transaction_id is required for scope {scope.value}")

    gate.check(user_id, dashboard_id, WRITE_ROLES)

    with group_locks.hold(group_id):
        with atomic(db):
            rows = _load_group(db, group_id, dashboard_id, lock=True)
            if scope == InstallmentScope.all:
                doomed = rows
            else:
                index = _target_index(rows, transaction_id)
                if scope == InstallmentScope.remaining and include_future:
                    doomed = rows[index:]
                else:
                    doomed = [rows[index]]

            now = datetime.utcnow()
            doomed_ids = {row.id for row in doomed}
            for row in doomed:
                row.deleted_at = now
            _renumber([row for row in rows if row.id not in doomed_ids])

            db.flush()
            verify_group_consistency(_live_rows(db, group_id, dashboard_id), group_id)

    logger.info(f"Deleted {len(doomed)} installment(s) from group {group_id} (scope={scope.value})")
    return {"deleted_count": len(doomed)}


def delete_transactions(
    db: Session,
    ids: List[str],
    include_installments: bool,
    *,
    dashboard_id: str,
    user_id: str,
    gate: PermissionGate
) -> Dict[str, int]:
    """
    Bulk soft delete.

    With include_installments every sibling of a selected installment goes
    too; otherwise the groups touched are renumbered around the gaps.
    """
    unique_ids = list(dict.fromkeys(ids or []))
    if not unique_ids:
        raise ValidationError("ids must not be empty")

    gate.check(user_id, dashboard_id, WRITE_ROLES)

    selected = db.query(Transaction).filter(
        Transaction.id.in_(unique_ids),
        Transaction.dashboard_id == dashboard_id,
        Transaction.deleted_at.is_(None)
    ).all()
    missing = set(unique_ids) - {t.id for t in selected}
    if missing:
        raise NotFoundError("Transaction", {"ids": sorted(missing)})

    group_ids = sorted({t.group_id for t in selected if t.group_id})

    with ExitStack() as stack:
        # Sorted acquisition order so two bulk deletes cannot deadlock
        for group_id in group_ids:
            stack.enter_context(group_locks.hold(group_id))

        with atomic(db):
            now = datetime.utcnow()
            doomed_ids = set(unique_ids)
            groups = {group_id: _live_rows(db, group_id, dashboard_id, lock=True) for group_id in group_ids}
            if include_installments:
                for rows in groups.values():
                    doomed_ids.update(row.id for row in rows)

            deleted = 0
            for row in db.query(Transaction).filter(
                Transaction.id.in_(doomed_ids),
                Transaction.deleted_at.is_(None)
            ).all():
                row.deleted_at = now
                deleted += 1

            for group_id, rows in groups.items():
                _renumber([row for row in rows if row.id not in doomed_ids])

            db.flush()
            for group_id in group_ids:
                verify_group_consistency(_live_rows(db, group_id, dashboard_id), group_id)

    logger.info(f"Bulk deleted {deleted} transaction(s) across {len(group_ids)} installment group(s)")
    return {"deleted_count": deleted}
