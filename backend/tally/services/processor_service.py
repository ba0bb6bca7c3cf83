"""Materialize due recurrence occurrences into transactions.

One run walks every active definition whose cursor is due and generates one
occurrence per elapsed period up to ``now`` (catch-up), never past it and
never past the definition's end date. Each definition is processed in its own
lock and database transaction: its new rows, ledger entries and cursor are
committed together, and a failure only affects that definition.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tally.config import settings
from tally.database import atomic
from tally.exceptions import ConcurrencyConflict, ForbiddenError
from tally.models.recurrence import RecurrenceDefinition, RecurrenceOccurrence
from tally.models.transaction import Transaction
from tally.services import installment_service, period_calculator
from tally.services.locks import recurrence_locks
from tally.services.permission_service import DatabasePermissionGate, PermissionGate, WRITE_ROLES

logger = logging.getLogger(__name__)


@dataclass
class DefinitionOutcome:
    recurrence_id: str
    status: str  # ok, error, forbidden or conflict
    created: int = 0
    error: Optional[str] = None


@dataclass
class ProcessReport:
    as_of: date
    created: List[Transaction] = field(default_factory=list)
    advanced: List[RecurrenceDefinition] = field(default_factory=list)
    outcomes: List[DefinitionOutcome] = field(default_factory=list)
    cancelled: bool = False

    def merge(self, other: "ProcessReport") -> None:
        self.created.extend(other.created)
        self.advanced.extend(other.advanced)
        self.outcomes.extend(other.outcomes)
        self.cancelled = self.cancelled or other.cancelled

    @property
    def failed(self) -> List[DefinitionOutcome]:
        return [o for o in self.outcomes if o.status != "ok"]


def _as_date(now) -> date:
    if isinstance(now, datetime):
        return now.date()
    return now


def _due_query(db: Session, now: date):
    return db.query(RecurrenceDefinition).filter(
        RecurrenceDefinition.is_active == True,
        RecurrenceDefinition.deleted_at.is_(None),
        RecurrenceDefinition.next_due_date <= now
    )


def _materialize(recurrence: RecurrenceDefinition, occurrence: date) -> List[Transaction]:
    """Build the rows for one occurrence: a single transaction or an installment plan."""
    template = {
        "dashboard_id": recurrence.dashboard_id,
        "user_id": recurrence.user_id,
        "account_id": recurrence.account_id,
        "entry_type": recurrence.entry_type,
        "description": recurrence.description,
        "category": recurrence.category,
        "subcategory": recurrence.subcategory,
        "notes": recurrence.notes,
        "recurrence_id": recurrence.id,
        "occurrence_date": occurrence,
    }
    if recurrence.installment_count and recurrence.installment_count > 1:
        return installment_service.plan_installments(
            recurrence.amount,
            recurrence.installment_count,
            occurrence,
            template=template,
        )
    return [Transaction(date=occurrence, amount=recurrence.amount, **template)]


def process_recurrence(
    db: Session,
    recurrence_id: str,
    now: date,
    gate: PermissionGate
) -> Tuple[List[Transaction], Optional[RecurrenceDefinition]]:
    """
    Catch one definition up to now inside a single database transaction.

    Returns the created rows and the definition when its cursor moved (None
    when another worker already handled it). The cursor is always derived
    from the anchor and the occurrence index, and occurrences already in the
    ledger are skipped, so a rerun after a crash converges without duplicates.
    """
    now = _as_date(now)
    created: List[Transaction] = []

    with recurrence_locks.hold(recurrence_id):
        try:
            with atomic(db):
                recurrence = db.query(RecurrenceDefinition).filter(
                    RecurrenceDefinition.id == recurrence_id
                ).with_for_update().populate_existing().first()
                if (
                    recurrence is None
                    or not recurrence.is_active
                    or recurrence.deleted_at is not None
                    or recurrence.next_due_date > now
                ):
                    return [], None

                gate.check(recurrence.user_id, recurrence.dashboard_id, WRITE_ROLES)

                already_generated = {
                    row.occurrence_date
                    for row in db.query(RecurrenceOccurrence.occurrence_date).filter(
                        RecurrenceOccurrence.recurrence_id == recurrence.id,
                        RecurrenceOccurrence.occurrence_date >= recurrence.next_due_date
                    )
                }

                end_date = recurrence.end_date
                while recurrence.next_due_date <= now and (end_date is None or recurrence.next_due_date <= end_date):
                    occurrence = recurrence.next_due_date
                    if occurrence in already_generated:
                        logger.warning(f"Recurrence {recurrence.id}: occurrence {occurrence} already generated, skipping")
                    else:
                        rows = _materialize(recurrence, occurrence)
                        db.add_all(rows)
                        db.add(RecurrenceOccurrence(
                            recurrence_id=recurrence.id,
                            occurrence_date=occurrence,
                            transaction_count=len(rows),
                        ))
                        created.extend(rows)

                    recurrence.occurrence_index += 1
                    recurrence.next_due_date = period_calculator.occurrence_date(
                        recurrence.frequency,
                        recurrence.interval,
                        recurrence.anchor_date,
                        recurrence.occurrence_index,
                    )

                if end_date is not None and recurrence.next_due_date > end_date:
                    recurrence.is_active = False
                    logger.info(f"Recurrence {recurrence.id} reached its end date {end_date}, deactivated")
                if created:
                    recurrence.last_generated_at = datetime.utcnow()
                db.flush()
        except (IntegrityError, StaleDataError) as e:
            raise ConcurrencyConflict(
                f"Recurrence {recurrence_id} was processed concurrently",
                {"recurrence_id": recurrence_id},
            ) from e

    return created, recurrence


def _run_one(
    db: Session,
    recurrence_id: str,
    now: date,
    gate: PermissionGate,
    report: ProcessReport
) -> DefinitionOutcome:
    retrying = Retrying(
        stop=stop_after_attempt(max(settings.processor_conflict_retries, 1)),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception_type(ConcurrencyConflict),
        reraise=True,
    )
    try:
        created, recurrence = retrying(process_recurrence, db, recurrence_id, now, gate)
    except ForbiddenError as e:
        logger.error(f"Recurrence {recurrence_id} skipped: {e.message}")
        return DefinitionOutcome(recurrence_id, "forbidden", error=e.message)
    except ConcurrencyConflict as e:
        logger.warning(f"Recurrence {recurrence_id} skipped after lock conflicts: {e.message}")
        return DefinitionOutcome(recurrence_id, "conflict", error=e.message)
    except Exception as e:
        # Isolated: the next scheduled run retries this definition
        logger.exception(f"Error processing recurrence {recurrence_id}")
        return DefinitionOutcome(recurrence_id, "error", error=str(e))

    report.created.extend(created)
    if recurrence is not None:
        report.advanced.append(recurrence)
    return DefinitionOutcome(recurrence_id, "ok", created=len(created))


def process_due_recurrences(
    db: Session,
    now,
    *,
    dashboard_id: Optional[str] = None,
    gate: Optional[PermissionGate] = None,
    cancel_event: Optional[threading.Event] = None
) -> ProcessReport:
    """
    Run the processor once over every due definition (optionally one dashboard).

    cancel_event is checked between definitions only, so a definition that
    has started is always committed or rolled back as a whole.
    """
    now = _as_date(now)
    gate = gate or DatabasePermissionGate(db)

    query = _due_query(db, now)
    if dashboard_id:
        query = query.filter(RecurrenceDefinition.dashboard_id == dashboard_id)
    due_ids = [
        row.id for row in query.with_entities(RecurrenceDefinition.id).order_by(
            RecurrenceDefinition.next_due_date, RecurrenceDefinition.id
        )
    ]
    # Release the read transaction before per-definition units of work
    db.commit()

    logger.info(f"Processing {len(due_ids)} due recurrence(s) as of {now}")

    report = ProcessReport(as_of=now)
    for recurrence_id in due_ids:
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            logger.info(f"Recurrence processing cancelled, {len(due_ids) - len(report.outcomes)} definition(s) left")
            break
        report.outcomes.append(_run_one(db, recurrence_id, now, gate, report))

    logger.info(
        f"Recurrence run as of {now}: {len(report.created)} transaction(s) created, "
        f"{len(report.advanced)} definition(s) advanced, {len(report.failed)} failed"
    )
    return report


def run_due_processing(
    session_factory: Callable[..., Session],
    now,
    *,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None
) -> ProcessReport:
    """
    Process every dashboard, one worker (and session) per dashboard.

    Sessions keep loaded attributes after commit so the merged report stays
    readable once the worker sessions are closed.
    """
    now = _as_date(now)
    max_workers = max_workers or settings.processor_max_workers

    with session_factory() as db:
        dashboard_ids = [
            row.dashboard_id
            for row in _due_query(db, now).with_entities(RecurrenceDefinition.dashboard_id).distinct()
        ]

    def worker(dashboard_id: str) -> ProcessReport:
        with session_factory(expire_on_commit=False) as db:
            return process_due_recurrences(db, now, dashboard_id=dashboard_id, cancel_event=cancel_event)

    report = ProcessReport(as_of=now)
    if max_workers <= 1 or len(dashboard_ids) <= 1:
        for dashboard_id in dashboard_ids:
            report.merge(worker(dashboard_id))
    else:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="recurrence") as pool:
            for result in pool.map(worker, dashboard_ids):
                report.merge(result)
    return report
