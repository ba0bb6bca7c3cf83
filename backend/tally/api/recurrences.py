"""API endpoints for recurrence definitions and processor runs."""

from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tally.dependencies import get_current_user_id, get_db, get_permission_gate
from tally.models.recurrence import RecurrenceDefinition
from tally.schemas.recurrence import (
    ProcessOutcomeResponse,
    ProcessResponse,
    RecurrenceCreate,
    RecurrencePreview,
    RecurrenceResponse,
    RecurrenceUpdate,
)
from tally.services import processor_service, recurrence_service
from tally.services.permission_service import PermissionGate, WRITE_ROLES

router = APIRouter(prefix="/recurrences", tags=["recurrences"])


def _to_response(db: Session, recurrence: RecurrenceDefinition) -> RecurrenceResponse:
    response = RecurrenceResponse.model_validate(recurrence)
    response.generated_count = recurrence_service.get_generated_count(db, recurrence.id)
    return response


@router.get("", response_model=List[RecurrenceResponse])
def list_recurrences(
    dashboard_id: str = Query(...),
    include_inactive: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Get the dashboard's recurrence definitions."""
    recurrences = recurrence_service.get_recurrences(db, dashboard_id, user_id, gate, include_inactive)
    return [_to_response(db, r) for r in recurrences]


@router.post("", response_model=RecurrenceResponse)
def create_recurrence(
    data: RecurrenceCreate,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Create a recurrence definition."""
    recurrence = recurrence_service.create_recurrence(db, dashboard_id, user_id, data, gate)
    return _to_response(db, recurrence)


@router.post("/process", response_model=ProcessResponse)
def process_recurrences(
    dashboard_id: str = Query(...),
    as_of: Optional[date] = Query(None, description="Process as of this date (defaults to today, UTC)"),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """
    Trigger one processor run for the dashboard.
    Used by schedulers and admin tooling.
    """
    gate.check(user_id, dashboard_id, WRITE_ROLES)
    now = as_of or datetime.now(timezone.utc).date()
    report = processor_service.process_due_recurrences(db, now, dashboard_id=dashboard_id, gate=gate)

    return ProcessResponse(
        as_of=report.as_of,
        created_count=len(report.created),
        advanced_count=len(report.advanced),
        cancelled=report.cancelled,
        outcomes=[
            ProcessOutcomeResponse(
                recurrence_id=o.recurrence_id,
                status=o.status,
                created=o.created,
                error=o.error,
            ) for o in report.outcomes
        ],
        created_ids=[t.id for t in report.created],
    )


@router.get("/{recurrence_id}", response_model=RecurrenceResponse)
def get_recurrence(
    recurrence_id: str,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Get a single recurrence definition."""
    recurrence = recurrence_service.get_recurrence(db, recurrence_id, dashboard_id, user_id, gate)
    return _to_response(db, recurrence)


@router.get("/{recurrence_id}/preview", response_model=RecurrencePreview)
def preview_recurrence(
    recurrence_id: str,
    dashboard_id: str = Query(...),
    count: int = Query(5, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Upcoming occurrence dates, nothing is generated."""
    recurrence = recurrence_service.get_recurrence(db, recurrence_id, dashboard_id, user_id, gate)
    return RecurrencePreview(
        recurrence_id=recurrence.id,
        dates=recurrence_service.preview_occurrences(recurrence, count),
    )


@router.put("/{recurrence_id}", response_model=RecurrenceResponse)
def update_recurrence(
    recurrence_id: str,
    update: RecurrenceUpdate,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Update a recurrence definition (already generated transactions are kept as they are)."""
    recurrence = recurrence_service.update_recurrence(db, recurrence_id, dashboard_id, user_id, update, gate)
    return _to_response(db, recurrence)


@router.delete("/{recurrence_id}")
def delete_recurrence(
    recurrence_id: str,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Deactivate a recurrence definition (generated transactions are not deleted)."""
    recurrence_service.delete_recurrence(db, recurrence_id, dashboard_id, user_id, gate)
    return {"deleted": True}
