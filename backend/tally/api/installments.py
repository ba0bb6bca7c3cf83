"""API endpoints for installment plans and installment groups."""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tally.dependencies import get_current_user_id, get_db, get_permission_gate
from tally.models.transaction import Transaction
from tally.schemas.installment import (
    InstallmentGroupPatch,
    InstallmentGroupResponse,
    InstallmentPlanCreate,
    InstallmentScope,
    ScopedDeleteResponse,
)
from tally.schemas.transaction import TransactionResponse
from tally.services import installment_service
from tally.services.permission_service import PermissionGate

router = APIRouter(tags=["installments"])


def _group_response(group_id: str, rows: List[Transaction]) -> InstallmentGroupResponse:
    return InstallmentGroupResponse(
        group_id=group_id,
        installment_total=len(rows),
        total_amount=sum((row.amount for row in rows), Decimal("0")),
        items=[TransactionResponse.model_validate(row) for row in rows],
    )


@router.post("/installments", response_model=InstallmentGroupResponse)
def create_installment_plan(
    data: InstallmentPlanCreate,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Split a purchase into dated installments."""
    rows = installment_service.create_installment_plan(db, dashboard_id, user_id, data, gate)
    return _group_response(rows[0].group_id, rows)


@router.get("/installment-groups/{group_id}", response_model=InstallmentGroupResponse)
def get_installment_group(
    group_id: str,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Get every installment of a group."""
    rows = installment_service.get_installment_group(db, group_id, dashboard_id, user_id, gate)
    return _group_response(group_id, rows)


@router.put("/installment-groups/{group_id}", response_model=InstallmentGroupResponse)
def update_installment_group(
    group_id: str,
    patch: InstallmentGroupPatch,
    dashboard_id: str = Query(...),
    scope: InstallmentScope = Query(InstallmentScope.all),
    transaction_id: Optional[str] = Query(None, description="Targeted installment for single/remaining"),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Edit one installment, this and the following ones, or the whole group."""
    rows = installment_service.update_installment_group(
        db,
        group_id,
        patch,
        scope,
        dashboard_id=dashboard_id,
        user_id=user_id,
        gate=gate,
        transaction_id=transaction_id,
    )
    return _group_response(group_id, rows)


@router.delete("/installment-groups/{group_id}", response_model=ScopedDeleteResponse)
def delete_installment_group(
    group_id: str,
    dashboard_id: str = Query(...),
    scope: InstallmentScope = Query(InstallmentScope.all),
    transaction_id: Optional[str] = Query(None),
    include_future: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Delete one installment, this and the following ones, or the whole group."""
    result = installment_service.delete_installment_scope(
        db,
        group_id,
        scope,
        include_future=include_future,
        dashboard_id=dashboard_id,
        user_id=user_id,
        gate=gate,
        transaction_id=transaction_id,
    )
    return ScopedDeleteResponse(**result)
