"""
Transaction API endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from decimal import Decimal

from tally.dependencies import get_current_user_id, get_db, get_permission_gate
from tally.exceptions import NotFoundError
from tally.models.recurrence import EntryType
from tally.models.transaction import InstallmentStatus, Transaction
from tally.schemas.transaction import (
    BulkDeleteResponse,
    TransactionListResponse,
    TransactionResponse,
)
from tally.services import installment_service
from tally.services.permission_service import PermissionGate

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    dashboard_id: str = Query(...),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    entry_type: Optional[EntryType] = None,
    group_id: Optional[str] = None,
    recurrence_id: Optional[str] = None,
    only_installments: bool = False,
    installment_status: Optional[InstallmentStatus] = None,
    category: Optional[str] = None,
    account_id: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """List transactions with filtering and pagination"""
    gate.check(user_id, dashboard_id)

    query = db.query(Transaction).filter(
        Transaction.dashboard_id == dashboard_id,
        Transaction.deleted_at.is_(None)
    )

    if start_date:
        query = query.filter(Transaction.date >= start_date)
    if end_date:
        query = query.filter(Transaction.date <= end_date)
    if entry_type:
        query = query.filter(Transaction.entry_type == entry_type)
    if group_id:
        query = query.filter(Transaction.group_id == group_id)
    if recurrence_id:
        query = query.filter(Transaction.recurrence_id == recurrence_id)
    if only_installments:
        query = query.filter(Transaction.installment_total > 1)
    if installment_status:
        query = query.filter(Transaction.installment_status == installment_status)
    if category:
        query = query.filter(Transaction.category == category)
    if account_id:
        query = query.filter(Transaction.account_id == account_id)
    if min_amount is not None:
        query = query.filter(Transaction.amount >= min_amount)

    total = query.count()

    query = query.order_by(Transaction.date.desc(), Transaction.installment_number)
    query = query.offset((page - 1) * per_page).limit(per_page)

    transactions = query.all()
    pages = (total + per_page - 1) // per_page

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        page=page,
        pages=pages
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    dashboard_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Get a single transaction"""
    gate.check(user_id, dashboard_id)
    transaction = db.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.dashboard_id == dashboard_id,
        Transaction.deleted_at.is_(None)
    ).first()
    if not transaction:
        raise NotFoundError("Transaction")
    return TransactionResponse.model_validate(transaction)


@router.delete("", response_model=BulkDeleteResponse)
def bulk_delete_transactions(
    dashboard_id: str = Query(...),
    ids: List[str] = Query(...),
    include_installments: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    gate: PermissionGate = Depends(get_permission_gate),
    db: Session = Depends(get_db)
):
    """Soft delete transactions, optionally with every installment of their groups"""
    result = installment_service.delete_transactions(
        db,
        ids,
        include_installments,
        dashboard_id=dashboard_id,
        user_id=user_id,
        gate=gate,
    )
    return BulkDeleteResponse(**result)
