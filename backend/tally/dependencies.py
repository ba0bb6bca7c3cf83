"""
FastAPI dependencies.
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tally.database import get_db
from tally.services.permission_service import DatabasePermissionGate, PermissionGate

__all__ = ["get_db", "get_current_user_id", "get_permission_gate"]


def get_current_user_id(x_user_id: str = Header(None)) -> str:
    """
    Caller identity.

    Token verification happens upstream; the gateway forwards the
    authenticated user id in the X-User-Id header.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id


def get_permission_gate(db: Session = Depends(get_db)) -> PermissionGate:
    return DatabasePermissionGate(db)
