"""Dashboard permission gate."""

from typing import Iterable, Optional, Protocol

from sqlalchemy.orm import Session

from tally.exceptions import ForbiddenError, NotFoundError
from tally.models.dashboard import Dashboard, DashboardMember, DashboardRole, MemberStatus

ALL_ROLES = (DashboardRole.OWNER, DashboardRole.EDITOR, DashboardRole.VIEWER)
WRITE_ROLES = (DashboardRole.OWNER, DashboardRole.EDITOR)


class PermissionGate(Protocol):
    def check(
        self,
        user_id: str,
        dashboard_id: str,
        allowed_roles: Optional[Iterable[DashboardRole]] = None,
    ) -> DashboardRole:
        ...


class DatabasePermissionGate:
    """
    Membership-table backed gate.

    The dashboard owner always passes. Anyone else needs an APPROVED
    membership whose role is in allowed_roles (any role when omitted).
    """

    def __init__(self, db: Session):
        self.db = db

    def check(
        self,
        user_id: str,
        dashboard_id: str,
        allowed_roles: Optional[Iterable[DashboardRole]] = None,
    ) -> DashboardRole:
        allowed = tuple(allowed_roles) if allowed_roles is not None else ALL_ROLES

        dashboard = self.db.query(Dashboard).filter(Dashboard.id == dashboard_id).first()
        if not dashboard:
            raise NotFoundError("Dashboard")
        if dashboard.owner_id == user_id:
            return DashboardRole.OWNER

        member = self.db.query(DashboardMember).filter(
            DashboardMember.dashboard_id == dashboard_id,
            DashboardMember.user_id == user_id
        ).first()
        if not member:
            raise ForbiddenError("Access to this dashboard was denied")
        if member.status != MemberStatus.APPROVED:
            raise ForbiddenError("Your access request is still pending approval")
        if member.role not in allowed:
            raise ForbiddenError("Insufficient permission")
        return member.role
