"""
Dashboard and membership database models.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
from tally.database import Base


class DashboardRole(str, enum.Enum):
    """Member role enumeration."""
    OWNER = "OWNER"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class MemberStatus(str, enum.Enum):
    """Membership approval status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Dashboard(Base):
    """A shared ledger (tenant) owned by one user."""

    __tablename__ = "dashboards"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(100), nullable=False)
    owner_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    members = relationship("DashboardMember", back_populates="dashboard", cascade="all, delete-orphan")


class DashboardMember(Base):
    """Membership of a user in a dashboard."""

    __tablename__ = "dashboard_members"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dashboard_id = Column(String(36), ForeignKey("dashboards.id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    role = Column(Enum(DashboardRole), nullable=False, default=DashboardRole.VIEWER)
    status = Column(Enum(MemberStatus), nullable=False, default=MemberStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    dashboard = relationship("Dashboard", back_populates="members")

    __table_args__ = (
        UniqueConstraint("dashboard_id", "user_id", name="uq_dashboard_member"),
    )
