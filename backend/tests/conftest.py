"""Shared test fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from datetime import date
from decimal import Decimal
import uuid

from tally.database import Base, get_db as database_get_db
from tally.dependencies import get_db as dependencies_get_db
from tally.main import app
from tally.models.account import Account, AccountType
from tally.models.dashboard import Dashboard, DashboardMember, DashboardRole, MemberStatus
from tally.models.recurrence import RecurrenceDefinition, Frequency, EntryType
from tally.services.permission_service import DatabasePermissionGate

OWNER_ID = "user-owner"
EDITOR_ID = "user-editor"
VIEWER_ID = "user-viewer"
PENDING_ID = "user-pending"
STRANGER_ID = "user-stranger"


def make_recurrence(db, dashboard, user_id=OWNER_ID, **overrides):
    """Insert an active definition whose cursor sits on its start date."""
    fields = dict(
        description="Rent",
        amount=Decimal("1200.00"),
        entry_type=EntryType.expense,
        category="Housing",
        frequency=Frequency.MONTHLY,
        interval=1,
        start_date=date(2024, 1, 1),
    )
    fields.update(overrides)
    recurrence = RecurrenceDefinition(
        id=str(uuid.uuid4()),
        dashboard_id=dashboard.id,
        user_id=user_id,
        anchor_date=fields["start_date"],
        occurrence_index=0,
        next_due_date=fields["start_date"],
        is_active=True,
        **fields
    )
    db.add(recurrence)
    db.commit()
    db.refresh(recurrence)
    return recurrence


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared by every session of a test."""
    # Use StaticPool to ensure all connections use the same in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a fresh database for each test using in-memory SQLite."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[database_get_db] = override_get_db
    app.dependency_overrides[dependencies_get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def gate(db_session):
    return DatabasePermissionGate(db_session)


@pytest.fixture
def dashboard(db_session):
    """A dashboard with an editor, a viewer and a pending member."""
    dashboard = Dashboard(id=str(uuid.uuid4()), title="Household", owner_id=OWNER_ID)
    db_session.add(dashboard)
    db_session.flush()

    for user_id, role, status in (
        (EDITOR_ID, DashboardRole.EDITOR, MemberStatus.APPROVED),
        (VIEWER_ID, DashboardRole.VIEWER, MemberStatus.APPROVED),
        (PENDING_ID, DashboardRole.EDITOR, MemberStatus.PENDING),
    ):
        db_session.add(DashboardMember(
            dashboard_id=dashboard.id,
            user_id=user_id,
            role=role,
            status=status,
        ))
    db_session.commit()
    db_session.refresh(dashboard)
    return dashboard


@pytest.fixture
def other_dashboard(db_session):
    """A dashboard none of the dashboard fixture's members belong to."""
    dashboard = Dashboard(id=str(uuid.uuid4()), title="Elsewhere", owner_id=STRANGER_ID)
    db_session.add(dashboard)
    db_session.commit()
    db_session.refresh(dashboard)
    return dashboard


@pytest.fixture
def sample_account(db_session, dashboard):
    """Create a sample account."""
    account = Account(id=str(uuid.uuid4()), dashboard_id=dashboard.id, name="Test Credit")
    account.account_type = AccountType.credit
    account.is_active = True

    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture
def sample_recurrence(db_session, dashboard):
    """Monthly rent starting 2024-01-01."""
    return make_recurrence(db_session, dashboard)


@pytest.fixture
def owner_headers():
    return {"X-User-Id": OWNER_ID}


@pytest.fixture
def viewer_headers():
    return {"X-User-Id": VIEWER_ID}
