"""dashboards, recurrences, occurrence ledger and installment-aware transactions

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

FREQUENCIES = ("DAILY", "WEEKLY", "BIWEEKLY", "MONTHLY", "BIMONTHLY", "QUARTERLY", "SEMIANNUALLY", "YEARLY")
ENTRY_TYPES = ("income", "expense")


def upgrade() -> None:
    op.create_table(
        "dashboards",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("owner_id", sa.String(36), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "dashboard_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("dashboard_id", sa.String(36), sa.ForeignKey("dashboards.id"), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("role", sa.Enum("OWNER", "EDITOR", "VIEWER", name="dashboardrole"), nullable=False),
        sa.Column("status", sa.Enum("PENDING", "APPROVED", "REJECTED", name="memberstatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("dashboard_id", "user_id", name="uq_dashboard_member"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("dashboard_id", sa.String(36), sa.ForeignKey("dashboards.id"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "account_type",
            sa.Enum("credit", "debit", "bank", "cash", "other", name="accounttype"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "recurrences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("dashboard_id", sa.String(36), sa.ForeignKey("dashboards.id"), nullable=False, index=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("entry_type", sa.Enum(*ENTRY_TYPES, name="entrytype"), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("subcategory", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("installment_count", sa.Integer(), nullable=True),
        sa.Column("anchor_date", sa.Date(), nullable=False),
        sa.Column("occurrence_index", sa.Integer(), nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("last_generated_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_recurrence_due", "recurrences", ["is_active", "next_due_date"])

    op.create_table(
        "recurrence_occurrences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("recurrence_id", sa.String(36), sa.ForeignKey("recurrences.id"), nullable=False),
        sa.Column("occurrence_date", sa.Date(), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("recurrence_id", "occurrence_date", name="uq_recurrence_occurrence"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("dashboard_id", sa.String(36), sa.ForeignKey("dashboards.id"), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("entry_type", sa.Enum(*ENTRY_TYPES, name="entrytype"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("subcategory", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("group_id", sa.String(36), nullable=True, index=True),
        sa.Column("installment_number", sa.Integer(), nullable=True),
        sa.Column("installment_total", sa.Integer(), nullable=True),
        sa.Column("installment_frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=True),
        sa.Column("installment_interval", sa.Integer(), nullable=True),
        sa.Column(
            "installment_status",
            sa.Enum("not_applicable", "pending", "paid", name="installmentstatus"),
            nullable=False,
        ),
        sa.Column("recurrence_id", sa.String(36), sa.ForeignKey("recurrences.id"), nullable=True),
        sa.Column("occurrence_date", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_transaction_dashboard_date", "transactions", ["dashboard_id", "date"])
    op.create_index("idx_transaction_recurrence", "transactions", ["recurrence_id", "occurrence_date"])


def downgrade() -> None:
    op.drop_index("idx_transaction_recurrence", table_name="transactions")
    op.drop_index("idx_transaction_dashboard_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("recurrence_occurrences")
    op.drop_index("idx_recurrence_due", table_name="recurrences")
    op.drop_table("recurrences")
    op.drop_table("accounts")
    op.drop_table("dashboard_members")
    op.drop_table("dashboards")
