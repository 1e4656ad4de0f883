"""create_billing_tables

Revision ID: 4b1e7c2a9d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "4b1e7c2a9d10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tenant billing, plan catalog, admin, period and warning ledger tables."""

    op.create_table(
        "billing_tenants",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("display_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("billing_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("current_plan_id", sa.String(255), nullable=True),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("premium_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("free_tier", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_billing_tenants_status", "billing_tenants", ["billing_status"])

    op.create_table(
        "billing_plans",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("trial_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("interval", sa.String(10), nullable=False, server_default="month"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "billing_admin_users",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(255),
            sa.ForeignKey("billing_tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_billing_admin_users_tenant", "billing_admin_users", ["tenant_id"])

    op.create_table(
        "billing_periods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.String(255),
            sa.ForeignKey("billing_tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("plan_id", sa.String(255), nullable=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_billing_periods_tenant", "billing_periods", ["tenant_id", "period_start"]
    )

    op.create_table(
        "billing_sent_warnings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("threshold_day", sa.Integer(), nullable=False),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "kind", "threshold_day", "expiry", name="uq_billing_sent_warning"
        ),
    )


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_table("billing_sent_warnings")
    op.drop_index("idx_billing_periods_tenant", table_name="billing_periods")
    op.drop_table("billing_periods")
    op.drop_index("idx_billing_admin_users_tenant", table_name="billing_admin_users")
    op.drop_table("billing_admin_users")
    op.drop_table("billing_plans")
    op.drop_index("idx_billing_tenants_status", table_name="billing_tenants")
    op.drop_table("billing_tenants")
