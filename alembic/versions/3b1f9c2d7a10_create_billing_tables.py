"""create billing tables and seed the plan catalog

Revision ID: 3b1f9c2d7a10
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

import uuid
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f9c2d7a10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Same catalog as app.services.plan_catalog.DEFAULT_PLANS.
_SEED_PLANS = [
    # plan_key, name, price, ai_feedback, tts, students, scripts, sort
    ("free", "Free", 0, False, False, 3, 5, 0),
    ("basic", "Basic", 29000, False, True, 20, 100, 1),
    ("pro", "Pro", 59000, True, True, 50, 500, 2),
    ("academy", "Academy", 149000, True, True, 300, 5000, 3),
]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False, unique=True),
    )

    op.create_table(
        "org_memberships",
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            primary_key=True,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_role", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_org_memberships_user", "org_memberships", ["user_id"])

    plans = op.create_table(
        "subscription_plans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("plan_key", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("price_monthly", sa.Integer(), nullable=False),
        sa.Column("ai_feedback_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_students", sa.Integer(), nullable=False),
        sa.Column("max_scripts", sa.Integer(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column(
            "plan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscription_plans.id"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("billing_credential", sa.Text(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_subscriptions_org_status", "subscriptions", ["organization_id", "status"]
    )
    op.create_index(
        "ix_subscriptions_status_period_end",
        "subscriptions",
        ["status", "current_period_end"],
    )
    op.create_index(
        "uq_subscriptions_org_live",
        "subscriptions",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('trialing', 'active', 'past_due')"),
    )

    op.create_table(
        "payment_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("provider_reference", sa.String(length=200), nullable=True),
        sa.Column("idempotency_reference", sa.String(length=100), nullable=True, unique=True),
        sa.Column("payment_method", sa.String(length=100), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_payment_history_subscription",
        "payment_history",
        ["subscription_id", "occurred_at"],
    )
    op.create_index(
        "ix_payment_history_org", "payment_history", ["organization_id", "occurred_at"]
    )

    op.bulk_insert(
        plans,
        [
            {
                "id": uuid.uuid4(),
                "plan_key": key,
                "name": name,
                "price_monthly": price,
                "ai_feedback_enabled": ai_feedback,
                "tts_enabled": tts,
                "max_students": students,
                "max_scripts": scripts,
                "sort_order": sort_order,
                "is_active": True,
            }
            for key, name, price, ai_feedback, tts, students, scripts, sort_order in _SEED_PLANS
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_payment_history_org", table_name="payment_history")
    op.drop_index("ix_payment_history_subscription", table_name="payment_history")
    op.drop_table("payment_history")
    op.drop_index("uq_subscriptions_org_live", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status_period_end", table_name="subscriptions")
    op.drop_index("ix_subscriptions_org_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("subscription_plans")
    op.drop_index("ix_org_memberships_user", table_name="org_memberships")
    op.drop_table("org_memberships")
    op.drop_table("organizations")
