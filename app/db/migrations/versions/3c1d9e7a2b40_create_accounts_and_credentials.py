"""Create accounts and credentials tables.

Revision ID: 3c1d9e7a2b40
Revises:
Create Date: 2026-03-02 09:00:00.000000+00:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3c1d9e7a2b40"
down_revision = None
branch_labels = None
depends_on = None

account_plan = sa.Enum("free", "clone", "syndicate", name="account_plan")
billing_cycle = sa.Enum("monthly", "yearly", name="billing_cycle")
subscription_status = sa.Enum(
    "none", "active", "trialing", "past_due", "canceled", name="subscription_status"
)


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.Unicode(320), nullable=False, server_default=""),
        sa.Column("name", sa.Unicode(255), nullable=False, server_default=""),
        sa.Column("plan", account_plan, nullable=False, server_default="free"),
        sa.Column("billing_cycle", billing_cycle, nullable=True),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("customer_id", sa.String(255), nullable=True),
        sa.Column("subscription_status", subscription_status, nullable=False, server_default="none"),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_warning", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_used_trial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "NOT cancel_at_period_end OR subscription_id IS NOT NULL",
            name="ck_accounts_cancel_requires_subscription",
        ),
    )
    op.create_index("ix_accounts_subscription_id", "accounts", ["subscription_id"], unique=True)
    op.create_index("ix_accounts_customer_id", "accounts", ["customer_id"], unique=True)

    op.create_table(
        "credentials",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.Unicode(320), nullable=False),
        sa.Column("disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_credentials_email", "credentials", ["email"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_credentials_email", table_name="credentials")
    op.drop_table("credentials")
    op.drop_index("ix_accounts_customer_id", table_name="accounts")
    op.drop_index("ix_accounts_subscription_id", table_name="accounts")
    op.drop_table("accounts")
    subscription_status.drop(op.get_bind(), checkfirst=True)
    billing_cycle.drop(op.get_bind(), checkfirst=True)
    account_plan.drop(op.get_bind(), checkfirst=True)
