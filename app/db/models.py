"""
SQLAlchemy 2.0 ORM models for the billing service.

The ``accounts`` table is the authoritative per-user record. Its
subscription columns are only ever written with values sourced from the
payment processor; nothing here derives billing dates locally.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    String,
    Unicode,
)
from sqlalchemy import (
    Enum as SAEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# ─── Account ──────────────────────────────────────────────────


class Account(Base):
    """Authoritative account record — one per user."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "NOT cancel_at_period_end OR subscription_id IS NOT NULL",
            name="ck_accounts_cancel_requires_subscription",
        ),
    )

    # Opaque id issued by the identity provider
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(Unicode(320), nullable=False, default="")
    name: Mapped[str] = mapped_column(Unicode(255), nullable=False, default="")
    plan: Mapped[str] = mapped_column(
        SAEnum("free", "clone", "syndicate", name="account_plan"),
        default="free",
        nullable=False,
    )
    billing_cycle: Mapped[str | None] = mapped_column(
        SAEnum("monthly", "yearly", name="billing_cycle"),
        nullable=True,
    )

    # Stripe references
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    customer_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )

    subscription_status: Mapped[str] = mapped_column(
        SAEnum("none", "active", "trialing", "past_due", "canceled", name="subscription_status"),
        default="none",
        nullable=False,
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_warning: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_used_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Account {self.id} plan={self.plan} sub={self.subscription_id}>"


# ─── Identity ─────────────────────────────────────────────────


class Credential(Base):
    """Identity record for an actor. Deleted after the account record."""

    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(Unicode(320), unique=True, nullable=False, index=True)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
