"""
Module: ipr_kernel.models.incentive
Responsibility: ORM persistence for incentive policies and per-contributor
    incentive credits.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one active policy per ipr_type (partial unique index).
    - UNIQUE(application_id, identity) on credits; credits are append-only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ipr_kernel.db.base import Base, UUIDString
from ipr_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from ipr_kernel.domain.incentive import IncentivePolicy


class IncentivePolicyModel(Base):
    """Configured reward for one IPR type.  Read-only to the kernel."""

    __tablename__ = "ipr_incentive_policies"

    __table_args__ = (
        CheckConstraint("base_points >= 0", name="ck_ipr_policies_points_nonneg"),
        CheckConstraint(
            "base_incentive_amount >= 0", name="ck_ipr_policies_amount_nonneg",
        ),
        Index(
            "ix_ipr_incentive_policies_active_type",
            "ipr_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    ipr_type: Mapped[str] = mapped_column(String(20), nullable=False)
    base_points: Mapped[int] = mapped_column(Integer, nullable=False)
    base_incentive_amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<IncentivePolicy {self.ipr_type} {self.base_incentive_amount}/"
            f"{self.base_points}pts active={self.is_active}>"
        )

    def to_dto(self) -> IncentivePolicy:
        from ipr_kernel.domain.application import IprType
        from ipr_kernel.domain.incentive import IncentivePolicy as PolicyDTO

        return PolicyDTO(
            ipr_type=IprType(self.ipr_type),
            base_points=self.base_points,
            base_incentive_amount=Decimal(self.base_incentive_amount),
        )


class IncentiveCreditModel(Base):
    """One contributor's share of a published application's reward."""

    __tablename__ = "ipr_incentive_credits"

    __table_args__ = (
        UniqueConstraint(
            "application_id", "identity",
            name="uq_ipr_incentive_credits_application_identity",
        ),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ipr_applications.id"), nullable=False,
    )
    identity: Mapped[str] = mapped_column(String(200), nullable=False)
    employee_category: Mapped[str] = mapped_column(String(20), nullable=False)
    employee_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    incentive_amount: Mapped[Decimal] = mapped_column(nullable=False)
    points: Mapped[Decimal] = mapped_column(nullable=False)
    credited_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<IncentiveCredit {self.identity} {self.incentive_amount}/"
            f"{self.points}pts>"
        )


@event.listens_for(IncentiveCreditModel, "before_update")
def prevent_credit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="IncentiveCredit",
        entity_id=str(target.id),
        reason="Incentive credits are immutable -- cannot modify",
    )


@event.listens_for(IncentiveCreditModel, "before_delete")
def prevent_credit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="IncentiveCredit",
        entity_id=str(target.id),
        reason="Incentive credits are immutable -- cannot delete",
    )
