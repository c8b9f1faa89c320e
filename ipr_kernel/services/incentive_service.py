"""
ipr_kernel.services.incentive_service -- Exactly-once incentive crediting.

Responsibility:
    Looks up the active incentive policy for an application's IPR type
    (falling back to ``ipr_config`` defaults), runs the pure split in
    ``ipr_engines.incentive`` over the listed contributors plus the primary
    applicant, and records the result once per application.

Architecture position:
    Kernel > Services.  Called by ApplicationStateMachine on entering
    ``published``; never commits.

Invariants enforced:
    - Exactly once: the credit is a conditional UPDATE ... WHERE
      incentive_amount IS NULL.  Only the call whose UPDATE matched a row
      writes IncentiveCredit rows; every other call is a no-op.
    - Credited values never change afterwards (ORM write-once guard).

Failure modes:
    - A misconfigured defaults file propagates its ValueError/KeyError.
    - IntegrityError on a duplicate credit row cannot happen once the
      conditional UPDATE has matched, because it runs under the row lock.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ipr_config import IprDefaultsConfig, get_incentive_defaults
from ipr_engines.incentive import calculate_incentives, inventor_roster
from ipr_kernel.domain.application import IprType
from ipr_kernel.domain.clock import Clock
from ipr_kernel.domain.events import IncentiveCredited
from ipr_kernel.domain.incentive import CreditOutcome, IncentivePolicy
from ipr_kernel.logging_config import get_logger
from ipr_kernel.models.application import ApplicationModel
from ipr_kernel.models.incentive import IncentiveCreditModel, IncentivePolicyModel
from ipr_kernel.services.base import BaseService, persistence_boundary
from ipr_kernel.services.event_outbox import DomainEventOutbox

logger = get_logger("services.incentive")


class IncentiveService(BaseService):
    """Policy lookup plus compare-and-set credit."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: DomainEventOutbox | None = None,
        defaults_loader: Callable[[], IprDefaultsConfig] = get_incentive_defaults,
    ):
        super().__init__(session, clock)
        self._outbox = outbox or DomainEventOutbox.for_session(session)
        self._defaults_loader = defaults_loader

    def resolve_policy(self, ipr_type: IprType | str) -> IncentivePolicy:
        """Active policy row for the type, or the configured default."""
        ipr_type = IprType(ipr_type)
        stmt = select(IncentivePolicyModel).where(
            IncentivePolicyModel.ipr_type == ipr_type.value,
            IncentivePolicyModel.is_active.is_(True),
        )
        with persistence_boundary("resolve_incentive_policy"):
            model = self.session.execute(stmt).scalars().first()
        if model is not None:
            return model.to_dto()

        default = self._defaults_loader().policy_for(ipr_type.value)
        if default is None:
            raise KeyError(f"No default incentive policy for {ipr_type.value}")
        logger.warning(
            "incentive_policy_defaulted",
            extra={
                "ipr_type": ipr_type.value,
                "base_points": default.base_points,
                "base_incentive_amount": str(default.base_incentive_amount),
            },
        )
        return IncentivePolicy(
            ipr_type=ipr_type,
            base_points=default.base_points,
            base_incentive_amount=default.base_incentive_amount,
            is_default=True,
        )

    def credit_on_publish(self, application: ApplicationModel) -> CreditOutcome:
        """Credit the application's contributors if nobody has yet.

        Preconditions:
            ``application`` is locked by the caller and its pending changes
            are flushed.
        """
        application_id: UUID = application.id
        policy = self.resolve_policy(application.ipr_type)
        roster = inventor_roster(
            application.applicant_ref,
            application.applicant_type,
            [c.to_dto() for c in application.contributors],
        )
        distribution = calculate_incentives(policy=policy, contributors=roster)
        now = self._clock.now()

        stmt = (
            update(ApplicationModel)
            .where(
                ApplicationModel.id == application_id,
                ApplicationModel.incentive_amount.is_(None),
            )
            .values(
                incentive_amount=distribution.per_person_incentive,
                points_awarded=distribution.per_person_points,
                credited_at=now,
                version=ApplicationModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with persistence_boundary("credit_incentive", application_id):
            result = self.session.execute(stmt)

        if result.rowcount != 1:
            logger.info(
                "incentive_already_credited",
                extra={"application_id": str(application_id)},
            )
            return CreditOutcome(application_id=application_id, credited=False)

        for share in distribution.shares:
            self.session.add(
                IncentiveCreditModel(
                    application_id=application_id,
                    identity=share.identity,
                    employee_category=share.employee_category.value,
                    employee_type=share.employee_type.value if share.employee_type else None,
                    incentive_amount=share.incentive_amount,
                    points=share.points,
                    credited_at=now,
                )
            )
        self._flush("credit_incentive", application_id)
        with persistence_boundary("credit_incentive", application_id):
            self.session.refresh(application)

        self._outbox.stage(
            IncentiveCredited(
                application_id=application_id,
                occurred_at=now,
                per_person_incentive=distribution.per_person_incentive,
                per_person_points=distribution.per_person_points,
                contributor_count=len(distribution.shares),
            )
        )
        logger.info(
            "incentive_credited",
            extra={
                "application_id": str(application_id),
                "ipr_type": policy.ipr_type.value,
                "policy_defaulted": policy.is_default,
                "per_person_incentive": str(distribution.per_person_incentive),
                "per_person_points": str(distribution.per_person_points),
                "eligible_for_incentive": distribution.eligible_for_incentive,
                "eligible_for_points": distribution.eligible_for_points,
                "total_incentive": str(distribution.total_incentive),
            },
        )
        return CreditOutcome(
            application_id=application_id,
            credited=True,
            distribution=distribution,
        )

    def get_credits(self, application_id: UUID) -> list[tuple[str, Decimal, Decimal]]:
        """(identity, incentive_amount, points) per credited contributor."""
        stmt = (
            select(IncentiveCreditModel)
            .where(IncentiveCreditModel.application_id == application_id)
            .order_by(IncentiveCreditModel.identity)
        )
        with persistence_boundary("get_credits", application_id):
            rows = self.session.execute(stmt).scalars().all()
        return [(m.identity, Decimal(m.incentive_amount), Decimal(m.points)) for m in rows]
