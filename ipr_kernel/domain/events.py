"""
Domain events emitted by the workflow.

Events are staged during a transaction and handed to an ``EventDispatcher``
only after that transaction commits (see ``services/event_outbox.py``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4


@dataclass(frozen=True)
class DomainEvent:
    application_id: UUID
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class StatusChanged(DomainEvent):
    from_status: str = ""
    to_status: str = ""
    action: str = ""
    actor_ref: str = ""


@dataclass(frozen=True)
class SuggestionProposed(DomainEvent):
    suggestion_id: UUID | None = None
    field_name: str = ""
    reviewer_ref: str = ""


@dataclass(frozen=True)
class SuggestionResolved(DomainEvent):
    suggestion_id: UUID | None = None
    status: str = ""
    responded_by: str = ""


@dataclass(frozen=True)
class IncentiveCredited(DomainEvent):
    per_person_incentive: Decimal = Decimal("0")
    per_person_points: Decimal = Decimal("0")
    contributor_count: int = 0


@runtime_checkable
class EventDispatcher(Protocol):
    """Delivery channel for committed domain events (notifications etc.)."""

    def dispatch(self, event: DomainEvent) -> None: ...
