"""
DomainEventOutbox -- post-commit delivery of domain events.

Responsibility:
    Services stage events while the transaction is open; the outbox hands
    them to an ``EventDispatcher`` only after the session commits.  A
    rollback discards whatever was staged.  A delivery failure is logged
    and the event kept on ``failed`` for ``redeliver_failed()``; it never
    undoes the committed workflow change.

Architecture position:
    Kernel > Services.  One outbox per Session, stored in ``session.info``.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from ipr_kernel.domain.events import DomainEvent, EventDispatcher
from ipr_kernel.logging_config import get_logger

logger = get_logger("services.event_outbox")

_OUTBOX_KEY = "ipr_event_outbox"


class LoggingEventDispatcher:
    """Default dispatcher: records each event as a structured log line."""

    def dispatch(self, domain_event: DomainEvent) -> None:
        logger.info(
            "domain_event",
            extra={
                "event_type": domain_event.event_type,
                "event_id": str(domain_event.event_id),
                "application_id": str(domain_event.application_id),
            },
        )


class DomainEventOutbox:
    """Per-session staging area for domain events."""

    def __init__(self, session: Session, dispatcher: EventDispatcher | None = None):
        self._session = session
        self.dispatcher: EventDispatcher = dispatcher or LoggingEventDispatcher()
        self.staged: list[DomainEvent] = []
        self.failed: list[DomainEvent] = []
        event.listen(session, "after_commit", self._on_commit)
        event.listen(session, "after_rollback", self._on_rollback)

    @classmethod
    def for_session(
        cls,
        session: Session,
        dispatcher: EventDispatcher | None = None,
    ) -> DomainEventOutbox:
        """Return the session's outbox, creating it on first use.

        A dispatcher passed later replaces the existing one.
        """
        outbox = session.info.get(_OUTBOX_KEY)
        if outbox is None:
            outbox = cls(session, dispatcher)
            session.info[_OUTBOX_KEY] = outbox
        elif dispatcher is not None:
            outbox.dispatcher = dispatcher
        return outbox

    def stage(self, domain_event: DomainEvent) -> None:
        self.staged.append(domain_event)

    def _deliver(self, events: list[DomainEvent]) -> list[DomainEvent]:
        undelivered: list[DomainEvent] = []
        for domain_event in events:
            try:
                self.dispatcher.dispatch(domain_event)
            except Exception:
                logger.exception(
                    "domain_event_delivery_failed",
                    extra={
                        "event_type": domain_event.event_type,
                        "event_id": str(domain_event.event_id),
                    },
                )
                undelivered.append(domain_event)
        return undelivered

    def _on_commit(self, session: Session) -> None:
        # Only the outermost commit delivers.
        if session.in_nested_transaction():
            return
        events, self.staged = self.staged, []
        if events:
            self.failed.extend(self._deliver(events))

    def _on_rollback(self, session: Session) -> None:
        if session.in_nested_transaction():
            return
        if self.staged:
            logger.debug(
                "domain_events_discarded",
                extra={"count": len(self.staged)},
            )
        self.staged = []

    def redeliver_failed(self) -> int:
        """Retry events whose delivery failed; returns how many succeeded."""
        events, self.failed = self.failed, []
        still_failed = self._deliver(events)
        self.failed = still_failed
        return len(events) - len(still_failed)
