"""Services for the IPR kernel (write side)."""

from ipr_kernel.services.application_service import ApplicationRegistry
from ipr_kernel.services.event_outbox import DomainEventOutbox, LoggingEventDispatcher
from ipr_kernel.services.incentive_service import IncentiveService
from ipr_kernel.services.mentor_gate import MentorDirectory, MentorGate, StaticMentorDirectory
from ipr_kernel.services.suggestion_service import SuggestionLedger
from ipr_kernel.services.workflow_service import ApplicationStateMachine

__all__ = [
    "ApplicationRegistry",
    "ApplicationStateMachine",
    "DomainEventOutbox",
    "IncentiveService",
    "LoggingEventDispatcher",
    "MentorDirectory",
    "MentorGate",
    "StaticMentorDirectory",
    "SuggestionLedger",
]
