"""
Typed Exception Hierarchy for the IPR Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Workflow errors are expected and recoverable: a reviewer clicked a stale
button, a capability was revoked between viewing and acting, an applicant
accepted a suggestion that would corrupt an enum column.  Callers must be
able to translate each of these into a user-facing message without parsing
strings, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        machine.apply(application_id, WorkflowAction.APPROVE, actor)
    except PermissionDeniedError as e:
        api_response(code=e.code, action=e.action, reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    IprKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   |   +-- PendingSuggestionsError
    |   |   +-- OverrideReasonRequiredError
    |   +-- InvalidStateError
    |   +-- ApplicationNotFoundError
    |
    +-- AuthorizationError
    |   +-- PermissionDeniedError
    |
    +-- ValidationError
    |   +-- InvalidEnumValueError
    |   +-- UnknownFieldError
    |   +-- MissingValueError
    |
    +-- SuggestionError
    |   +-- SuggestionNotFoundError
    |   +-- SuggestionAlreadyResolvedError
    |
    +-- ContributorError
    |   +-- DuplicateContributorError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PersistenceUnavailableError

===============================================================================
HANDLING PATTERNS
===============================================================================

* Everything except PersistenceUnavailableError is an expected outcome of a
  single request; report it and leave the aggregate as it was.
* ConcurrencyError -> reload the application and let the user retry.
* PersistenceUnavailableError -> generic retryable failure ("try again").
"""


class IprKernelError(Exception):
    """
    Base exception for all IPR kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "IPR_KERNEL_ERROR"
    retryable: bool = False


# Workflow-related exceptions


class WorkflowError(IprKernelError):
    """Base exception for workflow state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """The requested action has no edge from the application's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, application_id: str, from_status: str, action: str, reason: str = ""):
        self.application_id = application_id
        self.from_status = from_status
        self.action = action
        self.reason = reason
        message = f"Cannot {action} application {application_id} from status '{from_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PendingSuggestionsError(InvalidTransitionError):
    """Resubmission blocked by unresolved edit suggestions."""

    code: str = "PENDING_SUGGESTIONS"

    def __init__(self, application_id: str, pending_count: int):
        self.pending_count = pending_count
        super().__init__(
            application_id,
            "changes_required",
            "resubmit",
            f"{pending_count} suggestion(s) still pending; "
            "resolve them or acknowledge to proceed",
        )


class OverrideReasonRequiredError(InvalidTransitionError):
    """A system override was requested without an audit reason."""

    code: str = "OVERRIDE_REASON_REQUIRED"

    def __init__(self, application_id: str, from_status: str):
        super().__init__(
            application_id, from_status, "system_override",
            "a non-empty reason is required",
        )


class InvalidStateError(WorkflowError):
    """Operation not permitted while the application is in its current status."""

    code: str = "INVALID_STATE"

    def __init__(self, application_id: str, status: str, operation: str):
        self.application_id = application_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} while application {application_id} "
            f"is in status '{status}'"
        )


class ApplicationNotFoundError(WorkflowError):
    """Application with given ID was not found."""

    code: str = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application not found: {application_id}")


# Authorization exceptions


class AuthorizationError(IprKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class PermissionDeniedError(AuthorizationError):
    """Actor lacks the capability or party relation the action requires."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_ref: str, action: str, reason: str):
        self.actor_ref = actor_ref
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_ref} may not {action}: {reason}")


# Validation exceptions


class ValidationError(IprKernelError):
    """Base exception for field validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidEnumValueError(ValidationError):
    """Value is outside the fixed domain of an enumerated field."""

    code: str = "INVALID_ENUM_VALUE"

    def __init__(self, field_name: str, value: str, allowed: tuple[str, ...]):
        self.field_name = field_name
        self.value = value
        self.allowed = allowed
        super().__init__(
            f'Invalid value "{value}" for {field_name}. '
            f"Must be one of: {', '.join(allowed)}"
        )


class UnknownFieldError(ValidationError):
    """Field is not part of the editable application surface."""

    code: str = "UNKNOWN_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Unknown or non-editable field: {field_name}")


class MissingValueError(ValidationError):
    """A required value was empty."""

    code: str = "MISSING_VALUE"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"A value is required for {field_name}")


# Suggestion exceptions


class SuggestionError(IprKernelError):
    """Base exception for edit suggestion errors."""

    code: str = "SUGGESTION_ERROR"


class SuggestionNotFoundError(SuggestionError):
    """Suggestion with given ID was not found."""

    code: str = "SUGGESTION_NOT_FOUND"

    def __init__(self, suggestion_id: str):
        self.suggestion_id = suggestion_id
        super().__init__(f"Edit suggestion not found: {suggestion_id}")


class SuggestionAlreadyResolvedError(SuggestionError):
    """Suggestion was already accepted or rejected."""

    code: str = "SUGGESTION_ALREADY_RESOLVED"

    def __init__(self, suggestion_id: str, status: str):
        self.suggestion_id = suggestion_id
        self.status = status
        super().__init__(
            f"Edit suggestion {suggestion_id} already resolved as '{status}'"
        )


# Contributor exceptions


class ContributorError(IprKernelError):
    """Base exception for contributor roster errors."""

    code: str = "CONTRIBUTOR_ERROR"


class DuplicateContributorError(ContributorError):
    """Identity already present on the application's roster."""

    code: str = "DUPLICATE_CONTRIBUTOR"

    def __init__(self, application_id: str, identity: str):
        self.application_id = application_id
        self.identity = identity
        super().__init__(
            f"Contributor {identity} is already listed on application {application_id}"
        )


# Concurrency exceptions


class ConcurrencyError(IprKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConcurrentModificationError(ConcurrencyError):
    """Application was modified by another transaction."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        application_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.application_id = application_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        detail = ""
        if expected_version is not None:
            detail = f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            f"Application {application_id} was modified by another "
            f"transaction{detail}"
        )


# Immutability exceptions


class ImmutabilityError(IprKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only or resolved record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Infrastructure


class PersistenceUnavailableError(IprKernelError):
    """The aggregate store could not be reached. Safe to retry."""

    code: str = "PERSISTENCE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Persistence unavailable during {operation}; please retry"
        )
