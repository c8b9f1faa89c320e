"""
ipr_kernel.services.application_service -- Draft creation and roster upkeep.

Responsibility:
    Creates draft applications with generated application numbers, edits
    draft fields, maintains the contributor roster, and derives complete
    filings from published provisional ones.

Architecture position:
    Kernel > Services.  Never commits.  Status changes are NOT made here;
    they belong to ApplicationStateMachine.

Invariants enforced:
    - Only actors with ``file_new`` create drafts.
    - Only the applicant edits fields (draft only) or the roster (draft or
      changes_required).
    - Contributor identities are unique per application, compared lower-cased.
    - External contributors carry no employee_type.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ipr_engines.permissions import require_applicant, require_capability
from ipr_kernel.domain.application import (
    ROSTER_EDIT_STAGES,
    Application,
    ApplicationStatus,
    DraftRequest,
    EmployeeCategory,
    EmployeeType,
    FilingType,
    IprType,
    format_application_number,
    normalize_field_name,
    normalize_identity,
    validate_field_value,
)
from ipr_kernel.domain.capabilities import Actor
from ipr_kernel.domain.clock import Clock
from ipr_kernel.exceptions import (
    ApplicationNotFoundError,
    DuplicateContributorError,
    InvalidEnumValueError,
    InvalidStateError,
    MissingValueError,
)
from ipr_kernel.logging_config import LogContext, get_logger
from ipr_kernel.models.application import ApplicationModel, ContributorModel
from ipr_kernel.services.base import BaseService, persistence_boundary

logger = get_logger("services.application")


def _parse_enum(enum_cls, field_name: str, value):
    try:
        return enum_cls((value or "").strip() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidEnumValueError(
            field_name, str(value), tuple(m.value for m in enum_cls),
        ) from None


def _normalize_sdg_codes(codes) -> list[str]:
    return sorted({str(c).strip() for c in (codes or ()) if str(c).strip()})


class ApplicationRegistry(BaseService):
    """Draft lifecycle outside the state machine."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def create_draft(self, actor: Actor, request: DraftRequest) -> Application:
        """Create a draft owned by ``actor``.

        Raises:
            PermissionDeniedError: Actor lacks ``file_new``.
            InvalidEnumValueError / MissingValueError: Bad field values.
            ApplicationNotFoundError / InvalidStateError /
            PermissionDeniedError: ``source_provisional_id`` does not name
                this applicant's published provisional filing.
        """
        require_capability(actor, "file_new", "create_draft")

        ipr_type = IprType(validate_field_value("ipr_type", request.ipr_type))
        filing_type = FilingType(validate_field_value("filing_type", request.filing_type))
        project_type = (
            validate_field_value("project_type", request.project_type)
            if request.project_type else None
        )
        applicant_type = _parse_enum(EmployeeType, "applicant_type", request.applicant_type)
        title = validate_field_value("title", request.title)

        if request.source_provisional_id is not None:
            self._check_source_provisional(actor, request.source_provisional_id)
            filing_type = FilingType.COMPLETE

        now = self._clock.now()
        model = ApplicationModel(
            application_number=self._next_application_number(ipr_type),
            ipr_type=ipr_type.value,
            status=ApplicationStatus.DRAFT.value,
            filing_type=filing_type.value,
            project_type=project_type,
            title=title.strip(),
            description=request.description,
            remarks=request.remarks,
            applicant_ref=actor.ref,
            applicant_type=applicant_type.value,
            sdg_codes=_normalize_sdg_codes(request.sdg_codes),
            source_provisional_id=request.source_provisional_id,
            changes_requested_by_mentor=False,
            revision_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self._flush("create_draft")

        with LogContext.bind(application_id=str(model.id), actor_ref=actor.ref):
            logger.info(
                "application_draft_created",
                extra={
                    "application_number": model.application_number,
                    "ipr_type": model.ipr_type,
                    "filing_type": model.filing_type,
                    "source_provisional_id": (
                        str(model.source_provisional_id)
                        if model.source_provisional_id else None
                    ),
                },
            )
        return model.to_dto()

    def update_draft_fields(
        self,
        application_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
        **fields,
    ) -> Application:
        """Overwrite editable fields (and ``sdg_codes``) on a draft."""
        model = self._load_application(application_id, expected_version=expected_version)
        require_applicant(actor, model.to_dto(), "update_draft_fields")
        if model.status != ApplicationStatus.DRAFT.value:
            raise InvalidStateError(str(application_id), model.status, "edit draft fields")

        updates: dict[str, object] = {}
        for raw_name, raw_value in fields.items():
            if raw_name == "sdg_codes":
                updates["sdg_codes"] = _normalize_sdg_codes(raw_value)
                continue
            name = normalize_field_name(raw_name)
            updates[name] = validate_field_value(name, raw_value)

        for name, value in updates.items():
            setattr(model, name, value)
        model.updated_at = self._clock.now()
        self._flush("update_draft_fields", model.id)

        logger.info(
            "application_draft_updated",
            extra={"application_id": str(model.id), "fields": sorted(updates)},
        )
        return model.to_dto()

    def add_contributor(
        self,
        application_id: UUID,
        actor: Actor,
        identity: str,
        employee_category: EmployeeCategory | str,
        employee_type: EmployeeType | str | None = None,
        name: str | None = None,
        role: str = "inventor",
        expected_version: int | None = None,
    ) -> Application:
        """Append a contributor to the roster.

        Raises:
            DuplicateContributorError: Identity already on the roster.
            InvalidStateError: Application not in draft or changes_required.
            MissingValueError: Internal contributor without employee_type.
        """
        model = self._load_application(application_id, expected_version=expected_version)
        require_applicant(actor, model.to_dto(), "add_contributor")
        if ApplicationStatus(model.status) not in ROSTER_EDIT_STAGES:
            raise InvalidStateError(str(application_id), model.status, "add contributors")

        normalized = normalize_identity(identity)
        category = _parse_enum(EmployeeCategory, "employee_category", employee_category)
        if category == EmployeeCategory.EXTERNAL:
            person_type = None
        elif employee_type is None:
            raise MissingValueError("employee_type")
        else:
            person_type = _parse_enum(EmployeeType, "employee_type", employee_type)

        if any(c.identity == normalized for c in model.contributors):
            raise DuplicateContributorError(str(application_id), normalized)

        model.contributors.append(
            ContributorModel(
                position=len(model.contributors),
                employee_category=category.value,
                employee_type=person_type.value if person_type else None,
                identity=normalized,
                name=name,
                role=role,
            )
        )
        model.updated_at = self._clock.now()
        try:
            self._flush("add_contributor", model.id)
        except IntegrityError as exc:
            raise DuplicateContributorError(str(application_id), normalized) from exc

        logger.info(
            "contributor_added",
            extra={
                "application_id": str(model.id),
                "identity": normalized,
                "employee_category": category.value,
                "employee_type": person_type.value if person_type else None,
            },
        )
        return model.to_dto()

    def get_application(self, application_id: UUID) -> Application:
        with persistence_boundary("get_application", application_id):
            model = self.session.get(ApplicationModel, application_id)
        if model is None:
            raise ApplicationNotFoundError(str(application_id))
        return model.to_dto()

    # ------------------------------------------------------------------

    def _next_application_number(self, ipr_type: IprType) -> str:
        year = self._clock.current_year()
        prefix = format_application_number(ipr_type, year, 0)[:-4]
        stmt = select(func.count(ApplicationModel.id)).where(
            ApplicationModel.application_number.like(f"{prefix}%"),
        )
        with persistence_boundary("number_application"):
            existing = self.session.execute(stmt).scalar_one()
        return format_application_number(ipr_type, year, existing + 1)

    def _check_source_provisional(self, actor: Actor, source_id: UUID) -> None:
        with persistence_boundary("load_source_provisional", source_id):
            source = self.session.get(ApplicationModel, source_id)
        if source is None:
            raise ApplicationNotFoundError(str(source_id))
        require_applicant(actor, source.to_dto(), "derive a complete filing")
        if (
            source.filing_type != FilingType.PROVISIONAL.value
            or source.status != ApplicationStatus.PUBLISHED.value
        ):
            raise InvalidStateError(
                str(source_id),
                f"{source.status}/{source.filing_type}",
                "derive a complete filing (requires a published provisional)",
            )
