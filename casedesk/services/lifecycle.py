"""
casedesk Case Lifecycle Service

Creation, status transitions and assessments for all seven case kinds.

State machine:
    RECEIVED    --> IN_PROGRESS, COMPLETED, CANCELLED
    IN_PROGRESS --> COMPLETED, CANCELLED
    COMPLETED, CANCELLED: terminal, no way out through this service

Order of effects: persist first, notify second. Notification trouble is
logged by the dispatcher and never changes the result the caller sees.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.case import (
    Assessment,
    AssessmentInput,
    Case,
    CaseInput,
    CaseKind,
    CaseStatus,
    Criterion,
    Page,
    Perspective,
    Person,
    utcnow,
)
from ..models.notification import CaseCreated, CaseTransitioned
from .catalog import aggregate_score

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.RECEIVED: frozenset({
        CaseStatus.IN_PROGRESS, CaseStatus.COMPLETED, CaseStatus.CANCELLED
    }),
    CaseStatus.IN_PROGRESS: frozenset({CaseStatus.COMPLETED, CaseStatus.CANCELLED}),
    CaseStatus.COMPLETED: frozenset(),
    CaseStatus.CANCELLED: frozenset(),
}

# Criteria each perspective must score; FORM is optional for USER only
REQUIRED_CRITERIA = (Criterion.DIFFICULTY, Criterion.TIME, Criterion.IMPACT, Criterion.URGENCY)
PERSPECTIVE_CRITERIA = {
    Perspective.USER: REQUIRED_CRITERIA + (Criterion.FORM,),
    Perspective.ADMIN: REQUIRED_CRITERIA,
}

# Kinds whose counterpart lives outside the company
_INTERNAL_KINDS = frozenset({CaseKind.INTERNAL})


def _aware(value: datetime) -> datetime:
    """Naive datetimes from clients are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _assessment_from(values: dict, assessed_at: datetime) -> Assessment:
    return Assessment(
        difficulty=values.get(Criterion.DIFFICULTY),
        estimated_time=values.get(Criterion.TIME),
        impact=values.get(Criterion.IMPACT),
        urgency=values.get(Criterion.URGENCY),
        form=values.get(Criterion.FORM),
        assessed_at=assessed_at
    )


class CaseLifecycleService:
    """
    Enforces the case state machine.

    Rules:
    1. A case starts RECEIVED
    2. Status only moves forward; CANCELLED from any non-terminal status
    3. COMPLETED stamps end_date in the same write as the status
    4. Terminal cases cannot be reopened here (administrative override only)
    5. Every write carries the version it read; a concurrent writer loses
       with Conflict instead of silently overwriting
    """

    def __init__(
        self,
        case_repos,
        person_directory,
        catalog,
        dispatcher,
        default_requester_id: Optional[UUID] = None
    ):
        self.cases = case_repos
        self.people = person_directory
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.default_requester_id = default_requester_id

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_case(
        self,
        kind: CaseKind,
        fields: CaseInput,
        current_user_id: Optional[UUID] = None
    ) -> Case:
        """
        Validate, persist as RECEIVED, then announce to admins.

        The user self-assessment is stamped with the creation time whenever
        any of its fields is present.
        """
        kind = CaseKind(kind)
        self._require_fields(kind, fields)

        start_date = _aware(fields.start_date)
        end_date = _aware(fields.end_date) if fields.end_date else None
        if end_date is not None and end_date <= start_date:
            raise ValidationError("Ngày kết thúc phải lớn hơn ngày bắt đầu")

        handler = await self.people.find_person_by_id(fields.handler_id)
        if handler is None:
            raise ValidationError(f"Handler not found with ID: {fields.handler_id}")
        requester = await self._resolve_requester(fields.requester_id, current_user_id)

        user_scores = {c: v for c, v in fields.user_scores().items() if v is not None}
        await self._validate_scores(Perspective.USER, user_scores)

        now = utcnow()
        case = Case(
            kind=kind,
            title=fields.title.strip(),
            description=fields.description.strip(),
            requester_id=requester.id,
            handler_id=handler.id,
            counterparty_id=fields.counterparty_id,
            counterparty_name=fields.counterparty_name,
            type_ref=getattr(fields, kind.type_field) if kind.type_field else None,
            form=fields.form or "Onsite",
            notes=fields.notes,
            status=CaseStatus.RECEIVED,
            start_date=start_date,
            end_date=end_date,
            user_assessment=_assessment_from(user_scores, now) if user_scores else Assessment(),
            created_at=now,
            updated_at=now
        )
        case = await self.cases.for_kind(kind).add(case)
        logger.info(f"Created {kind.value} case {case.id} for requester {requester.id}")

        await self._notify(CaseCreated(
            case=case,
            requester_name=requester.full_name,
            handler_name=handler.full_name
        ))
        return case

    # =========================================================================
    # Transitions
    # =========================================================================

    async def transition_status(
        self,
        case_id: UUID,
        kind: CaseKind,
        target_status: CaseStatus,
        expected_version: Optional[int] = None
    ) -> Case:
        """
        Move a case to `target_status`.

        Raises NotFoundError for unknown ids and ConflictError for stale
        versions, illegal transitions and anything out of a terminal status.
        """
        target_status = CaseStatus(target_status)
        case = await self.get_case(case_id, kind)

        if expected_version is not None and expected_version != case.version:
            raise ConflictError(
                f"Case has changed since version {expected_version} "
                f"(current version {case.version})"
            )

        self._check_transition(case, target_status)

        changes = {"status": target_status}
        if target_status == CaseStatus.COMPLETED:
            changes["end_date"] = utcnow()

        previous = case.status
        updated = await self.cases.for_kind(case.kind).update(case.id, case.version, changes)
        logger.info(
            f"{case.kind.value} case {case.id}: {previous.value} -> {target_status.value}"
        )

        await self._notify(CaseTransitioned(case=updated, previous_status=previous))
        return updated

    async def set_in_progress(self, case_id: UUID, kind: CaseKind) -> Case:
        return await self.transition_status(case_id, kind, CaseStatus.IN_PROGRESS)

    async def close(self, case_id: UUID, kind: CaseKind) -> Case:
        return await self.transition_status(case_id, kind, CaseStatus.COMPLETED)

    async def cancel(self, case_id: UUID, kind: CaseKind) -> Case:
        return await self.transition_status(case_id, kind, CaseStatus.CANCELLED)

    # =========================================================================
    # Assessment
    # =========================================================================

    async def record_assessment(
        self,
        case_id: UUID,
        kind: CaseKind,
        perspective: Perspective,
        criteria: Union[AssessmentInput, dict]
    ) -> Case:
        """
        Write one perspective's scores and timestamp in a single update.

        All four core criteria are required; FORM is accepted for USER
        only. Each value must fall inside the active vocabulary's range.
        Status is not touched.
        """
        perspective = Perspective(perspective)
        case = await self.get_case(case_id, kind)
        if isinstance(criteria, dict):
            try:
                criteria = AssessmentInput(**criteria)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid assessment: {e}") from e
        values = {c: v for c, v in criteria.values().items() if v is not None}

        missing = [c.value for c in REQUIRED_CRITERIA if c not in values]
        if missing:
            raise ValidationError(
                f"All evaluation fields are required (missing: {', '.join(missing)})"
            )
        if Criterion.FORM in values and Criterion.FORM not in PERSPECTIVE_CRITERIA[perspective]:
            raise ValidationError(f"{perspective.value} assessment has no FORM criterion")

        await self._validate_scores(perspective, values)

        field_name = "user_assessment" if perspective == Perspective.USER else "admin_assessment"
        assessment = _assessment_from(values, utcnow())
        updated = await self.cases.for_kind(case.kind).update(
            case.id,
            case.version,
            {field_name: assessment}
        )
        logger.info(
            f"Recorded {perspective.value} assessment on {case.kind.value} case {case.id} "
            f"(score {aggregate_score(assessment)})"
        )
        return updated

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_case(self, case_id: UUID, kind: CaseKind) -> Case:
        kind = CaseKind(kind)
        case = await self.cases.for_kind(kind).get(case_id)
        if case is None:
            raise NotFoundError(f"{kind.label} not found")
        return case

    async def list_cases(
        self,
        kind: CaseKind,
        status: Optional[CaseStatus] = None,
        page: int = 1,
        limit: int = 10
    ) -> Page:
        page = max(page, 1)
        limit = max(limit, 1)
        items, total = await self.cases.for_kind(CaseKind(kind)).list(
            status=status,
            offset=(page - 1) * limit,
            limit=limit
        )
        return Page(items=items, page=page, limit=limit, total=total)

    # =========================================================================
    # Private methods
    # =========================================================================

    def _require_fields(self, kind: CaseKind, fields: CaseInput) -> None:
        missing = []
        for name in ("title", "description"):
            value = getattr(fields, name)
            if value is None or not value.strip():
                missing.append(name)
        if fields.handler_id is None:
            missing.append("handler_id")
        if fields.start_date is None:
            missing.append("start_date")
        if kind not in _INTERNAL_KINDS and not (
            (fields.counterparty_name and fields.counterparty_name.strip())
            or fields.counterparty_id
        ):
            missing.append("counterparty_name")
        if kind.type_field and not getattr(fields, kind.type_field):
            missing.append(kind.type_field)

        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    async def _resolve_requester(
        self,
        requester_id: Optional[UUID],
        current_user_id: Optional[UUID]
    ) -> Person:
        """
        Explicit requester, else the caller's own Person, else the
        configured default. Never an arbitrary person.
        """
        if requester_id is not None:
            requester = await self.people.find_person_by_id(requester_id)
            if requester is None:
                raise ValidationError(f"Requester not found with ID: {requester_id}")
            return requester

        if current_user_id is not None:
            requester = await self.people.find_person_by_linked_user(current_user_id)
            if requester is not None:
                return requester

        if self.default_requester_id is not None:
            requester = await self.people.find_person_by_id(self.default_requester_id)
            if requester is not None:
                logger.warning(
                    f"User {current_user_id} has no linked person; "
                    f"using default requester {requester.id}"
                )
                return requester
            logger.error(f"Configured default requester {self.default_requester_id} does not exist")

        raise ValidationError(
            "Requester could not be determined: the current user has no linked "
            "employee record and no requester was given"
        )

    async def _validate_scores(self, perspective: Perspective, values: dict) -> None:
        for criterion, value in values.items():
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(
                    f"{criterion.value} must be a positive integer, got {value!r}"
                )
            allowed = await self.catalog.score_range(perspective, criterion)
            if allowed is None:
                raise ValidationError(
                    f"{perspective.value} assessment has no {criterion.value} criterion"
                )
            low, high = allowed
            if not low <= value <= high:
                raise ValidationError(
                    f"{perspective.value} {criterion.value} must be between "
                    f"{low} and {high}, got {value}"
                )

    @staticmethod
    def _check_transition(case: Case, target: CaseStatus) -> None:
        if case.status == CaseStatus.COMPLETED and target == CaseStatus.COMPLETED:
            raise ConflictError("Case is already completed")
        if case.is_terminal:
            raise ConflictError(
                f"Case is {case.status.value}; no further transitions are allowed"
            )
        if target not in ALLOWED_TRANSITIONS[case.status]:
            raise ConflictError(
                f"Invalid transition {case.status.value} -> {target.value}"
            )

    async def _notify(self, event) -> None:
        try:
            await self.dispatcher.dispatch(event)
        except Exception:
            logger.exception(f"Notification for case {event.case.id} failed")
