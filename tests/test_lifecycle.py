from datetime import timedelta
from uuid import uuid4

import pytest

from casedesk.errors import ConflictError, NotFoundError, ValidationError
from casedesk.models import (
    AssessmentInput,
    CaseKind,
    CaseStatus,
    Criterion,
    NotificationType,
    OptionInput,
    Perspective,
    utcnow,
)

from conftest import case_input


async def test_create_case_starts_received_and_notifies_admins(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))

    assert case.status == CaseStatus.RECEIVED
    assert case.end_date is None
    assert case.requester_id == staff.requester.id
    assert case.version == 1

    for admin in (staff.admin, staff.lead):
        page = await container.inbox.list_for(admin.id)
        assert page.total == 1
        assert page.items[0].type == NotificationType.CASE_CREATED
        assert page.items[0].case_id == case.id
        assert "Nguyễn Văn A" in page.items[0].message

    # Non-elevated users get nothing
    assert (await container.inbox.list_for(staff.tech.id)).total == 0


async def test_create_case_queues_one_external_message(container, staff):
    await container.lifecycle.create_case(CaseKind.DEPLOYMENT, case_input(staff, CaseKind.DEPLOYMENT))
    assert container.channel_worker.pending == 1


async def test_internal_case_full_lifecycle(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))

    case = await container.lifecycle.set_in_progress(case.id, CaseKind.INTERNAL)
    assert case.status == CaseStatus.IN_PROGRESS
    assert case.end_date is None

    before = utcnow()
    case = await container.lifecycle.close(case.id, CaseKind.INTERNAL)
    assert case.status == CaseStatus.COMPLETED
    assert case.end_date is not None
    assert case.end_date >= before

    with pytest.raises(ConflictError):
        await container.lifecycle.set_in_progress(case.id, CaseKind.INTERNAL)

    stored = await container.lifecycle.get_case(case.id, CaseKind.INTERNAL)
    assert stored.status == CaseStatus.COMPLETED


async def test_received_case_can_be_closed_directly(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    closed = await container.lifecycle.close(case.id, CaseKind.INTERNAL)
    assert closed.status == CaseStatus.COMPLETED
    assert closed.end_date is not None


async def test_completing_twice_is_a_conflict(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    await container.lifecycle.close(case.id, CaseKind.INTERNAL)

    with pytest.raises(ConflictError, match="already completed"):
        await container.lifecycle.close(case.id, CaseKind.INTERNAL)


async def test_cancelled_case_is_terminal(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INCIDENT, case_input(staff, CaseKind.INCIDENT))
    cancelled = await container.lifecycle.cancel(case.id, CaseKind.INCIDENT)
    assert cancelled.status == CaseStatus.CANCELLED
    assert cancelled.end_date is None

    for target in (CaseStatus.RECEIVED, CaseStatus.IN_PROGRESS, CaseStatus.COMPLETED):
        with pytest.raises(ConflictError):
            await container.lifecycle.transition_status(case.id, CaseKind.INCIDENT, target)


async def test_backward_transition_is_rejected(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    await container.lifecycle.set_in_progress(case.id, CaseKind.INTERNAL)

    with pytest.raises(ConflictError):
        await container.lifecycle.transition_status(case.id, CaseKind.INTERNAL, CaseStatus.RECEIVED)


async def test_stale_version_loses(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    await container.lifecycle.set_in_progress(case.id, CaseKind.INTERNAL)

    with pytest.raises(ConflictError):
        await container.lifecycle.transition_status(
            case.id, CaseKind.INTERNAL, CaseStatus.COMPLETED, expected_version=case.version
        )


async def test_transition_notifies_admins_with_completed_type(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    await container.lifecycle.close(case.id, CaseKind.INTERNAL)

    page = await container.inbox.list_for(staff.admin.id)
    assert sorted(n.type.value for n in page.items) == ["CASE_COMPLETED", "CASE_CREATED"]


async def test_unknown_case_is_not_found(container):
    with pytest.raises(NotFoundError):
        await container.lifecycle.get_case(uuid4(), CaseKind.WARRANTY)
    with pytest.raises(NotFoundError):
        await container.lifecycle.close(uuid4(), CaseKind.WARRANTY)


async def test_case_lives_in_its_own_kind(container, staff):
    case = await container.lifecycle.create_case(CaseKind.DELIVERY, case_input(staff, CaseKind.DELIVERY))
    with pytest.raises(NotFoundError):
        await container.lifecycle.get_case(case.id, CaseKind.RECEIVING)


# =============================================================================
# Creation validation
# =============================================================================

async def test_missing_fields_are_reported_together(container, staff):
    fields = case_input(staff, title="  ", description=None)
    with pytest.raises(ValidationError) as excinfo:
        await container.lifecycle.create_case(CaseKind.INTERNAL, fields)
    assert "title" in str(excinfo.value)
    assert "description" in str(excinfo.value)


async def test_external_kinds_require_counterparty(container, staff):
    fields = case_input(staff, CaseKind.MAINTENANCE, counterparty_name=None)
    with pytest.raises(ValidationError, match="counterparty_name"):
        await container.lifecycle.create_case(CaseKind.MAINTENANCE, fields)


async def test_counterparty_id_satisfies_counterparty(container, staff):
    fields = case_input(staff, CaseKind.RECEIVING, counterparty_name=None, counterparty_id=uuid4())
    case = await container.lifecycle.create_case(CaseKind.RECEIVING, fields)
    assert case.counterparty_name is None


async def test_kind_type_reference_is_required(container, staff):
    fields = case_input(staff, CaseKind.WARRANTY, warranty_type_id=None)
    with pytest.raises(ValidationError, match="warranty_type_id"):
        await container.lifecycle.create_case(CaseKind.WARRANTY, fields)


async def test_type_reference_is_copied_onto_case(container, staff):
    fields = case_input(staff, CaseKind.DEPLOYMENT, deployment_type_id="dep-42")
    case = await container.lifecycle.create_case(CaseKind.DEPLOYMENT, fields)
    assert case.type_ref == "dep-42"


async def test_end_date_must_follow_start_date(container, staff):
    start = utcnow()
    fields = case_input(staff, start_date=start, end_date=start - timedelta(minutes=5))
    with pytest.raises(ValidationError, match="Ngày kết thúc"):
        await container.lifecycle.create_case(CaseKind.INTERNAL, fields)


async def test_unknown_handler_is_rejected(container, staff):
    with pytest.raises(ValidationError, match="Handler not found"):
        await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff, handler_id=uuid4()))


async def test_requester_defaults_to_callers_person(container, staff):
    fields = case_input(staff, requester_id=None)
    case = await container.lifecycle.create_case(
        CaseKind.INTERNAL, fields, current_user_id=staff.requester_user.id
    )
    assert case.requester_id == staff.requester.id


async def test_requester_falls_back_to_configured_default(container, staff):
    container.lifecycle.default_requester_id = staff.unlinked.id
    fields = case_input(staff, requester_id=None)

    case = await container.lifecycle.create_case(CaseKind.INTERNAL, fields, current_user_id=uuid4())
    assert case.requester_id == staff.unlinked.id


async def test_requester_is_never_guessed(container, staff):
    fields = case_input(staff, requester_id=None)
    with pytest.raises(ValidationError, match="Requester could not be determined"):
        await container.lifecycle.create_case(CaseKind.INTERNAL, fields, current_user_id=uuid4())


async def test_user_scores_are_stored_with_timestamp(container, staff):
    fields = case_input(staff, user_difficulty_level=3, user_estimated_time=2, user_form_score=4)
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, fields)

    assert case.user_assessment.difficulty == 3
    assert case.user_assessment.estimated_time == 2
    assert case.user_assessment.form == 4
    assert case.user_assessment.assessed_at is not None
    assert case.admin_assessment.is_empty


async def test_out_of_range_user_score_blocks_creation(container, staff):
    fields = case_input(staff, user_form_score=1)
    with pytest.raises(ValidationError, match="between 2 and 4"):
        await container.lifecycle.create_case(CaseKind.INTERNAL, fields)
    assert (await container.lifecycle.list_cases(CaseKind.INTERNAL)).total == 0


# =============================================================================
# Assessments
# =============================================================================

FULL_ADMIN = AssessmentInput(difficulty=6, estimated_time=7, impact=2, urgency=1)


async def test_admin_assessment_uses_wider_scale(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    updated = await container.lifecycle.record_assessment(
        case.id, CaseKind.INTERNAL, Perspective.ADMIN, FULL_ADMIN
    )

    assert updated.admin_assessment.difficulty == 6
    assert updated.admin_assessment.estimated_time == 7
    assert updated.admin_assessment.assessed_at is not None
    assert updated.admin_assessment.total == 16
    assert updated.status == CaseStatus.RECEIVED


async def test_out_of_range_assessment_leaves_case_unchanged(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    await container.lifecycle.record_assessment(
        case.id, CaseKind.INTERNAL, Perspective.ADMIN, FULL_ADMIN
    )

    with pytest.raises(ValidationError):
        await container.lifecycle.record_assessment(
            case.id,
            CaseKind.INTERNAL,
            Perspective.ADMIN,
            {"difficulty": 9, "estimated_time": 1, "impact": 1, "urgency": 1}
        )

    stored = await container.lifecycle.get_case(case.id, CaseKind.INTERNAL)
    assert stored.admin_assessment.difficulty == 6
    assert stored.admin_assessment.estimated_time == 7


async def test_assessment_requires_all_core_criteria(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    with pytest.raises(ValidationError, match="URGENCY"):
        await container.lifecycle.record_assessment(
            case.id,
            CaseKind.INTERNAL,
            Perspective.USER,
            AssessmentInput(difficulty=1, estimated_time=1, impact=1)
        )


async def test_admin_assessment_has_no_form(container, staff):
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))
    with pytest.raises(ValidationError, match="FORM"):
        await container.lifecycle.record_assessment(
            case.id,
            CaseKind.INTERNAL,
            Perspective.ADMIN,
            AssessmentInput(difficulty=1, estimated_time=1, impact=1, urgency=1, form=3)
        )


async def test_assessment_follows_configured_vocabulary(container, staff):
    await container.catalog.upsert_options(
        Perspective.USER,
        Criterion.DIFFICULTY,
        [OptionInput(label="Dễ", points=1), OptionInput(label="Khó", points=2)]
    )
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))

    with pytest.raises(ValidationError, match="between 1 and 2"):
        await container.lifecycle.record_assessment(
            case.id,
            CaseKind.INTERNAL,
            Perspective.USER,
            AssessmentInput(difficulty=3, estimated_time=1, impact=1, urgency=1)
        )


async def test_assessment_on_unknown_case_is_not_found(container):
    with pytest.raises(NotFoundError):
        await container.lifecycle.record_assessment(
            uuid4(), CaseKind.INTERNAL, Perspective.ADMIN, FULL_ADMIN
        )


# =============================================================================
# Listing
# =============================================================================

async def test_list_cases_filters_and_paginates(container, staff):
    for i in range(3):
        await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff, title=f"Case {i}"))
    done = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff, title="Done"))
    await container.lifecycle.close(done.id, CaseKind.INTERNAL)

    page = await container.lifecycle.list_cases(CaseKind.INTERNAL, page=1, limit=2)
    assert page.total == 4
    assert len(page.items) == 2
    assert page.total_pages == 2

    completed = await container.lifecycle.list_cases(CaseKind.INTERNAL, status=CaseStatus.COMPLETED)
    assert [c.title for c in completed.items] == ["Done"]


async def test_failing_dispatch_does_not_fail_creation(container, staff):
    async def broken(event):
        raise RuntimeError("inbox down")

    container.lifecycle.dispatcher.dispatch = broken
    case = await container.lifecycle.create_case(CaseKind.INTERNAL, case_input(staff))

    stored = await container.lifecycle.get_case(case.id, CaseKind.INTERNAL)
    assert stored.status == CaseStatus.RECEIVED
