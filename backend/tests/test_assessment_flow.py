"""Functional tests: assessment lifecycle, task result editing and the mutation boundary."""
from datetime import date

import pytest
from sqlalchemy import select

from ssdf_tracker.errors import NotFoundError, PermissionDenied, ValidationError
from ssdf_tracker.models import (
    AssessmentCisResult,
    AssessmentRelease,
    AssessmentTaskResult,
    AuditAction,
    AuditLog,
    EditingMode,
    ReleaseAction,
    ReleaseStatus,
    Role,
    SsdfStatus,
)
from ssdf_tracker.repositories import get_assessment, get_task_result
from ssdf_tracker.schemas.assessment import AssessmentCreate, AssessmentUpdate, TaskResultUpdate
from ssdf_tracker.services.assessment import (
    create_assessment,
    delete_assessment,
    list_task_history,
    update_assessment,
    update_task_result,
)
from ssdf_tracker.services.boundary import run_mutation
from ssdf_tracker.services.release import apply_release_action, set_editing_mode


async def audit_entries(db, **filters):
    q = select(AuditLog).order_by(AuditLog.id)
    for attr, value in filters.items():
        q = q.where(getattr(AuditLog, attr) == value)
    return (await db.execute(q)).scalars().all()


# ═══ Create / update / delete ══════════════════════════════════

@pytest.mark.asyncio
async def test_create_seeds_results_and_draft_release(db, assessment_id):
    tasks = (await db.execute(
        select(AssessmentTaskResult).where(AssessmentTaskResult.assessment_id == assessment_id)
    )).scalars().all()
    assert sorted(t.ssdf_task_id for t in tasks) == ["PO.1.1", "PO.1.2", "PW.1.1"]
    for t in tasks:
        assert t.status == SsdfStatus.NOT_STARTED
        assert t.applicable is True
        assert t.maturity_level == 0
        assert t.target_level == 2
        assert t.weight == 3
        assert t.evidence_links == []

    releases = (await db.execute(
        select(AssessmentRelease).where(AssessmentRelease.assessment_id == assessment_id)
    )).scalars().all()
    assert [r.status for r in releases] == [ReleaseStatus.DRAFT]

    [entry] = await audit_entries(db, entity_type="Assessment", action=AuditAction.CREATE)
    assert entry.new_value == "Platform team 2026"
    assert entry.actor_role == "ADMIN"
    assert entry.meta["task_results"] == 3


@pytest.mark.asyncio
async def test_create_uses_configured_defaults(db, seed_org, seed_catalog, assessor):
    a = await create_assessment(
        db, AssessmentCreate(organization_id=seed_org, name="Custom"), assessor,
        default_target_level=3, default_task_weight=5,
    )
    row = await get_task_result(db, a.id, "PO.1.1")
    assert (row.target_level, row.weight) == (3, 5)
    assert a.created_by_id == "assessor-1"


@pytest.mark.asyncio
async def test_viewer_cannot_create(db, seed_org, seed_catalog, viewer):
    with pytest.raises(PermissionDenied):
        await create_assessment(db, AssessmentCreate(organization_id=seed_org, name="Nope"), viewer)


@pytest.mark.asyncio
async def test_assessor_cannot_create_for_foreign_organization(db, other_org, seed_catalog, assessor):
    with pytest.raises(PermissionDenied) as exc:
        await create_assessment(db, AssessmentCreate(organization_id=other_org, name="Nope"), assessor)
    assert exc.value.failed_event["organization_id"] == other_org


@pytest.mark.asyncio
async def test_create_for_unknown_organization(db, admin):
    with pytest.raises(NotFoundError):
        await create_assessment(db, AssessmentCreate(organization_id=999, name="Ghost"), admin)


@pytest.mark.asyncio
async def test_update_assessment_logs_each_changed_field(db, assessment_id, assessor):
    await update_assessment(db, assessment_id, AssessmentUpdate(
        unit="Payments", review_date=date(2026, 12, 1),
    ), assessor)
    await db.commit()

    entries = await audit_entries(db, entity_type="Assessment", action=AuditAction.UPDATE)
    assert [(e.field_name, e.old_value, e.new_value) for e in entries] == [
        ("unit", None, "Payments"),
        ("review_date", None, "2026-12-01"),
    ]


@pytest.mark.asyncio
async def test_soft_delete(db, assessment_id, admin):
    await delete_assessment(db, assessment_id, admin)
    await db.commit()

    with pytest.raises(NotFoundError):
        await get_assessment(db, assessment_id)
    [entry] = await audit_entries(db, entity_type="Assessment", action=AuditAction.DELETE)
    assert entry.meta["assessment_name"] == "Platform team 2026"
    assert entry.meta["counts"] == '{"cis_results": 3, "task_results": 3}'


@pytest.mark.asyncio
async def test_only_admins_delete(db, assessment_id, assessor):
    with pytest.raises(PermissionDenied):
        await delete_assessment(db, assessment_id, assessor)


# ═══ Task results ══════════════════════════════════════════════

@pytest.mark.asyncio
@pytest.mark.parametrize("values", [
    {"maturity_level": 4},
    {"maturity_level": -1},
    {"target_level": 7},
    {"weight": 0},
    {"weight": 6},
])
async def test_out_of_range_values_are_rejected(db, assessment_id, assessor, values):
    with pytest.raises(ValidationError):
        await update_task_result(db, assessment_id, "PO.1.1", TaskResultUpdate(**values), assessor)


@pytest.mark.asyncio
async def test_unknown_task_result(db, assessment_id, assessor):
    with pytest.raises(NotFoundError):
        await update_task_result(db, assessment_id, "XX.9.9", TaskResultUpdate(maturity_level=1), assessor)


@pytest.mark.asyncio
async def test_applicable_flag_drives_status(db, assessment_id, assessor):
    row = await update_task_result(
        db, assessment_id, "PW.1.1", TaskResultUpdate(applicable=False, status=SsdfStatus.IMPLEMENTED), assessor,
    )
    assert row.status == SsdfStatus.NOT_APPLICABLE
    assert row.applicable is False

    row = await update_task_result(db, assessment_id, "PW.1.1", TaskResultUpdate(applicable=True), assessor)
    assert row.status == SsdfStatus.NOT_STARTED
    assert row.applicable is True

    row = await update_task_result(
        db, assessment_id, "PW.1.1", TaskResultUpdate(status=SsdfStatus.NOT_APPLICABLE), assessor,
    )
    assert row.applicable is False


@pytest.mark.asyncio
async def test_evidence_links_and_blank_text(db, assessment_id, assessor):
    row = await update_task_result(db, assessment_id, "PO.1.2", TaskResultUpdate(
        evidence_links="https://ci.example.com/1\nhttps://ci.example.com/2, ",
        owner="",
        comments="Reviewed with AppSec",
    ), assessor)
    assert row.evidence_links == ["https://ci.example.com/1", "https://ci.example.com/2"]
    assert row.owner is None
    assert row.comments == "Reviewed with AppSec"
    assert row.updated_by_id == "assessor-1"


@pytest.mark.asyncio
async def test_task_history_records_changed_fields(db, assessment_id, assessor):
    await update_task_result(db, assessment_id, "PO.1.1", TaskResultUpdate(
        status=SsdfStatus.IN_PROGRESS, maturity_level=1, reason="Kickoff done",
    ), assessor)
    await db.commit()

    history = await list_task_history(db, assessment_id, "PO.1.1", assessor)
    assert sorted(h.field_name for h in history) == ["maturity_level", "status"]
    by_field = {h.field_name: h for h in history}
    assert (by_field["status"].old_value, by_field["status"].new_value) == ("NOT_STARTED", "IN_PROGRESS")
    assert (by_field["maturity_level"].old_value, by_field["maturity_level"].new_value) == ("0", "1")
    assert by_field["status"].reason == "Kickoff done"
    assert by_field["status"].request_id == "req-assessor-1"
    assert by_field["status"].ip == "10.0.0.1"

    entries = await audit_entries(db, entity_type="AssessmentTaskResult")
    assert sorted(e.field_name for e in entries) == ["maturity_level", "status"]
    assert all(e.actor_user_id == "assessor-1" for e in entries)


@pytest.mark.asyncio
async def test_unchanged_update_writes_no_history(db, assessment_id, assessor):
    await update_task_result(db, assessment_id, "PO.1.1", TaskResultUpdate(maturity_level=0), assessor)
    await db.commit()
    assert await list_task_history(db, assessment_id, "PO.1.1", assessor) == []


@pytest.mark.asyncio
async def test_history_requires_organization_access(db, assessment_id, other_org, actor_factory):
    outsider = actor_factory(Role.VIEWER, frozenset({other_org}), user_id="outsider")
    with pytest.raises(PermissionDenied):
        await list_task_history(db, assessment_id, "PO.1.1", outsider)


@pytest.mark.asyncio
async def test_admin_edit_of_locked_assessment_is_flagged(db, assessment_id, admin):
    await set_editing_mode(db, assessment_id, EditingMode.LOCKED_ADMIN_ONLY, admin)
    await db.commit()

    await update_task_result(db, assessment_id, "PO.1.1", TaskResultUpdate(
        maturity_level=2, reason="Auditor correction",
    ), admin)
    await db.commit()

    [override] = await audit_entries(db, field_name="editingOverride")
    assert override.new_value == "OVERRIDE"
    assert override.meta["override"] is True
    assert override.meta["reason"] == "Auditor correction"

    [history] = await list_task_history(db, assessment_id, "PO.1.1", admin)
    assert history.meta["override"] is True


# ═══ Mutation boundary ═════════════════════════════════════════

@pytest.mark.asyncio
async def test_locked_edit_rolls_back_and_records_failure(db, assessment_id, assessor):
    await apply_release_action(db, assessment_id, ReleaseAction.submit, assessor)
    await db.commit()

    with pytest.raises(PermissionDenied):
        await run_mutation(
            db, update_task_result, assessment_id, "PO.1.1",
            TaskResultUpdate(status=SsdfStatus.IMPLEMENTED, maturity_level=3), assessor,
        )

    row = await get_task_result(db, assessment_id, "PO.1.1")
    assert row.status == SsdfStatus.NOT_STARTED
    assert row.maturity_level == 0

    [failed] = await audit_entries(db, success=False)
    assert failed.error_message == "Editing locked"
    assert failed.entity_type == "Assessment"
    assert failed.field_name == "editingMode"
    assert failed.actor_user_id == "assessor-1"
    assert failed.meta["release_status"] == "IN_REVIEW"


@pytest.mark.asyncio
async def test_boundary_commits_successful_mutation(db, assessment_id, assessor):
    await run_mutation(
        db, update_task_result, assessment_id, "PO.1.1",
        TaskResultUpdate(status=SsdfStatus.IMPLEMENTED, maturity_level=3), assessor,
    )
    await db.rollback()

    row = await get_task_result(db, assessment_id, "PO.1.1")
    assert row.status == SsdfStatus.IMPLEMENTED
    cis = (await db.execute(
        select(AssessmentCisResult).where(
            AssessmentCisResult.assessment_id == assessment_id,
            AssessmentCisResult.target_key == "c:4",
        )
    )).scalar_one()
    assert cis.derived_coverage_score == 100.0


@pytest.mark.asyncio
async def test_validation_failure_leaves_no_audit(db, assessment_id, assessor):
    with pytest.raises(ValidationError):
        await run_mutation(
            db, update_task_result, assessment_id, "PO.1.1", TaskResultUpdate(weight=9), assessor,
        )
    assert await audit_entries(db, success=False) == []
