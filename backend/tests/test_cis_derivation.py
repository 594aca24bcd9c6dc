"""Tests: SSDF → CIS derivation, pure rules and recalculation against the database."""
import pytest
from sqlalchemy import select

from ssdf_tracker.models import (
    AssessmentCisResult,
    AssessmentTaskResult,
    CisStatus,
    MappingType,
    SsdfStatus,
)
from ssdf_tracker.schemas.assessment import AssessmentCreate, TaskResultUpdate
from ssdf_tracker.schemas.cis import CisOverrideUpdate
from ssdf_tracker.schemas.mapping import MappingUpdate
from ssdf_tracker.services import cis_derivation
from ssdf_tracker.services.assessment import create_assessment, delete_assessment, update_task_result
from ssdf_tracker.services.cis_derivation import (
    ControlTarget,
    MappingInput,
    SafeguardTarget,
    TaskResultInput,
    derive_cis_result,
    evaluate_status,
)
from ssdf_tracker.services.cis_override import set_cis_override
from ssdf_tracker.services.mapping import delete_mapping, update_mapping

DIRECT = MappingType.DIRECT
PARTIAL = MappingType.PARTIAL
SUPPORTS = MappingType.SUPPORTS


# ═══ Pure derivation ═══════════════════════════════════════════

def test_weighted_example():
    result = derive_cis_result(
        [MappingInput("PO.1.1", DIRECT, 1.0), MappingInput("PO.1.2", PARTIAL, 1.0)],
        [
            TaskResultInput("PO.1.1", SsdfStatus.IMPLEMENTED, 3),
            TaskResultInput("PO.1.2", SsdfStatus.IN_PROGRESS, 1),
        ],
    )
    assert result.status == CisStatus.IN_PROGRESS
    assert result.maturity_level == 2
    assert result.coverage_score == 72.55
    assert result.derived_from_task_ids == ("PO.1.1", "PO.1.2")


def test_no_mappings_is_not_applicable():
    result = derive_cis_result([], [])
    assert (result.status, result.maturity_level, result.coverage_score) == (CisStatus.NOT_APPLICABLE, 0, 0.0)
    assert result.derived_from_task_ids == ()


def test_all_not_applicable_still_lists_contributors():
    result = derive_cis_result(
        [MappingInput("PW.1.1", DIRECT, 1.0), MappingInput("PO.1.1", SUPPORTS, 0.5)],
        [
            TaskResultInput("PW.1.1", SsdfStatus.NOT_APPLICABLE, 3),
            TaskResultInput("PO.1.1", SsdfStatus.NOT_APPLICABLE, 2),
        ],
    )
    assert result.status == CisStatus.NOT_APPLICABLE
    assert result.maturity_level == 0
    assert result.coverage_score == 0.0
    assert result.derived_from_task_ids == ("PO.1.1", "PW.1.1")


def test_mapping_without_task_result_does_not_contribute():
    result = derive_cis_result(
        [MappingInput("PO.1.1", DIRECT, 1.0), MappingInput("PW.1.1", DIRECT, 1.0)],
        [TaskResultInput("PO.1.1", SsdfStatus.IMPLEMENTED, 3)],
    )
    assert result.status == CisStatus.IMPLEMENTED
    assert result.coverage_score == 100.0
    assert result.derived_from_task_ids == ("PO.1.1",)


@pytest.mark.parametrize("order", [(0, 1, 2), (2, 1, 0), (1, 2, 0)])
def test_not_started_wins_over_everything(order):
    mappings = [MappingInput("A", DIRECT, 1.0), MappingInput("B", DIRECT, 1.0), MappingInput("C", DIRECT, 1.0)]
    results = [
        TaskResultInput("A", SsdfStatus.IMPLEMENTED, 3),
        TaskResultInput("B", SsdfStatus.IN_PROGRESS, 2),
        TaskResultInput("C", SsdfStatus.NOT_STARTED, 0),
    ]
    result = derive_cis_result([mappings[i] for i in order], [results[i] for i in order])
    assert result.status == CisStatus.NOT_STARTED
    assert result.derived_from_task_ids == ("A", "B", "C")


@pytest.mark.parametrize("statuses", [
    [SsdfStatus.NOT_STARTED, SsdfStatus.IMPLEMENTED, SsdfStatus.NOT_APPLICABLE],
    [SsdfStatus.NOT_APPLICABLE, SsdfStatus.IN_PROGRESS, SsdfStatus.NOT_STARTED],
])
def test_not_started_rule_ignores_input_order(statuses):
    assert evaluate_status(statuses) == CisStatus.NOT_STARTED
    assert evaluate_status(list(reversed(statuses))) == CisStatus.NOT_STARTED


def test_not_applicable_tasks_are_left_out_of_status_and_score():
    result = derive_cis_result(
        [MappingInput("A", DIRECT, 1.0), MappingInput("B", DIRECT, 1.0)],
        [TaskResultInput("A", SsdfStatus.IMPLEMENTED, 2), TaskResultInput("B", SsdfStatus.NOT_APPLICABLE, 0)],
    )
    assert result.status == CisStatus.IMPLEMENTED
    assert result.maturity_level == 2
    assert result.coverage_score == pytest.approx(66.67)
    assert result.derived_from_task_ids == ("A", "B")


@pytest.mark.parametrize("statuses, expected", [
    ([SsdfStatus.IMPLEMENTED, SsdfStatus.NOT_STARTED], CisStatus.NOT_STARTED),
    ([SsdfStatus.IMPLEMENTED, SsdfStatus.IN_PROGRESS], CisStatus.IN_PROGRESS),
    ([SsdfStatus.IMPLEMENTED, SsdfStatus.NOT_APPLICABLE], CisStatus.NOT_APPLICABLE),
    ([SsdfStatus.IMPLEMENTED], CisStatus.IMPLEMENTED),
])
def test_status_rules_first_match_wins(statuses, expected):
    assert evaluate_status(statuses) == expected


def test_maturity_rounds_half_up():
    result = derive_cis_result(
        [MappingInput("A", DIRECT, 1.0), MappingInput("B", DIRECT, 1.0)],
        [TaskResultInput("A", SsdfStatus.IMPLEMENTED, 3), TaskResultInput("B", SsdfStatus.IMPLEMENTED, 2)],
    )
    assert result.maturity_level == 3
    assert result.coverage_score == 83.33


def test_zero_weight_mappings_keep_status_but_score_nothing():
    result = derive_cis_result(
        [MappingInput("A", DIRECT, 0.0)],
        [TaskResultInput("A", SsdfStatus.IMPLEMENTED, 3)],
    )
    assert result.status == CisStatus.IMPLEMENTED
    assert result.maturity_level == 0
    assert result.coverage_score == 0.0
    assert result.derived_from_task_ids == ("A",)


def test_contributing_ids_are_sorted_and_unique():
    result = derive_cis_result(
        [
            MappingInput("PW.1.1", DIRECT, 1.0),
            MappingInput("PO.1.1", PARTIAL, 0.5),
            MappingInput("PO.1.1", SUPPORTS, 0.5),
        ],
        [
            TaskResultInput("PW.1.1", SsdfStatus.IN_PROGRESS, 1),
            TaskResultInput("PO.1.1", SsdfStatus.IN_PROGRESS, 1),
        ],
    )
    assert result.derived_from_task_ids == ("PO.1.1", "PW.1.1")


def test_target_keys():
    assert ControlTarget("16").key == "c:16"
    assert SafeguardTarget("16.1").key == "s:16.1"
    assert cis_derivation.target_of("16", "16.1") == SafeguardTarget("16.1")
    assert cis_derivation.target_of("4", None) == ControlTarget("4")
    with pytest.raises(ValueError):
        cis_derivation.target_of(None, None)


# ═══ Recalculation ═════════════════════════════════════════════

async def cis_row(db, assessment_id: int, key: str) -> AssessmentCisResult:
    return (await db.execute(
        select(AssessmentCisResult).where(
            AssessmentCisResult.assessment_id == assessment_id,
            AssessmentCisResult.target_key == key,
        )
    )).scalar_one()


async def set_task(db, assessment_id, task_id, actor, **values):
    row = await update_task_result(db, assessment_id, task_id, TaskResultUpdate(**values), actor)
    await db.commit()
    return row


@pytest.mark.asyncio
async def test_new_assessment_derives_every_mapped_target(db, assessment_id):
    rows = (await db.execute(
        select(AssessmentCisResult).where(AssessmentCisResult.assessment_id == assessment_id)
    )).scalars().all()
    assert sorted(r.target_key for r in rows) == ["c:4", "s:16.1", "s:16.14"]
    for r in rows:
        assert r.derived_status == CisStatus.NOT_STARTED
        assert r.derived_coverage_score == 0.0
        assert r.derived_from_ssdf is True

    row = await cis_row(db, assessment_id, "s:16.1")
    assert row.cis_control_id == "16"
    assert row.derived_from_task_ids == ["PO.1.1", "PO.1.2"]


@pytest.mark.asyncio
async def test_task_update_rederives_its_targets(db, assessment_id, admin):
    await set_task(db, assessment_id, "PO.1.1", admin, status=SsdfStatus.IMPLEMENTED, maturity_level=3)

    safeguard = await cis_row(db, assessment_id, "s:16.1")
    assert safeguard.derived_status == CisStatus.NOT_STARTED
    assert safeguard.derived_maturity_level == 2
    assert safeguard.derived_coverage_score == 58.82

    control = await cis_row(db, assessment_id, "c:4")
    assert control.derived_status == CisStatus.IMPLEMENTED
    assert control.derived_maturity_level == 3
    assert control.derived_coverage_score == 100.0
    assert control.updated_by_id == "admin-1"

    await set_task(db, assessment_id, "PO.1.2", admin, status=SsdfStatus.IN_PROGRESS, maturity_level=1)
    safeguard = await cis_row(db, assessment_id, "s:16.1")
    assert safeguard.derived_status == CisStatus.IN_PROGRESS
    assert safeguard.derived_maturity_level == 2
    assert safeguard.derived_coverage_score == 72.55


@pytest.mark.asyncio
async def test_task_update_fans_out_to_other_assessments(db, assessment_id, seed_org, admin):
    other = await create_assessment(db, AssessmentCreate(organization_id=seed_org, name="Mobile team"), admin)
    await db.commit()
    stale = await cis_row(db, other.id, "s:16.14")
    stale.derived_coverage_score = 99.0
    await db.commit()

    await set_task(db, assessment_id, "PW.1.1", admin, status=SsdfStatus.IN_PROGRESS, maturity_level=2)

    assert (await cis_row(db, other.id, "s:16.14")).derived_coverage_score == 0.0
    assert (await cis_row(db, assessment_id, "s:16.14")).derived_coverage_score == pytest.approx(66.67)


@pytest.mark.asyncio
async def test_deleted_assessments_are_not_recalculated(db, assessment_id, seed_org, admin):
    other = await create_assessment(db, AssessmentCreate(organization_id=seed_org, name="Retired team"), admin)
    await db.commit()
    stale = await cis_row(db, other.id, "s:16.14")
    stale.derived_coverage_score = 99.0
    await delete_assessment(db, other.id, admin)
    await db.commit()

    await set_task(db, assessment_id, "PW.1.1", admin, status=SsdfStatus.IMPLEMENTED, maturity_level=3)

    assert (await cis_row(db, other.id, "s:16.14")).derived_coverage_score == 99.0


@pytest.mark.asyncio
async def test_recalculation_is_idempotent(db, assessment_id, admin):
    await set_task(db, assessment_id, "PO.1.1", admin, status=SsdfStatus.IMPLEMENTED, maturity_level=3)
    before = {
        key: (await cis_row(db, assessment_id, key)) for key in ("c:4", "s:16.1", "s:16.14")
    }
    snapshot = {
        key: (r.derived_status, r.derived_maturity_level, r.derived_coverage_score,
              list(r.derived_from_task_ids), r.updated_by_id)
        for key, r in before.items()
    }

    await cis_derivation.recalculate_for_assessment(db, assessment_id, "someone-else")
    await cis_derivation.recalculate_task_everywhere(db, "PO.1.1", "someone-else")

    assert not db.dirty
    assert not db.new
    for key, r in before.items():
        assert (r.derived_status, r.derived_maturity_level, r.derived_coverage_score,
                list(r.derived_from_task_ids), r.updated_by_id) == snapshot[key]


@pytest.mark.asyncio
async def test_manual_override_survives_recalculation(db, assessment_id, admin):
    await set_cis_override(db, assessment_id, CisOverrideUpdate(
        cis_safeguard_id="16.1", manual_override=True,
        manual_status=CisStatus.IMPLEMENTED, manual_maturity_level=3,
    ), admin)
    await db.commit()

    await set_task(db, assessment_id, "PO.1.2", admin, status=SsdfStatus.IN_PROGRESS, maturity_level=1)

    row = await cis_row(db, assessment_id, "s:16.1")
    assert row.derived_status == CisStatus.NOT_STARTED
    assert row.derived_coverage_score == 13.73
    assert row.manual_override is True
    assert row.effective_status == CisStatus.IMPLEMENTED
    assert row.effective_maturity_level == 3


@pytest.mark.asyncio
async def test_deleting_last_mapping_resets_the_target(db, assessment_id, seed_catalog, admin):
    await set_task(db, assessment_id, "PW.1.1", admin, status=SsdfStatus.IMPLEMENTED, maturity_level=3)
    assert (await cis_row(db, assessment_id, "s:16.14")).derived_coverage_score == 100.0

    await delete_mapping(db, seed_catalog["pw11_16.14"], admin)
    await db.commit()

    row = await cis_row(db, assessment_id, "s:16.14")
    assert row.derived_status == CisStatus.NOT_APPLICABLE
    assert row.derived_maturity_level == 0
    assert row.derived_coverage_score == 0.0
    assert row.derived_from_task_ids == []
    assert row.derived_from_ssdf is False


@pytest.mark.asyncio
async def test_deleting_one_mapping_rederives_the_rest(db, assessment_id, seed_catalog, admin):
    await set_task(db, assessment_id, "PO.1.1", admin, status=SsdfStatus.IMPLEMENTED, maturity_level=3)
    await delete_mapping(db, seed_catalog["po12_16.1"], admin)
    await db.commit()

    row = await cis_row(db, assessment_id, "s:16.1")
    assert row.derived_status == CisStatus.IMPLEMENTED
    assert row.derived_coverage_score == 100.0
    assert row.derived_from_task_ids == ["PO.1.1"]


@pytest.mark.asyncio
async def test_switching_mapping_target_updates_old_and_new(db, assessment_id, seed_catalog, admin):
    await set_task(db, assessment_id, "PW.1.1", admin, status=SsdfStatus.IN_PROGRESS, maturity_level=2)

    await update_mapping(db, seed_catalog["pw11_16.14"], MappingUpdate(cis_safeguard_id="4.1"), admin)
    await db.commit()

    old = await cis_row(db, assessment_id, "s:16.14")
    assert old.derived_status == CisStatus.NOT_APPLICABLE
    assert old.derived_from_ssdf is False

    new = await cis_row(db, assessment_id, "s:4.1")
    assert new.cis_control_id == "4"
    assert new.derived_status == CisStatus.IN_PROGRESS
    assert new.derived_from_task_ids == ["PW.1.1"]


@pytest.mark.asyncio
async def test_task_results_are_untouched_by_recalculation(db, assessment_id):
    await cis_derivation.recalculate_for_assessment(db, assessment_id)
    rows = (await db.execute(
        select(AssessmentTaskResult).where(AssessmentTaskResult.assessment_id == assessment_id)
    )).scalars().all()
    assert {r.status for r in rows} == {SsdfStatus.NOT_STARTED}
