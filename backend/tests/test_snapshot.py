"""Tests: assessment snapshots, normalization of stored versions and trend comparison."""
import pytest

from ssdf_tracker.errors import NotFoundError, PermissionDenied, ValidationError
from ssdf_tracker.models import CisStatus, ReleaseAction, SnapshotType, SsdfStatus
from ssdf_tracker.schemas.assessment import AssessmentCreate, TaskResultUpdate
from ssdf_tracker.schemas.cis import CisOverrideUpdate
from ssdf_tracker.schemas.snapshot import SnapshotCreate
from ssdf_tracker.services import assessment as assessment_svc
from ssdf_tracker.services.cis_override import set_cis_override
from ssdf_tracker.services.release import apply_release_action
from ssdf_tracker.services.snapshot import (
    build_assessment_snapshot,
    compare_snapshots,
    create_assessment_snapshot,
    natural_key,
    normalize_snapshot,
)


def test_natural_key_orders_numeric_segments():
    ids = ["16.10", "2", "16.2", "10", "1", "16.1"]
    assert sorted(ids, key=natural_key) == ["1", "2", "10", "16.1", "16.2", "16.10"]


# ═══ Normalization ═════════════════════════════════════════════

def test_normalize_empty_snapshot_defaults_to_version_one():
    data = normalize_snapshot({})
    assert data.version == 1
    assert data.group_stats == []
    assert data.tasks == []
    assert data.totals.weighted_score == 0.0
    assert data.cis.ig_stats == []


def test_normalize_recomputes_missing_priority():
    data = normalize_snapshot({
        "version": 1,
        "totals": "legacy",
        "tasks": [
            {"task_id": "PO.1.1", "gap": 2, "weight": 4},
            {"task_id": "PO.1.2", "gap": 1, "weight": 5, "priority": 9},
        ],
    })
    assert [t.priority for t in data.tasks] == [8, 9]
    assert data.totals.total == 0


def test_normalize_keeps_recorded_version():
    assert normalize_snapshot({"version": 2}).version == 2
    assert normalize_snapshot(None).version == 1


def test_normalize_treats_null_sections_as_empty():
    data = normalize_snapshot({
        "version": 1,
        "group_stats": None,
        "tasks": [None, {"task_id": "PO.1.1", "gap": 1, "weight": 3, "priority": None, "owner": None}],
        "cis": {"controls": None, "ig_stats": [{"ig": "IG1", "avg_coverage": None}]},
        "totals": {"weighted_score": None, "coverage_rate": 0.5},
    })
    assert data.group_stats == []
    assert [(t.task_id, t.priority, t.owner) for t in data.tasks] == [("PO.1.1", 3, None)]
    assert data.cis.controls == []
    assert data.cis.ig_stats[0].avg_coverage == 0.0
    assert data.totals.weighted_score == 0.0
    assert data.totals.coverage_rate == 0.5

    assert normalize_snapshot({"version": None, "group_stats": None, "tasks": None, "cis": None}).version == 1


def test_compare_snapshots_with_null_metrics():
    result = compare_snapshots({"totals": {"weighted_score": None}}, {})
    assert result.totals.weighted_score.delta == 0.0
    assert result.groups == []


# ═══ Comparison ════════════════════════════════════════════════

def test_compare_snapshots():
    base = {
        "version": 1,
        "group_stats": [{"id": "PO", "name": "Prepare", "weighted_score": 0.2,
                         "coverage_rate": 0.1, "maturity_avg": 1.0}],
        "totals": {"weighted_score": 0.2, "coverage_rate": 0.1, "maturity_avg": 1.0},
        "cis": {"ig_stats": [{"ig": "IG2", "total": 3, "avg_coverage": 10.0}]},
    }
    current = {
        "version": 2,
        "group_stats": [
            {"id": "RV", "name": "Respond", "weighted_score": 0.4, "coverage_rate": 0.5, "maturity_avg": 2.0},
            {"id": "PO", "name": "Prepare", "weighted_score": 0.5, "coverage_rate": 0.3, "maturity_avg": 1.5},
        ],
        "totals": {"weighted_score": 0.45, "coverage_rate": 0.4, "maturity_avg": 1.75},
        "cis": {"ig_stats": [
            {"ig": "IG1", "total": 2, "avg_coverage": 50.0},
            {"ig": "IG2", "total": 3, "avg_coverage": 40.0},
        ]},
    }
    result = compare_snapshots(base, current)

    assert (result.base_version, result.current_version) == (1, 2)
    assert [g.id for g in result.groups] == ["PO", "RV"]
    po, rv = result.groups
    assert po.weighted_score.delta == pytest.approx(0.3)
    assert po.maturity_avg.delta == pytest.approx(0.5)
    assert rv.weighted_score.base == 0.0
    assert rv.weighted_score.delta == pytest.approx(0.4)

    assert (result.totals.id, result.totals.name) == ("TOTAL", "Total")
    assert result.totals.coverage_rate.delta == pytest.approx(0.3)

    assert [i.ig for i in result.ig_stats] == ["IG1", "IG2", "IG3"]
    assert [i.avg_coverage.delta for i in result.ig_stats] == [
        pytest.approx(50.0), pytest.approx(30.0), pytest.approx(0.0),
    ]


# ═══ Building from the database ════════════════════════════════

async def score_assessment(db, assessment_id, admin):
    for task_id, values in [
        ("PO.1.1", {"status": SsdfStatus.IMPLEMENTED, "maturity_level": 3}),
        ("PO.1.2", {"status": SsdfStatus.IN_PROGRESS, "maturity_level": 1}),
        ("PW.1.1", {"applicable": False}),
    ]:
        await assessment_svc.update_task_result(db, assessment_id, task_id, TaskResultUpdate(**values), admin)
    await db.commit()


@pytest.mark.asyncio
async def test_build_snapshot_aggregates(db, assessment_id, admin):
    await score_assessment(db, assessment_id, admin)
    await set_cis_override(db, assessment_id, CisOverrideUpdate(
        cis_safeguard_id="16.14", manual_override=True,
        manual_status=CisStatus.IMPLEMENTED, manual_maturity_level=3,
    ), admin)
    await db.commit()

    data = await build_assessment_snapshot(db, assessment_id)

    assert data.version == 2
    assert data.generated_at
    po, pw = data.group_stats
    assert (po.id, po.total, po.applicable, po.implemented) == ("PO", 2, 2, 1)
    assert po.maturity_avg == pytest.approx(2.0)
    assert po.coverage_rate == pytest.approx(0.5)
    assert po.weighted_score == pytest.approx(4 / 6)
    assert (pw.id, pw.total, pw.applicable, pw.weighted_score) == ("PW", 1, 0, 0.0)

    assert data.totals.total == 3
    assert data.totals.applicable == 2
    assert data.totals.weighted_score == pytest.approx(4 / 6)
    assert [p.id for p in data.practice_stats] == ["PO.1", "PW.1"]

    tasks = {t.task_id: t for t in data.tasks}
    assert (tasks["PO.1.1"].gap, tasks["PO.1.1"].priority) == (-1, -3)
    assert (tasks["PO.1.2"].gap, tasks["PO.1.2"].priority) == (1, 3)
    assert tasks["PW.1.1"].status == "NOT_APPLICABLE"

    control_4, control_16 = data.cis.controls
    assert control_4.control_id == "4"
    assert (control_4.safeguards_total, control_4.derived_count, control_4.gap_count) == (1, 0, 1)
    assert control_16.control_id == "16"
    assert (control_16.safeguards_total, control_16.derived_count, control_16.gap_count) == (2, 2, 0)
    assert control_16.manual_override_count == 1
    assert control_16.avg_maturity == pytest.approx(2.5)
    assert control_16.avg_coverage == pytest.approx(72.55 / 2)

    assert [(i.ig, i.total) for i in data.cis.ig_stats] == [("IG1", 1), ("IG2", 1), ("IG3", 1)]
    assert [i.avg_coverage for i in data.cis.ig_stats] == [0.0, pytest.approx(72.55), 0.0]


@pytest.mark.asyncio
async def test_trend_compares_approved_with_live(db, assessment_id, admin):
    await score_assessment(db, assessment_id, admin)
    with pytest.raises(NotFoundError):
        await assessment_svc.trend(db, assessment_id, admin)

    await apply_release_action(db, assessment_id, ReleaseAction.submit, admin)
    await apply_release_action(db, assessment_id, ReleaseAction.approve, admin)
    await db.commit()

    await assessment_svc.update_task_result(db, assessment_id, "PW.1.1", TaskResultUpdate(
        applicable=True, status=SsdfStatus.IMPLEMENTED, maturity_level=3,
    ), admin)
    await db.commit()

    result = await assessment_svc.trend(db, assessment_id, admin)
    groups = {g.id: g for g in result.groups}
    assert groups["PO"].weighted_score.delta == pytest.approx(0.0)
    assert groups["PW"].weighted_score.base == 0.0
    assert groups["PW"].weighted_score.current == pytest.approx(1.0)
    assert result.totals.weighted_score.current == pytest.approx(7 / 9)
    igs = {i.ig: i for i in result.ig_stats}
    assert igs["IG3"].avg_coverage.delta == pytest.approx(100.0)


# ═══ Persisted snapshots ═══════════════════════════════════════

@pytest.mark.asyncio
async def test_take_and_list_snapshots(db, assessment_id, assessor):
    first = await assessment_svc.take_snapshot(
        db, assessment_id, SnapshotCreate(label="  Before kickoff  "), assessor,
    )
    second = await assessment_svc.take_snapshot(
        db, assessment_id, SnapshotCreate(type=SnapshotType.AUTO), assessor,
    )
    await db.commit()

    assert first.label == "Before kickoff"
    assert first.type == SnapshotType.MANUAL
    assert first.snapshot["version"] == 2
    assert second.label is None

    listed = await assessment_svc.list_snapshots(db, assessment_id, assessor)
    assert [s.id for s in listed] == [second.id, first.id]

    fetched = await assessment_svc.get_snapshot(db, assessment_id, first.id, assessor)
    assert fetched.id == first.id


@pytest.mark.asyncio
async def test_snapshot_label_limit(db, assessment_id):
    with pytest.raises(ValidationError):
        await create_assessment_snapshot(db, assessment_id, SnapshotType.MANUAL, label="x" * 81)
    row = await create_assessment_snapshot(db, assessment_id, SnapshotType.MANUAL, label="x" * 80)
    assert len(row.label) == 80


@pytest.mark.asyncio
async def test_approved_snapshots_only_come_from_approval(db, assessment_id, admin):
    with pytest.raises(ValidationError):
        await assessment_svc.take_snapshot(
            db, assessment_id, SnapshotCreate(type=SnapshotType.APPROVED), admin,
        )


@pytest.mark.asyncio
async def test_viewer_cannot_take_snapshot(db, assessment_id, viewer):
    with pytest.raises(PermissionDenied):
        await assessment_svc.take_snapshot(db, assessment_id, SnapshotCreate(), viewer)


@pytest.mark.asyncio
async def test_snapshot_of_other_assessment_is_not_found(db, assessment_id, seed_org, admin):
    other = await assessment_svc.create_assessment(
        db, AssessmentCreate(organization_id=seed_org, name="Other"), admin,
    )
    row = await create_assessment_snapshot(db, other.id, SnapshotType.MANUAL)
    await db.commit()
    with pytest.raises(NotFoundError):
        await assessment_svc.get_snapshot(db, assessment_id, row.id, admin)
