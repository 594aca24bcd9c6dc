"""Unit tests: SSDF task scoring and aggregation (no database)."""
import pytest

from ssdf_tracker.models import SsdfStatus
from ssdf_tracker.services import ssdf_scoring
from ssdf_tracker.services.ssdf_scoring import TaskScore

NS = SsdfStatus.NOT_STARTED
IP = SsdfStatus.IN_PROGRESS
IM = SsdfStatus.IMPLEMENTED
NA = SsdfStatus.NOT_APPLICABLE


def ts(task_id, status, maturity, target, weight):
    practice_id = task_id.rsplit(".", 1)[0]
    return TaskScore(
        task_id=task_id,
        practice_id=practice_id,
        group_id=task_id.split(".")[0],
        status=status,
        maturity_level=maturity,
        target_level=target,
        weight=weight,
    )


# ── per-row ──

def test_gap_priority_and_progress():
    row = ts("PO.1.1", IP, 1, 3, 4)
    assert ssdf_scoring.gap(row) == 2
    assert ssdf_scoring.priority(row) == 8
    assert ssdf_scoring.progress_weighted(row) == pytest.approx(4 / 3)


def test_gap_is_negative_when_task_exceeds_target():
    row = ts("PO.1.1", IM, 3, 2, 3)
    assert ssdf_scoring.gap(row) == -1
    assert ssdf_scoring.priority(row) == -3


@pytest.mark.parametrize("applicable, status, expected", [
    (None, IP, IP),
    (None, NA, NA),
    (False, IM, NA),
    (False, NA, NA),
    (True, NA, NS),
    (True, IM, IM),
])
def test_normalize_status(applicable, status, expected):
    assert ssdf_scoring.normalize_status(applicable, status) == expected


def test_parse_evidence_links_splits_and_trims():
    raw = "https://ci.example.com/run/1, https://wiki.example.com/sdlc;\n\n  ticket-42 ;"
    assert ssdf_scoring.parse_evidence_links(raw) == [
        "https://ci.example.com/run/1",
        "https://wiki.example.com/sdlc",
        "ticket-42",
    ]


def test_parse_evidence_links_list_and_none():
    assert ssdf_scoring.parse_evidence_links(None) == []
    assert ssdf_scoring.parse_evidence_links(["  a ", "", "  ", "b"]) == ["a", "b"]


# ── aggregation ──

def test_aggregate_skips_not_applicable_rows():
    stats = ssdf_scoring.aggregate([
        ts("PO.1.1", IM, 3, 2, 3),
        ts("PO.1.2", IP, 1, 2, 3),
        ts("PO.2.1", NA, 0, 2, 5),
    ])
    assert stats.total == 3
    assert stats.applicable == 2
    assert stats.implemented == 1
    assert stats.maturity_sum == 4
    assert stats.maturity_avg == pytest.approx(2.0)
    assert stats.weighted_progress == pytest.approx(4.0)
    assert stats.weight_sum == 6
    assert stats.score == pytest.approx(4 / 6)
    assert stats.implemented_rate == pytest.approx(0.5)


def test_aggregate_of_nothing_is_zero():
    stats = ssdf_scoring.aggregate([])
    assert stats.score == 0.0
    assert stats.implemented_rate == 0.0
    assert stats.maturity_avg == 0.0


def test_group_stats_follow_group_order_and_omit_empty_groups():
    rows = [
        ts("RV.1.1", IM, 3, 3, 2),
        ts("PW.4.1", IP, 2, 3, 3),
        ts("PO.1.1", NS, 0, 2, 3),
        ts("PW.4.4", NS, 0, 2, 3),
    ]
    groups = ssdf_scoring.group_stats(rows)
    assert [g.id for g in groups] == ["PO", "PW", "RV"]
    assert [g.total for g in groups] == [1, 2, 1]

    total = ssdf_scoring.totals(groups)
    assert total.total == 4
    assert total.applicable == 4
    assert total.implemented == 1
    assert total.weight_sum == 11
    assert total.weighted_progress == pytest.approx(2 / 3 * 3 + 1 * 2)


def test_practice_stats_sorted_by_group_then_practice():
    rows = [ts("PW.4.1", IP, 2, 3, 3), ts("PO.3.1", NS, 0, 2, 3), ts("PO.1.1", NS, 0, 2, 3)]
    assert [p.id for p in ssdf_scoring.practice_stats(rows)] == ["PO.1", "PO.3", "PW.4"]


def test_rank_by_priority_orders_open_tasks():
    rows = [
        ts("PW.1.1", NS, 0, 2, 3),   # gap 2, priority 6
        ts("PO.1.2", IP, 1, 3, 3),   # gap 2, priority 6
        ts("PO.1.1", NS, 0, 3, 2),   # gap 3, priority 6
        ts("PO.2.1", IM, 1, 3, 5),   # implemented, left out
        ts("PO.3.1", NA, 0, 3, 5),   # not applicable, left out
        ts("RV.1.1", IP, 3, 2, 5),   # gap -1, priority -5
    ]
    ranked = ssdf_scoring.rank_by_priority(rows)
    assert [r.task_id for r in ranked] == ["PO.1.1", "PO.1.2", "PW.1.1", "RV.1.1"]
    assert [r.task_id for r in ssdf_scoring.rank_by_priority(rows, limit=2)] == ["PO.1.1", "PO.1.2"]
