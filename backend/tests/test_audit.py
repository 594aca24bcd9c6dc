"""Tests: audit trail redaction, truncation and request context."""
from datetime import date

import pytest
from sqlalchemy import select

from ssdf_tracker.middleware.audit import diff_changes, log_audit_event, log_field_changes
from ssdf_tracker.middleware.context import ActorContext, RequestContext
from ssdf_tracker.middleware.redact import (
    REDACTED,
    mask_email,
    redact_metadata,
    redact_value,
)
from ssdf_tracker.models import AuditAction, AuditLog, Role, SsdfStatus


# ── redaction ──

@pytest.mark.parametrize("field_name", ["password", "apiToken", "clientSecret", "Authorization", "cookie"])
def test_sensitive_fields_are_redacted(field_name):
    assert redact_value("hunter2", field_name).value == REDACTED


def test_mask_email():
    assert mask_email("alice@example.com") == "a***@example.com"
    assert mask_email("a@example.com") == "***@example.com"
    assert mask_email("not an email") == "not an email"


@pytest.mark.parametrize("value, expected", [
    (None, None),
    (True, "true"),
    (False, "false"),
    (3, "3"),
    (0.7, "0.7"),
    (SsdfStatus.IMPLEMENTED, "IMPLEMENTED"),
    (date(2026, 3, 1), "2026-03-01"),
    (["a", "b"], '["a", "b"]'),
    ("bob@corp.example", "b***@corp.example"),
])
def test_redact_value_serializes(value, expected):
    assert redact_value(value).value == expected


def test_long_values_are_truncated():
    result = redact_value("x" * 600)
    assert result.truncated is True
    assert result.value == "x" * 500 + "..."

    short = redact_value("x" * 20, max_length=10)
    assert short.value == "x" * 10 + "..."


def test_redact_metadata_drops_sensitive_keys():
    sanitized, truncated = redact_metadata({
        "token": "abc",
        "note": "hi",
        "count": 2,
        "nested": {"b": 1, "a": [1, 2]},
        "status": SsdfStatus.IN_PROGRESS,
    })
    assert sanitized == {
        "note": "hi",
        "count": 2,
        "nested": '{"a": [1, 2], "b": 1}',
        "status": "IN_PROGRESS",
    }
    assert truncated is False


def test_diff_changes_compares_serialized_values():
    before = {"status": SsdfStatus.NOT_STARTED, "links": ["a"], "owner": None, "weight": 3}
    after = {"status": "NOT_STARTED", "links": ["a", "b"], "owner": "", "weight": 3}
    assert diff_changes(before, after, ["status", "links", "owner", "weight"]) == [
        ("links", ["a"], ["a", "b"]),
        ("owner", None, ""),
    ]


# ── persisted entries ──

def actor_with(request_context: RequestContext) -> ActorContext:
    return ActorContext(
        actor_id="u-7",
        actor_role=Role.ASSESSOR,
        actor_email="carol@example.com",
        organization_ids=frozenset({1}),
        request_context=request_context,
    )


@pytest.mark.asyncio
async def test_log_audit_event_merges_request_context(db):
    actor = actor_with(RequestContext(request_id="req-9", ip="192.0.2.4", user_agent="curl/8", route="/api/v1/x"))
    await log_audit_event(
        db,
        action=AuditAction.UPDATE,
        entity_type="AssessmentTaskResult",
        entity_id=42,
        field_name="comments",
        old_value=None,
        new_value="y" * 30,
        organization_id=1,
        actor=actor,
        metadata={"reason": "Quarterly review", "secretKey": "s3cr3t"},
        max_length=10,
    )
    await db.commit()

    entry = (await db.execute(select(AuditLog))).scalar_one()
    assert entry.entity_id == "42"
    assert entry.new_value == "y" * 10 + "..."
    assert entry.actor_role == "ASSESSOR"
    assert entry.actor_email == "carol@example.com"
    assert entry.request_id == "req-9"
    assert entry.success is True
    assert entry.meta == {
        "reason": "Quarterly ...",
        "request_id": "req-9",
        "ip": "192.0.2.4",
        "user_agent": "curl/8",
        "route": "/api/v1/x",
        "truncated": True,
        "truncated_fields": ["new_value", "metadata"],
    }


@pytest.mark.asyncio
async def test_request_context_sets_truncation_bound(db):
    actor = actor_with(RequestContext(request_id="req-1", audit_max_length=5))
    entry = await log_audit_event(
        db, action=AuditAction.OTHER, entity_type="Catalog", new_value="abcdefgh", actor=actor,
    )
    assert entry.new_value == "abcde..."
    assert entry.meta["truncated_fields"] == ["new_value"]


@pytest.mark.asyncio
async def test_log_field_changes_writes_one_row_per_field(db):
    actor = actor_with(RequestContext(request_id="req-2"))
    entries = await log_field_changes(
        db,
        action=AuditAction.UPDATE,
        entity_type="Mapping",
        entity_id=5,
        actor=actor,
        before={"weight": 1.0, "notes": None, "mapping_type": "DIRECT"},
        after={"weight": 0.5, "notes": "Narrowed", "mapping_type": "DIRECT"},
        fields=["weight", "notes", "mapping_type"],
    )
    await db.commit()
    assert [(e.field_name, e.old_value, e.new_value) for e in entries] == [
        ("weight", "1.0", "0.5"),
        ("notes", None, "Narrowed"),
    ]
    assert all(e.meta == {"request_id": "req-2"} for e in entries)
