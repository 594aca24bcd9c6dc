"""
Audit trail helpers. Call them from services after a mutation has been applied.

Usage in a service:
    from ssdf_tracker.middleware.audit import log_field_changes
    await log_field_changes(s, action=AuditAction.UPDATE,
                            entity_type="SsdfCisMapping", entity_id=mapping.id,
                            actor=ctx, before=before, after=after, fields=MAPPING_FIELDS)

One row is written per changed field so redaction and truncation apply to each
value on its own. Fields whose serialized values are equal are skipped.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.middleware.context import ActorContext, RequestContext
from ssdf_tracker.middleware.redact import (
    MAX_VALUE_LENGTH,
    redact_metadata,
    redact_value,
    to_json,
)
from ssdf_tracker.models.audit import AssessmentTaskHistory, AuditLog
from ssdf_tracker.models.evidence import EvidenceHistory
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.models.enums import AuditAction


def _limit(max_length: int | None, ctx: RequestContext | None) -> int:
    if max_length is not None:
        return max_length
    return ctx.audit_max_length if ctx else MAX_VALUE_LENGTH


def _merge_request_context(metadata: dict[str, Any], ctx: RequestContext | None) -> dict[str, Any]:
    merged = dict(metadata)
    if ctx is None:
        return merged
    if ctx.request_id:
        merged["request_id"] = ctx.request_id
    if ctx.ip:
        merged["ip"] = ctx.ip
    if ctx.user_agent:
        merged["user_agent"] = ctx.user_agent
    if ctx.route:
        merged["route"] = ctx.route
    return merged


def _final_metadata(
    metadata: dict[str, Any] | None,
    ctx: RequestContext | None,
    truncated_fields: list[str],
    max_length: int,
) -> dict[str, Any] | None:
    sanitized, meta_truncated = redact_metadata(_merge_request_context(metadata or {}, ctx), max_length)
    if meta_truncated:
        truncated_fields = [*truncated_fields, "metadata"]
    if truncated_fields:
        sanitized["truncated"] = True
        sanitized["truncated_fields"] = truncated_fields
    return sanitized or None


def diff_changes(
    before: dict[str, Any], after: dict[str, Any], fields: list[str],
) -> list[tuple[str, Any, Any]]:
    """Return (field, old, new) for every listed field whose serialized value changed."""
    changes = []
    for field_name in fields:
        old_val = before.get(field_name)
        new_val = after.get(field_name)
        if to_json(old_val) == to_json(new_val):
            continue
        changes.append((field_name, old_val, new_val))
    return changes


async def log_audit_event(
    session: AsyncSession,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: Any = None,
    field_name: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    organization_id: int | None = None,
    actor: ActorContext | None = None,
    success: bool = True,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
    max_length: int | None = None,
) -> AuditLog:
    """Record a single audit entry."""
    request_ctx = actor.request_context if actor else None
    max_length = _limit(max_length, request_ctx)
    old_result = redact_value(old_value, field_name, max_length)
    new_result = redact_value(new_value, field_name, max_length)

    truncated = []
    if old_result.truncated:
        truncated.append("old_value")
    if new_result.truncated:
        truncated.append("new_value")

    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        field_name=field_name,
        old_value=old_result.value,
        new_value=new_result.value,
        organization_id=organization_id,
        actor_user_id=actor.actor_id if actor else None,
        actor_email=actor.actor_email if actor else None,
        actor_role=actor.actor_role.value if actor and actor.actor_role else None,
        success=success,
        error_message=error_message,
        request_id=request_ctx.request_id if request_ctx else None,
        meta=_final_metadata(metadata, request_ctx, truncated, max_length),
        created_at=utcnow(),
    )
    session.add(entry)
    return entry


async def log_field_changes(
    session: AsyncSession,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: Any,
    before: dict[str, Any],
    after: dict[str, Any],
    fields: list[str],
    actor: ActorContext | None = None,
    organization_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    max_length: int | None = None,
) -> list[AuditLog]:
    """Record one audit entry per changed field."""
    entries = []
    for field_name, old_val, new_val in diff_changes(before, after, fields):
        entries.append(await log_audit_event(
            session,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            field_name=field_name,
            old_value=old_val,
            new_value=new_val,
            organization_id=organization_id,
            actor=actor,
            metadata=metadata,
            max_length=max_length,
        ))
    return entries


def _history_rows(
    model,
    owner: dict[str, int],
    before: dict[str, Any],
    after: dict[str, Any],
    fields: list[str],
    actor: ActorContext | None,
    reason: str | None,
    metadata: dict[str, Any] | None,
    max_length: int | None,
) -> list:
    request_ctx = actor.request_context if actor else RequestContext()
    max_length = _limit(max_length, request_ctx)
    now = utcnow()
    rows = []
    for field_name, old_val, new_val in diff_changes(before, after, fields):
        old_result = redact_value(old_val, field_name, max_length)
        new_result = redact_value(new_val, field_name, max_length)
        truncated = [
            name for name, res in (("old_value", old_result), ("new_value", new_result)) if res.truncated
        ]
        rows.append(model(
            **owner,
            changed_by_id=actor.actor_id if actor else None,
            field_name=field_name,
            old_value=old_result.value,
            new_value=new_result.value,
            reason=reason,
            request_id=request_ctx.request_id,
            ip=request_ctx.ip,
            user_agent=request_ctx.user_agent,
            meta=_final_metadata(metadata, request_ctx, truncated, max_length),
            created_at=now,
        ))
    return rows


async def log_task_history(
    session: AsyncSession,
    *,
    task_result_id: int,
    before: dict[str, Any],
    after: dict[str, Any],
    fields: list[str],
    actor: ActorContext | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    max_length: int | None = None,
) -> list[AssessmentTaskHistory]:
    """Record the per-field history of a task result edit."""
    rows = _history_rows(
        AssessmentTaskHistory, {"task_result_id": task_result_id},
        before, after, fields, actor, reason, metadata, max_length,
    )
    session.add_all(rows)
    return rows


async def log_evidence_history(
    session: AsyncSession,
    *,
    evidence_id: int,
    before: dict[str, Any],
    after: dict[str, Any],
    fields: list[str],
    actor: ActorContext | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    max_length: int | None = None,
) -> list[EvidenceHistory]:
    """Record the per-field history of an evidence create, edit or delete."""
    rows = _history_rows(
        EvidenceHistory, {"evidence_id": evidence_id},
        before, after, fields, actor, reason, metadata, max_length,
    )
    session.add_all(rows)
    return rows
