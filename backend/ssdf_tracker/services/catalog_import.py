"""
Reference catalog import: SSDF and CIS reference data from YAML.

Format:
  ssdf:
    groups:
      - id: PO
        name: Prepare the Organization (PO)
        practices:
          - id: PO.1
            name: Define Security Requirements for Software Development
            tasks:
              - id: PO.1.1
                name: Identify and document all security requirements ...
                examples: ...        (optional)
                references: ...      (optional)
  cis:
    controls:
      - id: "16"
        name: Application Software Security
        safeguards:
          - id: "16.1"
            name: Establish and Maintain a Secure Application Development Process
            ig: IG2
  mappings:
    - task: PO.1.1
      safeguard: "16.1"        (or control: "16")
      type: DIRECT             (DIRECT | PARTIAL | SUPPORTS)
      weight: 1.0
      notes: ...               (optional)

Identifiers must be quoted strings where YAML would read them as numbers.
Import is idempotent: rows are matched on their natural keys and only changed
values are written. When mappings change, every active assessment is
re-derived.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import ValidationError
from ssdf_tracker.middleware.audit import log_audit_event
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import (
    AuditAction,
    CisControl,
    CisSafeguard,
    ImplementationGroup,
    MappingType,
    Role,
    SsdfCisMapping,
    SsdfGroup,
    SsdfPractice,
    SsdfTask,
)
from ssdf_tracker.repositories import active_assessment_ids
from ssdf_tracker.services import cis_derivation
from ssdf_tracker.services.release import ensure_role

log = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).resolve().parent.parent / "data" / "catalog.yaml"


@dataclass
class CatalogImportResult:
    """Result of a catalog YAML import."""
    groups: int = 0
    practices: int = 0
    tasks: int = 0
    controls: int = 0
    safeguards: int = 0
    mappings_created: int = 0
    mappings_updated: int = 0
    skipped: int = 0
    recalculated_assessments: int = 0
    errors: list[str] = field(default_factory=list)


def _id(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_catalog(content: bytes | str) -> dict[str, Any]:
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    data = yaml.safe_load(content)
    if not data or not isinstance(data, dict):
        raise ValueError("Empty or malformed catalog YAML")
    if not any(key in data for key in ("ssdf", "cis", "mappings")):
        raise ValueError("Catalog YAML needs at least one of: ssdf, cis, mappings")
    return data


def _entries(value: Any, label: str, result: CatalogImportResult) -> list[dict]:
    """Mapping entries of a YAML list; anything else is reported and skipped."""
    if value is None:
        return []
    if not isinstance(value, list):
        result.errors.append(f"{label}: expected a list, got {value!r}")
        result.skipped += 1
        return []
    entries = []
    for item in value:
        if isinstance(item, dict):
            entries.append(item)
        else:
            result.errors.append(f"{label}: entry is not a mapping: {item!r}")
            result.skipped += 1
    return entries


def _assign(obj, **values) -> bool:
    changed = False
    for attr, value in values.items():
        if getattr(obj, attr) != value:
            setattr(obj, attr, value)
            changed = True
    return changed


async def _upsert(s: AsyncSession, model, key: str, **values):
    obj = await s.get(model, key)
    if obj is None:
        obj = model(id=key, **values)
        s.add(obj)
        return obj
    _assign(obj, **values)
    return obj


async def _import_ssdf(s: AsyncSession, section: dict, result: CatalogImportResult) -> None:
    order = 0
    for g in _entries(section.get("groups"), "SSDF groups", result):
        gid = _id(g.get("id"))
        if not gid or not g.get("name"):
            result.errors.append(f"SSDF group without id or name: {g!r}")
            continue
        await _upsert(s, SsdfGroup, gid, name=_text(g["name"]))
        result.groups += 1
        for p in _entries(g.get("practices"), f"Practices of group {gid}", result):
            pid = _id(p.get("id"))
            if not pid or not p.get("name"):
                result.errors.append(f"SSDF practice without id or name in group {gid}")
                continue
            await _upsert(s, SsdfPractice, pid, group_id=gid, name=_text(p["name"]))
            result.practices += 1
            for t in _entries(p.get("tasks"), f"Tasks of practice {pid}", result):
                tid = _id(t.get("id"))
                if not tid or not t.get("name"):
                    result.errors.append(f"SSDF task without id or name in practice {pid}")
                    continue
                order += 1
                await _upsert(
                    s, SsdfTask, tid,
                    practice_id=pid,
                    name=_text(t["name"]),
                    examples=_text(t.get("examples")),
                    references=_text(t.get("references")),
                    order_id=order,
                )
                result.tasks += 1
    await s.flush()


async def _import_cis(s: AsyncSession, section: dict, result: CatalogImportResult) -> None:
    for c in _entries(section.get("controls"), "CIS controls", result):
        cid = _id(c.get("id"))
        if not cid or not c.get("name"):
            result.errors.append(f"CIS control without id or name: {c!r}")
            continue
        await _upsert(s, CisControl, cid, name=_text(c["name"]))
        result.controls += 1
        for sg in _entries(c.get("safeguards"), f"Safeguards of control {cid}", result):
            sid = _id(sg.get("id"))
            try:
                ig = ImplementationGroup(_id(sg.get("ig") or sg.get("implementation_group")).upper())
            except ValueError:
                result.errors.append(f"Safeguard {sid}: invalid implementation group")
                continue
            if not sid or not sg.get("name"):
                result.errors.append(f"CIS safeguard without id or name in control {cid}")
                continue
            await _upsert(s, CisSafeguard, sid, control_id=cid, name=_text(sg["name"]), implementation_group=ig)
            result.safeguards += 1
    await s.flush()


async def _import_mappings(s: AsyncSession, items: Any, result: CatalogImportResult) -> None:
    for m in _entries(items, "Mappings", result):
        task_id = _id(m.get("task"))
        control_id = _id(m.get("control")) or None
        safeguard_id = _id(m.get("safeguard")) or None
        if bool(control_id) == bool(safeguard_id):
            result.errors.append(f"Mapping for {task_id}: needs exactly one of control / safeguard")
            result.skipped += 1
            continue
        try:
            mapping_type = MappingType(_id(m.get("type")).upper())
            weight = float(m.get("weight", 1.0))
        except (TypeError, ValueError):
            result.errors.append(f"Mapping for {task_id}: invalid type or weight")
            result.skipped += 1
            continue
        if not 0 <= weight <= 1:
            result.errors.append(f"Mapping for {task_id}: weight {weight} outside [0, 1]")
            result.skipped += 1
            continue
        if (
            await s.get(SsdfTask, task_id) is None
            or (control_id and await s.get(CisControl, control_id) is None)
            or (safeguard_id and await s.get(CisSafeguard, safeguard_id) is None)
        ):
            result.errors.append(f"Mapping for {task_id}: unknown task, control or safeguard")
            result.skipped += 1
            continue

        existing = (await s.execute(
            select(SsdfCisMapping).where(
                SsdfCisMapping.ssdf_task_id == task_id,
                SsdfCisMapping.cis_control_id.is_(None) if control_id is None
                else SsdfCisMapping.cis_control_id == control_id,
                SsdfCisMapping.cis_safeguard_id.is_(None) if safeguard_id is None
                else SsdfCisMapping.cis_safeguard_id == safeguard_id,
            )
        )).scalars().first()
        notes = _text(m.get("notes"))
        if existing is None:
            s.add(SsdfCisMapping(
                ssdf_task_id=task_id,
                cis_control_id=control_id,
                cis_safeguard_id=safeguard_id,
                mapping_type=mapping_type,
                weight=weight,
                notes=notes,
            ))
            result.mappings_created += 1
        elif _assign(existing, mapping_type=mapping_type, weight=weight, notes=notes):
            result.mappings_updated += 1
    await s.flush()


async def import_catalog(s: AsyncSession, content: bytes | str) -> CatalogImportResult:
    """Upsert the catalog into the session. The caller commits."""
    data = parse_catalog(content)
    result = CatalogImportResult()

    for key in ("ssdf", "cis"):
        if data.get(key) is not None and not isinstance(data[key], dict):
            result.errors.append(f"Section {key}: expected a mapping, got {data[key]!r}")
            result.skipped += 1
    if isinstance(data.get("ssdf"), dict):
        await _import_ssdf(s, data["ssdf"], result)
    if isinstance(data.get("cis"), dict):
        await _import_cis(s, data["cis"], result)
    await _import_mappings(s, data.get("mappings"), result)

    if result.mappings_created or result.mappings_updated:
        for assessment_id in await active_assessment_ids(s):
            await cis_derivation.recalculate_for_assessment(s, assessment_id)
            result.recalculated_assessments += 1

    log.info(
        "Catalog import: %d groups, %d practices, %d tasks, %d controls, %d safeguards, "
        "%d mappings created, %d updated, %d skipped",
        result.groups, result.practices, result.tasks, result.controls, result.safeguards,
        result.mappings_created, result.mappings_updated, result.skipped,
    )
    for err in result.errors:
        log.warning("Catalog import: %s", err)
    return result


async def import_default_catalog(s: AsyncSession) -> CatalogImportResult:
    return await import_catalog(s, DEFAULT_CATALOG.read_text(encoding="utf-8"))


async def import_catalog_as(s: AsyncSession, content: bytes | str, actor: ActorContext) -> CatalogImportResult:
    """Admin upload of a catalog file, audited as one event."""
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Catalog", entity_id=None, organization_id=None,
        message="Only admins may import the reference catalog",
    )
    try:
        result = await import_catalog(s, content)
    except (ValueError, yaml.YAMLError) as exc:
        raise ValidationError(f"Invalid catalog file: {exc}") from exc

    await log_audit_event(
        s,
        action=AuditAction.OTHER,
        entity_type="Catalog",
        field_name="import",
        actor=actor,
        metadata={
            "tasks": result.tasks,
            "safeguards": result.safeguards,
            "mappings_created": result.mappings_created,
            "mappings_updated": result.mappings_updated,
            "skipped": result.skipped,
            "recalculated_assessments": result.recalculated_assessments,
        },
    )
    return result
