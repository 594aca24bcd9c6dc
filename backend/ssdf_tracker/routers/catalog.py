"""
Reference catalog import: /api/v1/catalog

Upload of a YAML catalog (SSDF, CIS, default mappings). Admin only.
"""
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.database import get_session
from ssdf_tracker.errors import ValidationError
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.services.boundary import run_mutation
from ssdf_tracker.services.catalog_import import import_catalog_as

router = APIRouter(prefix="/api/v1/catalog", tags=["Reference Catalog"])


@router.post("/import")
async def import_catalog_file(
    file: UploadFile = File(...),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    if not file.filename or not file.filename.endswith((".yaml", ".yml")):
        raise ValidationError("File must be a YAML file (.yaml or .yml)")
    content = await file.read()
    result = await run_mutation(s, import_catalog_as, content, ctx)
    return {
        "groups": result.groups,
        "practices": result.practices,
        "tasks": result.tasks,
        "controls": result.controls,
        "safeguards": result.safeguards,
        "mappings_created": result.mappings_created,
        "mappings_updated": result.mappings_updated,
        "skipped": result.skipped,
        "recalculated_assessments": result.recalculated_assessments,
        "errors": result.errors[:20],
    }
