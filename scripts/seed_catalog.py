#!/usr/bin/env python3
"""SSDF Tracker: seed the reference catalog (and optionally an organization).

Run from the backend/ directory (with the venv active), after `alembic upgrade head`:
    python ../scripts/seed_catalog.py
    python ../scripts/seed_catalog.py --file my_catalog.yaml --org "Acme Corp"

Steps:
  1. Database connection (DATABASE_URL from the environment or backend/.env)
  2. Upsert SSDF groups / practices / tasks, CIS controls / safeguards and mappings
  3. Create the organization when --org is given and it does not exist yet
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path

# Put backend/ on the path
backend_dir = Path(__file__).resolve().parent.parent / "backend"
sys.path.insert(0, str(backend_dir))
os.chdir(str(backend_dir))

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
NC = "\033[0m"


def ok(msg):
    print(f"  {GREEN}[OK]{NC} {msg}")

def fail(msg):
    print(f"  {RED}[FAIL]{NC} {msg}")

def warn(msg):
    print(f"  {YELLOW}[!]{NC} {msg}")

def step(msg):
    print(f"\n{BLUE}=== {msg} ==={NC}")


async def main(catalog_file: Path | None, org_name: str | None) -> int:
    from sqlalchemy import select

    from ssdf_tracker import database
    from ssdf_tracker.config import get_settings
    from ssdf_tracker.models import Organization
    from ssdf_tracker.services.catalog_import import DEFAULT_CATALOG, import_catalog

    settings = get_settings()
    session_factory = database.configure_database(settings)

    step("1. Database connection")
    try:
        await database.check_db_connection()
        ok(settings.DATABASE_URL)
    except Exception as exc:
        fail(f"Cannot connect: {exc}")
        return 1

    step("2. Reference catalog")
    path = catalog_file or DEFAULT_CATALOG
    async with session_factory() as s:
        try:
            result = await import_catalog(s, path.read_text(encoding="utf-8"))
        except ValueError as exc:
            fail(f"{path}: {exc}")
            return 1
        await s.commit()
    ok(f"{result.groups} groups, {result.practices} practices, {result.tasks} tasks")
    ok(f"{result.controls} controls, {result.safeguards} safeguards")
    ok(f"mappings: {result.mappings_created} created, {result.mappings_updated} updated, "
       f"{result.skipped} skipped")
    if result.recalculated_assessments:
        ok(f"re-derived {result.recalculated_assessments} assessments")
    for err in result.errors:
        warn(err)

    if org_name:
        step("3. Organization")
        async with session_factory() as s:
            existing = (await s.execute(
                select(Organization).where(
                    Organization.name == org_name, Organization.deleted_at.is_(None),
                )
            )).scalar_one_or_none()
            if existing:
                warn(f"'{org_name}' already exists (id={existing.id})")
            else:
                org = Organization(name=org_name)
                s.add(org)
                await s.commit()
                ok(f"created '{org_name}' (id={org.id})")

    await database.engine.dispose()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the SSDF/CIS reference catalog")
    parser.add_argument("--file", type=Path, help="catalog YAML (defaults to the bundled catalog)")
    parser.add_argument("--org", help="create an organization with this name")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.file, args.org)))
