#!/usr/bin/env python3
"""Register entity types and attribute definitions from a JSON file. Idempotent.

Usage:
  python scripts/bootstrap_attributes.py definitions.json [--dry-run] [--ensure-tables]

definitions.json is a list of entity types:
  [{"name": "Facility", "backing_table_name": "facilities",
    "attributes": [{"name": "equipment_name", "declared_type": "string", "is_multi_valued": true}]}]

Existing entity types and definitions are left unchanged. --dry-run performs every read and
rolls back instead of committing.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from apps.eav.schemas.definitions import EntityTypeSeed
from apps.eav.services import catalog, registry

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

_seeds = TypeAdapter(list[EntityTypeSeed])


def load_seeds(path: Path) -> list[EntityTypeSeed]:
    with open(path, encoding="utf-8") as f:
        return _seeds.validate_python(json.load(f))


def bootstrap(session: Session, seeds: list[EntityTypeSeed]) -> dict[str, int]:
    """Register every seed in session. Returns counts of entity types and definitions seen."""
    counts = {"entity_types": 0, "attributes": 0}
    for seed in seeds:
        entity_type_id = registry.register(session, seed.name, seed.backing_table_name, seed.description)
        counts["entity_types"] += 1
        for attr in seed.attributes:
            catalog.define_from(session, entity_type_id, attr)
            counts["attributes"] += 1
        logger.info("%s: %d attribute definitions ensured", seed.name, len(seed.attributes))
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Register EAV entity types and attribute definitions")
    parser.add_argument("path", type=Path, help="JSON file with entity types and attributes")
    parser.add_argument("--dry-run", action="store_true", help="Roll back instead of committing")
    parser.add_argument("--ensure-tables", action="store_true", help="Run ensure_tables() first")
    args = parser.parse_args()

    try:
        seeds = load_seeds(args.path)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("Cannot read %s: %s", args.path, e)
        sys.exit(1)

    from apps.eav.db import SessionLocal, ensure_tables

    if args.ensure_tables:
        ensure_tables()

    session = SessionLocal()
    try:
        counts = bootstrap(session, seeds)
        if args.dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    mode = "dry run, rolled back" if args.dry_run else "committed"
    print(f"Bootstrap {mode}: {counts['entity_types']} entity types, {counts['attributes']} attributes")


if __name__ == "__main__":
    main()
