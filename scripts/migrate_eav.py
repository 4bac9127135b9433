#!/usr/bin/env python3
"""Run the EAV schema migrator.

Usage:
  python scripts/migrate_eav.py upgrade [--step bootstrap|entity|normalize] [--kind Facility] [--dry-run]
  python scripts/migrate_eav.py downgrade [--step ...] [--kind ...] [--dry-run]
  python scripts/migrate_eav.py status
  python scripts/migrate_eav.py verify [--kind Facility]

Without --step, upgrade applies every pending step and downgrade reverts every applied step.
--dry-run runs the steps in one transaction and rolls it back. Requires DATABASE_URL.
Exit code 1 when a step fails or verification finds a mismatch.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from apps.eav.config import config
from apps.eav.logging import get_logger
from apps.eav.migrations.runner import SchemaMigrator
from apps.eav.services.errors import MigrationStepFailure
from apps.eav.services.owners import OwnerKind

logger = get_logger("migrate_eav")

STEPS = ("bootstrap", "entity", "normalize")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="EAV schema migrator")
    sub = parser.add_subparsers(dest="command", required=True)
    for name in ("upgrade", "downgrade"):
        p = sub.add_parser(name, help=f"{name} migration steps")
        p.add_argument("--step", choices=STEPS, help="Only this step (entity: one per kind)")
        p.add_argument("--kind", help="Owner kind for the entity step; without --step, only that kind's entity step runs")
        p.add_argument("--dry-run", action="store_true", help="Run and roll back; nothing is committed")
        if name == "upgrade":
            p.add_argument(
                "--soft-delete-migrated",
                action="store_true",
                help="Entity step: soft-delete generic rows once copied",
            )
    sub.add_parser("status", help="List applied steps")
    v = sub.add_parser("verify", help="Compare generic and entity-specific row counts")
    v.add_argument("--kind", help="Owner kind (default: every entity-specific kind)")
    return parser


def run(argv: list[str] | None = None, migrator: SchemaMigrator | None = None) -> int:
    args = _parser().parse_args(argv)
    migrator = migrator or SchemaMigrator()

    if args.command == "status":
        applied = migrator.status()
        if not applied:
            print("No EAV migration steps applied")
        for row in applied:
            print(f"{row.version:>4}  {row.step:<20} {row.applied_at.isoformat()}")
        return 0

    if args.command == "verify":
        kinds = [args.kind] if args.kind else config.ENTITY_SPECIFIC_KINDS
        ok = True
        for kind in kinds:
            report = migrator.verify_entity_migration(OwnerKind.from_tag(kind))
            print(
                f"{report.kind}: generic={report.generic_rows} migrated={report.migrated_rows} "
                f"orphaned={report.orphaned_rows} matches={report.matches}"
            )
            for orphan in report.orphans:
                print(f"  orphan value={orphan.value_id} owner={orphan.owner_id} attribute={orphan.attribute_id}")
            ok = ok and report.matches
        return 0 if ok else 1

    try:
        if args.command == "upgrade":
            reports = migrator.upgrade(
                step=args.step,
                kind=args.kind,
                dry_run=args.dry_run,
                soft_delete_migrated=args.soft_delete_migrated,
            )
        else:
            reports = migrator.downgrade(step=args.step, kind=args.kind, dry_run=args.dry_run)
    except MigrationStepFailure as e:
        logger.error("%s", e)
        return 1

    for r in reports:
        state = "applied" if r.applied else "skipped"
        suffix = " (dry run, rolled back)" if r.dry_run else ""
        print(f"{r.direction} {r.step}: {state}{suffix}")
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
