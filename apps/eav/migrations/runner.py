"""Schema migrator runner: applies steps in version order, one transaction per step.

Applied steps are recorded in eav_schema_versions. A failing step is rolled back and the run
halts with MigrationStepFailure naming the step; nothing is retried.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, insert, select
from sqlalchemy.engine import Connection, Engine

from apps.eav.config import config
from apps.eav.migrations.steps import (
    BOOTSTRAP,
    NORMALIZE,
    BootstrapStep,
    EntityIntroductionStep,
    MigrationStep,
    NormalizationStep,
    entity_migration_report,
    entity_step_name,
    migration_marks,
)
from apps.eav.models.schema_version import EavSchemaVersion
from apps.eav.schemas.migration import AppliedStep, EntityMigrationReport, StepReport
from apps.eav.services.errors import MigrationStepFailure
from apps.eav.services.owners import OwnerKind

logger = logging.getLogger(__name__)

UPGRADE = "upgrade"
DOWNGRADE = "downgrade"

_versions = EavSchemaVersion.__table__


def applied_steps(conn: Connection) -> dict[str, dict]:
    """Step name -> recorded details of every applied step."""
    _versions.create(conn, checkfirst=True)
    rows = conn.execute(select(_versions.c.step, _versions.c.details)).all()
    return {row.step: (row.details or {}) for row in rows}


def apply_step(conn: Connection, step: MigrationStep, direction: str = UPGRADE) -> StepReport:
    """Run step in direction on conn and update eav_schema_versions. The caller owns the transaction.

    Upgrading an applied step, or downgrading one that is not applied, is a no-op (applied=False).
    Any error is raised as MigrationStepFailure.
    """
    if direction not in (UPGRADE, DOWNGRADE):
        raise ValueError(f"direction must be {UPGRADE!r} or {DOWNGRADE!r}")
    try:
        applied = applied_steps(conn)
        if direction == UPGRADE:
            if step.name in applied:
                logger.info("Step %s already applied; skipping", step.name)
                return StepReport(step=step.name, version=step.version, direction=direction, applied=False, details=applied[step.name])
            step.check_upgrade(applied)
            logger.info("Applying step %s (v%d)", step.name, step.version)
            details = step.upgrade(conn, applied)
            conn.execute(
                insert(_versions).values(
                    step=step.name,
                    version=step.version,
                    applied_at=datetime.now(timezone.utc),
                    details=details,
                )
            )
        else:
            if step.name not in applied:
                logger.info("Step %s not applied; nothing to revert", step.name)
                return StepReport(step=step.name, version=step.version, direction=direction, applied=False)
            step.check_downgrade(applied)
            logger.info("Reverting step %s (v%d)", step.name, step.version)
            details = step.downgrade(conn, applied[step.name], applied)
            conn.execute(delete(_versions).where(_versions.c.step == step.name))
    except MigrationStepFailure:
        raise
    except Exception as e:
        raise MigrationStepFailure(step.name, direction, str(e)) from e
    logger.info("Step %s %s done: %s", step.name, direction, details)
    return StepReport(step=step.name, version=step.version, direction=direction, applied=True, details=details)


class SchemaMigrator:
    """Runs migration steps against an engine, sequentially, from a single process."""

    def __init__(self, engine: Engine | None = None, kinds: "list[OwnerKind | str] | None" = None):
        if engine is None:
            from apps.eav.db import engine as default_engine

            engine = default_engine
        self.engine = engine
        served = kinds if kinds is not None else config.ENTITY_SPECIFIC_KINDS
        self.kinds = sorted({OwnerKind.from_tag(k) for k in served}, key=lambda k: k.ordinal)

    def _select(
        self, step: str | None, kind: "OwnerKind | str | None", soft_delete_migrated: bool = False
    ) -> list[MigrationStep]:
        kinds = [OwnerKind.from_tag(kind)] if kind is not None else self.kinds
        entity_steps = [EntityIntroductionStep(k, soft_delete_migrated=soft_delete_migrated) for k in kinds]
        if step is None:
            # a kind on its own means that kind's entity step, never bootstrap or normalize
            if kind is not None:
                return entity_steps
            return [BootstrapStep(), *entity_steps, NormalizationStep()]
        if step == BOOTSTRAP:
            return [BootstrapStep()]
        if step == "entity":
            return entity_steps
        if step == NORMALIZE:
            return [NormalizationStep()]
        if step.startswith("entity_"):
            return [EntityIntroductionStep(step[len("entity_"):], soft_delete_migrated=soft_delete_migrated)]
        raise ValueError(f"Unknown step {step!r}; expected bootstrap, entity, entity_<kind> or normalize")

    def _run(self, steps: list[MigrationStep], direction: str, dry_run: bool) -> list[StepReport]:
        if dry_run:
            # one transaction for the whole sequence so later steps see earlier ones
            with self.engine.connect() as conn:
                trans = conn.begin()
                try:
                    reports = [apply_step(conn, s, direction) for s in steps]
                finally:
                    trans.rollback()
            logger.info("Dry run: %d step(s) %s rolled back", len(steps), direction)
            return [r.model_copy(update={"dry_run": True}) for r in reports]
        reports = []
        for s in steps:
            try:
                with self.engine.begin() as conn:
                    reports.append(apply_step(conn, s, direction))
            except MigrationStepFailure as e:
                logger.error("Halting: %s", e)
                raise
        return reports

    def upgrade(
        self,
        step: str | None = None,
        kind: "OwnerKind | str | None" = None,
        dry_run: bool = False,
        soft_delete_migrated: bool = False,
    ) -> list[StepReport]:
        """Apply the selected steps in version order.

        Default: all pending steps. A kind without a step selects only that kind's entity step.
        """
        steps = sorted(self._select(step, kind, soft_delete_migrated), key=lambda s: s.version)
        return self._run(steps, UPGRADE, dry_run)

    def downgrade(
        self,
        step: str | None = None,
        kind: "OwnerKind | str | None" = None,
        dry_run: bool = False,
    ) -> list[StepReport]:
        """Revert the selected steps in reverse version order.

        Default: every applied step. A kind without a step reverts only that kind's entity step, so the
        generic table and other kinds' rows are untouched.
        """
        if step is None and kind is None:
            with self.engine.connect() as conn:
                applied = applied_steps(conn)
                conn.commit()
            steps: list[MigrationStep] = [BootstrapStep(), NormalizationStep()]
            steps += [EntityIntroductionStep(k) for k in OwnerKind if entity_step_name(k) in applied]
        else:
            steps = self._select(step, kind)
        steps = sorted(steps, key=lambda s: s.version, reverse=True)
        return self._run(steps, DOWNGRADE, dry_run)

    def status(self) -> list[AppliedStep]:
        """Applied steps in version order."""
        with self.engine.connect() as conn:
            _versions.create(conn, checkfirst=True)
            rows = conn.execute(select(_versions).order_by(_versions.c.version)).all()
            conn.commit()
        return [AppliedStep.model_validate(dict(row._mapping)) for row in rows]

    def verify_entity_migration(self, kind: "OwnerKind | str") -> EntityMigrationReport:
        """Row counts of kind's generic rows vs its entity-specific table."""
        kind = OwnerKind.from_tag(kind)
        with self.engine.connect() as conn:
            applied = applied_steps(conn)
            report = entity_migration_report(conn, kind, migration_marks(applied, kind))
            conn.commit()
        level = logging.INFO if report.matches else logging.WARNING
        logger.log(
            level,
            "%s: generic=%d migrated=%d orphaned=%d matches=%s",
            report.kind,
            report.generic_rows,
            report.migrated_rows,
            report.orphaned_rows,
            report.matches,
        )
        return report


__all__ = ["DOWNGRADE", "SchemaMigrator", "UPGRADE", "applied_steps", "apply_step"]
