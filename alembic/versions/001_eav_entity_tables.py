"""Entity-specific value tables for every kind in EAV_ENTITY_SPECIFIC_KINDS, backfilled from attribute_values.

Revision ID: 001_eav_entity_tables
Revises: 000_eav_bootstrap
Create Date: 2025-12-27 00:00:00

"""
from typing import Sequence, Union

from alembic import op

from apps.eav.config import config
from apps.eav.migrations.runner import DOWNGRADE, UPGRADE, apply_step
from apps.eav.migrations.steps import EntityIntroductionStep
from apps.eav.services.owners import OwnerKind

revision: str = "001_eav_entity_tables"
down_revision: Union[str, None] = "000_eav_bootstrap"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _steps() -> list[EntityIntroductionStep]:
    kinds = sorted({OwnerKind.from_tag(k) for k in config.ENTITY_SPECIFIC_KINDS}, key=lambda k: k.ordinal)
    return [EntityIntroductionStep(k) for k in kinds]


def upgrade() -> None:
    conn = op.get_bind()
    for step in _steps():
        apply_step(conn, step, UPGRADE)


def downgrade() -> None:
    conn = op.get_bind()
    # every kind, not only the configured ones: reverting an unapplied step is a no-op
    for kind in reversed(list(OwnerKind)):
        apply_step(conn, EntityIntroductionStep(kind), DOWNGRADE)
