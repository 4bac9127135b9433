"""Normalize value tables: drop declared_type, owner_id naming, single-slot CHECK, retire migrated generic rows.

Revision ID: 002_eav_normalize
Revises: 001_eav_entity_tables
Create Date: 2025-12-28 00:00:00

"""
from typing import Sequence, Union

from alembic import op

from apps.eav.migrations.runner import DOWNGRADE, UPGRADE, apply_step
from apps.eav.migrations.steps import NormalizationStep

revision: str = "002_eav_normalize"
down_revision: Union[str, None] = "001_eav_entity_tables"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    apply_step(op.get_bind(), NormalizationStep(), UPGRADE)


def downgrade() -> None:
    apply_step(op.get_bind(), NormalizationStep(), DOWNGRADE)
