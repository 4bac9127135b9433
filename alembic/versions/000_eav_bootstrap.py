"""EAV bootstrap: registry/catalog tables and the generic attribute_values table.

Revision ID: 000_eav_bootstrap
Revises:
Create Date: 2025-07-01 00:00:00

"""
from typing import Sequence, Union

from alembic import op

from apps.eav.migrations.runner import DOWNGRADE, UPGRADE, apply_step
from apps.eav.migrations.steps import BootstrapStep

revision: str = "000_eav_bootstrap"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    apply_step(op.get_bind(), BootstrapStep(), UPGRADE)


def downgrade() -> None:
    apply_step(op.get_bind(), BootstrapStep(), DOWNGRADE)
