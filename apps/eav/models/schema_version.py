"""eav_schema_versions table. One row per applied migrator step, ordered by version stamp."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.eav.models.base import Base, JSONType


class EavSchemaVersion(Base):
    __tablename__ = "eav_schema_versions"

    step: Mapped[str] = mapped_column(String(100), primary_key=True)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
