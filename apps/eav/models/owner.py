"""Owning tables (users, roles, facilities, instructors, assessments).

Only the key columns live here; business columns belong to the features that own these tables.
Entity-specific value tables reference <table>.id with ON DELETE CASCADE.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.eav.models.base import Base
from apps.eav.services.owners import OwnerKind


class _OwnerRecord:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=True)


class User(_OwnerRecord, Base):
    __tablename__ = "users"


class Role(_OwnerRecord, Base):
    __tablename__ = "roles"


class Facility(_OwnerRecord, Base):
    __tablename__ = "facilities"


class Instructor(_OwnerRecord, Base):
    __tablename__ = "instructors"


class Assessment(_OwnerRecord, Base):
    __tablename__ = "assessments"


OWNER_MODELS: dict[OwnerKind, type[Base]] = {
    OwnerKind.USER: User,
    OwnerKind.ROLE: Role,
    OwnerKind.FACILITY: Facility,
    OwnerKind.INSTRUCTOR: Instructor,
    OwnerKind.ASSESSMENT: Assessment,
}
