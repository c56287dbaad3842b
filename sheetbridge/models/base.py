# sheetbridge/models/base.py

from __future__ import annotations

import uuid
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import Mapped, mapped_column

db = SQLAlchemy()


def new_id() -> str:
    """Return a fresh primary key for a migrated row."""
    return str(uuid.uuid4())


class BaseModel(db.Model):
    """Abstract base for every table in the target schema."""

    __abstract__ = True

    def __repr__(self):
        identifier = getattr(self, "id", None)
        return f"<{type(self).__name__} {identifier}>"


class MigratedMixin:
    """
    Columns shared by every table populated from the legacy platform.

    ``source_id`` carries the originating legacy identifier so a row can always
    be traced back, independently of the mapping table.
    """

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    source_id: Mapped[str | None] = mapped_column(db.String(64), unique=True, index=True, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
