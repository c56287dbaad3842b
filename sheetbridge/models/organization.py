# sheetbridge/models/organization.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, MigratedMixin, db

association_companies = db.Table(
    "association_companies",
    db.Column("association_id", db.String(36), ForeignKey("associations.id", ondelete="CASCADE"), primary_key=True),
    db.Column("company_id", db.String(36), ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True),
)


class Association(MigratedMixin, BaseModel):
    """Industry association grouping companies and questionnaire stacks."""

    __tablename__ = "associations"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Stack(MigratedMixin, BaseModel):
    """Bundle of questionnaire sections offered to companies."""

    __tablename__ = "stacks"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_bundle: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    association_id: Mapped[str | None] = mapped_column(
        ForeignKey("associations.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Company(MigratedMixin, BaseModel):
    """Organization that owns, requests or supplies sheets."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    name_lower_case: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    email_suffix: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    location_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    show_as_supplier: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    hide_hq_import: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_zapier: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    patch_status_applied: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    plan_started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    subscription_anniversary_date: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True), nullable=True
    )
    subscription_trial_ends: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    subscription_cancel_at_trial: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    subscription_canceled: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    subscription_expired: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    subscription_sheets_allowed: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    premium_features_requested: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    list_emails_prefix: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
