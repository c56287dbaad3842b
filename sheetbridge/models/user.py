# sheetbridge/models/user.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, MigratedMixin, db


class User(MigratedMixin, BaseModel):
    """Person migrated from the legacy platform. No login credentials are carried over."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    phone_text: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    profile_pic_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    user_type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    language: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    is_company_main_contact: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_company_point_person: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_supplier_pointguard: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_sup_get_email_notifications: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_sup_cert_manager: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_sup_cert_tmplt_creator: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_sup_reviewer: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_sup_view_question_menu: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    invitation_sent: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    profile_done: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_prospect: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_in_payed_or_established_plan: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    prospect_company_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    plan_first_started: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    comments: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    email_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
