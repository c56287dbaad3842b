# sheetbridge/models/sheet.py

"""Sheets (questionnaire instances), their workflow statuses and requests."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, MigratedMixin, db

sheet_shareable_companies = db.Table(
    "sheet_shareable_companies",
    db.Column("sheet_id", db.String(36), ForeignKey("sheets.id", ondelete="CASCADE"), primary_key=True),
    db.Column("company_id", db.String(36), ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True),
)

sheet_tags = db.Table(
    "sheet_tags",
    db.Column("sheet_id", db.String(36), ForeignKey("sheets.id", ondelete="CASCADE"), primary_key=True),
    db.Column("tag_id", db.String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

sheet_questions = db.Table(
    "sheet_questions",
    db.Column("sheet_id", db.String(36), ForeignKey("sheets.id", ondelete="CASCADE"), primary_key=True),
    db.Column("question_id", db.String(36), ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("order_number", db.Integer, nullable=True),
)

sheet_supplier_users_assigned = db.Table(
    "sheet_supplier_users_assigned",
    db.Column("sheet_id", db.String(36), ForeignKey("sheets.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

request_tags = db.Table(
    "request_tags",
    db.Column("request_id", db.String(36), ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True),
    db.Column("tag_id", db.String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Sheet(MigratedMixin, BaseModel):
    """
    A questionnaire instance owned by one company and assigned to another.

    ``father_sheet_id`` and ``prev_sheet_id`` form the version lineage. They are
    written by the lineage pass after every sheet row exists.
    """

    __tablename__ = "sheets"

    name: Mapped[str] = mapped_column(db.String(500), nullable=False)
    name_lower_case: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    assigned_to_company_id: Mapped[str | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    original_requestor_assoc_id: Mapped[str | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    requestor_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    requestor_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    new_status: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    new_name: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    unread_comment: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    mark_as_archived: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    mark_as_test_sheet: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    test_being_deleted: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    version: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    version_lock: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    version_description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    version_close_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    version_closed_by: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    version_count_expected: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    version_count_original: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    version_count_processed: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    imported_file_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    supplier_assignment_log: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    father_sheet_id: Mapped[str | None] = mapped_column(
        ForeignKey("sheets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    prev_sheet_id: Mapped[str | None] = mapped_column(
        ForeignKey("sheets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    __table_args__ = (Index("idx_sheets_company_name", "company_id", "name"),)


class SheetStatus(MigratedMixin, BaseModel):
    """Workflow status row (approved, under review, ...) for a sheet version."""

    __tablename__ = "sheet_statuses"

    sheet_name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    sheet_id: Mapped[str | None] = mapped_column(
        ForeignKey("sheets.id", ondelete="CASCADE"), nullable=True, index=True
    )
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    father_of_sheet_id: Mapped[str | None] = mapped_column(
        ForeignKey("sheets.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    completed: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    complete_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    observations: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    version: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    reminders_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class SheetChemical(BaseModel):
    """
    Chemical-compliance record attached to a sheet.

    Maintained by the surrounding application; reconciliation only reads it.
    """

    __tablename__ = "sheet_chemicals"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    sheet_id: Mapped[str] = mapped_column(ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    cas_number: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    chemical_name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    concentration: Mapped[str | None] = mapped_column(db.String(100), nullable=True)


class Request(MigratedMixin, BaseModel):
    """A customer company's request for a supplier to fill in a sheet."""

    __tablename__ = "requests"

    product_name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    requestor_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    requesting_from_id: Mapped[str | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    sheet_id: Mapped[str | None] = mapped_column(ForeignKey("sheets.id", ondelete="SET NULL"), nullable=True)
    processed: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    manufacturer_marked_as_provided: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    show_as_removed: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    comment_requestor: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    comment_supplier: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    creator_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    first_shared_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_share_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    days_to_first_share: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    days_to_last_share: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
