# sheetbridge/models/answer.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, MigratedMixin, db

answer_shareable_companies = db.Table(
    "answer_shareable_companies",
    db.Column("answer_id", db.String(36), ForeignKey("answers.id", ondelete="CASCADE"), primary_key=True),
    db.Column("company_id", db.String(36), ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True),
)

answer_text_choices = db.Table(
    "answer_text_choices",
    db.Column("answer_id", db.String(36), ForeignKey("answers.id", ondelete="CASCADE"), primary_key=True),
    db.Column("order_number", db.Integer, primary_key=True),
    db.Column("text_choice", db.Text, nullable=False),
)


class Answer(MigratedMixin, BaseModel):
    """One response value bound to a sheet and a question."""

    __tablename__ = "answers"

    answer_name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    answer_id_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    order_number: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    sheet_id: Mapped[str] = mapped_column(ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    originating_question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_question_id: Mapped[str | None] = mapped_column(
        ForeignKey("questions.id", ondelete="SET NULL"), nullable=True
    )
    choice_id: Mapped[str | None] = mapped_column(ForeignKey("choices.id", ondelete="SET NULL"), nullable=True)
    list_table_column_id: Mapped[str | None] = mapped_column(
        ForeignKey("list_table_columns.id", ondelete="SET NULL"), nullable=True
    )
    list_table_row_id: Mapped[str | None] = mapped_column(
        ForeignKey("list_table_rows.id", ondelete="SET NULL"), nullable=True
    )
    stack_id: Mapped[str | None] = mapped_column(ForeignKey("stacks.id", ondelete="SET NULL"), nullable=True)
    parent_subsection_id: Mapped[str | None] = mapped_column(
        ForeignKey("subsections.id", ondelete="SET NULL"), nullable=True
    )
    text_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    text_area_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    number_value: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    boolean_value: Mapped[bool | None] = mapped_column(db.Boolean, nullable=True)
    date_value: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    file_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    support_file_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    clarification: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    custom_comment_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    custom_row_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    import_double_check: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    version_in_sheet: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    version_copied: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
