# sheetbridge/models/questionnaire.py

"""Questionnaire structure: sections, questions, choices, tags and list tables."""

from __future__ import annotations

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, MigratedMixin, db

question_tags = db.Table(
    "question_tags",
    db.Column("question_id", db.String(36), ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("tag_id", db.String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

question_companies = db.Table(
    "question_companies",
    db.Column("question_id", db.String(36), ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("company_id", db.String(36), ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True),
)

section_questions = db.Table(
    "section_questions",
    db.Column("section_id", db.String(36), ForeignKey("sections.id", ondelete="CASCADE"), primary_key=True),
    db.Column("question_id", db.String(36), ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("order_number", db.Integer, nullable=True),
)

tag_hidden_companies = db.Table(
    "tag_hidden_companies",
    db.Column("tag_id", db.String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    db.Column("company_id", db.String(36), ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True),
)


class ListTable(MigratedMixin, BaseModel):
    __tablename__ = "list_tables"

    name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class ListTableColumn(MigratedMixin, BaseModel):
    __tablename__ = "list_table_columns"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    response_type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    order_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    parent_table_id: Mapped[str | None] = mapped_column(
        ForeignKey("list_tables.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class ListTableRow(MigratedMixin, BaseModel):
    __tablename__ = "list_table_rows"

    row_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    table_id: Mapped[str | None] = mapped_column(
        ForeignKey("list_tables.id", ondelete="CASCADE"), nullable=True, index=True
    )


class Section(MigratedMixin, BaseModel):
    __tablename__ = "sections"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    order_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    help: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    questionnaire_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    stack_id: Mapped[str | None] = mapped_column(ForeignKey("stacks.id", ondelete="SET NULL"), nullable=True)
    association_id: Mapped[str | None] = mapped_column(
        ForeignKey("associations.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Subsection(MigratedMixin, BaseModel):
    __tablename__ = "subsections"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    show_title_and_group: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    order_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    section_id: Mapped[str | None] = mapped_column(
        ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True
    )
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Tag(MigratedMixin, BaseModel):
    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    group_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    custom_company_id: Mapped[str | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    custom_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    custom_any_can_see: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    custom_only_if_requested_or_shared: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Question(MigratedMixin, BaseModel):
    __tablename__ = "questions"

    name: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    content: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    question_description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    clarification: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    clarification_yes_no: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    static_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    a_q_help: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    question_type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    question_id_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    order_number: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    required: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    optional_question: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    dependent_no_show: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    lock: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    highlight: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    support_file_requested: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    support_file_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    section_name_sort: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    section_sort_number: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    subsection_name_sort: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    subsection_sort_number: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    parent_section_id: Mapped[str | None] = mapped_column(
        ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True
    )
    parent_subsection_id: Mapped[str | None] = mapped_column(
        ForeignKey("subsections.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Choices are migrated after questions; only set when the choice already exists.
    parent_choice_id: Mapped[str | None] = mapped_column(
        ForeignKey("choices.id", ondelete="SET NULL", use_alter=True, name="fk_questions_parent_choice_id"), nullable=True
    )
    list_table_id: Mapped[str | None] = mapped_column(
        ForeignKey("list_tables.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slug: Mapped[str | None] = mapped_column(db.String(255), nullable=True)


class Choice(MigratedMixin, BaseModel):
    __tablename__ = "choices"

    content: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    import_map: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    order_number: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    parent_question_id: Mapped[str | None] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
