# sheetbridge/models/__init__.py
"""
Database models package
"""

from .answer import Answer, answer_shareable_companies, answer_text_choices
from .base import BaseModel, MigratedMixin, db, new_id
from .migration import MigrationIdMap, MigrationRun, MigrationRunStatus
from .organization import Association, Company, Stack, association_companies
from .questionnaire import (
    Choice,
    ListTable,
    ListTableColumn,
    ListTableRow,
    Question,
    Section,
    Subsection,
    Tag,
    question_companies,
    question_tags,
    section_questions,
    tag_hidden_companies,
)
from .sheet import (
    Request,
    Sheet,
    SheetChemical,
    SheetStatus,
    request_tags,
    sheet_questions,
    sheet_shareable_companies,
    sheet_supplier_users_assigned,
    sheet_tags,
)
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "MigratedMixin",
    "new_id",
    "MigrationIdMap",
    "MigrationRun",
    "MigrationRunStatus",
    "Association",
    "Stack",
    "Company",
    "User",
    "ListTable",
    "ListTableColumn",
    "ListTableRow",
    "Section",
    "Subsection",
    "Tag",
    "Question",
    "Choice",
    "Sheet",
    "SheetStatus",
    "SheetChemical",
    "Request",
    "Answer",
    # Junction tables
    "association_companies",
    "tag_hidden_companies",
    "question_tags",
    "question_companies",
    "section_questions",
    "sheet_shareable_companies",
    "sheet_tags",
    "sheet_questions",
    "sheet_supplier_users_assigned",
    "request_tags",
    "answer_shareable_companies",
    "answer_text_choices",
]
