from __future__ import annotations

from typing import Any, Mapping

from sheetbridge.migration.identity import ChoiceContentIndex

from .base import (
    AUDIT_FIELDS,
    SLUG_FIELD,
    EntityTransformer,
    Field,
    Junction,
    Reference,
    created_by,
    to_text_list,
)

TEXT_CHOICES_KEY = "List of Text Choices"


class AnswerTransformer(EntityTransformer):
    """
    Answers are the largest entity and the one most exposed to stale mappings,
    so every resolved reference is checked against its table before use.

    When ``Choice`` does not resolve and the answer carries exactly one text
    choice, the choice is matched by content under the originating question.
    """

    source_type = "answer"
    entity_type = "answer"
    table = "answers"
    verify_references = True
    fields = (
        Field("answer_name", "Answer_name"),
        Field("answer_id_number", "Answer_ID", "int"),
        Field("order_number", "order", "float"),
        Field("text_value", "text"),
        Field("text_area_value", "text-area"),
        Field("number_value", "Number", "float"),
        Field("boolean_value", "Boolean", "bool"),
        Field("date_value", "Date", "date"),
        Field("file_url", "File"),
        Field("support_file_url", "Support File"),
        Field("clarification", "Clarification"),
        Field("custom_comment_text", "Custom Comment Text"),
        Field("custom_row_text", "Custom Inclusion Text"),
        Field("import_double_check", "Import Double Check"),
        Field("version_in_sheet", "Version in sheet"),
        Field("version_copied", "Version Copied", "bool", default=False),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("sheet_id", "Sheet", "sheet", "sheets", required=True),
        Reference("originating_question_id", "Originating Question", "question", "questions", required=True),
        Reference("company_id", "Company", "company", "companies"),
        Reference("supplier_id", "Supplier", "company", "companies"),
        Reference("customer_id", "customer", "user", "users"),
        Reference("parent_question_id", "Parent Question", "question", "questions"),
        Reference("choice_id", "Choice", "choice", "choices"),
        Reference("list_table_column_id", "List Table Column", "list_table_column", "list_table_columns"),
        Reference("list_table_row_id", "List Table Row", "list_table_row", "list_table_rows"),
        Reference("stack_id", "Stack", "stack", "stacks"),
        Reference("parent_subsection_id", "Parent Subsection", "subsection", "subsections"),
        created_by(),
    )
    junctions = (
        Junction("answer_shareable_companies", "answer_id", "company_id", "Shareable with", "company"),
        Junction("answer_text_choices", "answer_id", "text_choice", TEXT_CHOICES_KEY, ordered=True),
    )

    def __init__(self, *, choice_index: ChoiceContentIndex | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.choice_index = choice_index

    def begin_chunk(self, store) -> None:
        if self.choice_index is None:
            self.choice_index = ChoiceContentIndex.load(store)
            self.logger.info("Loaded choice content index", extra={"entry_count": len(self.choice_index)})

    def derive(self, record: Mapping[str, Any], row: dict[str, Any]) -> None:
        if row.get("choice_id") or self.choice_index is None:
            return
        text_choices = to_text_list(record.get(TEXT_CHOICES_KEY))
        if len(text_choices) != 1:
            return
        choice_id = self.choice_index.lookup(row.get("originating_question_id"), text_choices[0])
        if choice_id is not None:
            row["choice_id"] = choice_id
