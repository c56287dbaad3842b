"""List tables, sections, subsections, tags, questions and choices."""

from __future__ import annotations

from .base import AUDIT_FIELDS, SLUG_FIELD, EntityTransformer, Field, Junction, Reference, created_by


class ListTableTransformer(EntityTransformer):
    source_type = "listtable"
    entity_type = "list_table"
    table = "list_tables"
    fields = (Field("name", "Name"), *AUDIT_FIELDS)
    references = (created_by(),)


class ListTableColumnTransformer(EntityTransformer):
    source_type = "listtablecolumn"
    entity_type = "list_table_column"
    table = "list_table_columns"
    fields = (
        Field("name", "Name", default="Unknown Column"),
        Field("response_type", "Response type"),
        Field("order_number", "Order", "int"),
        *AUDIT_FIELDS,
    )
    references = (
        Reference("parent_table_id", "Parent Table", "list_table", "list_tables"),
        created_by(),
    )


class ListTableRowTransformer(EntityTransformer):
    source_type = "listtablerow"
    entity_type = "list_table_row"
    table = "list_table_rows"
    fields = (Field("row_id", "ID", "int"), *AUDIT_FIELDS)
    references = (Reference("table_id", "Table", "list_table", "list_tables"),)


class SectionTransformer(EntityTransformer):
    source_type = "section"
    entity_type = "section"
    table = "sections"
    fields = (
        Field("name", "Name", default="Unknown Section"),
        Field("order_number", "Order", "int"),
        Field("help", "Help"),
        Field("questionnaire_text", "Questioniare Text"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("stack_id", "Stack", "stack", "stacks"),
        Reference("association_id", "Association", "association", "associations"),
        created_by(),
    )
    # Filled by the section_questions backfill stage once questions exist.
    junctions = (
        Junction("section_questions", "section_id", "question_id", "Questions", "question", ordered=True),
    )


class SubsectionTransformer(EntityTransformer):
    source_type = "subsection"
    entity_type = "subsection"
    table = "subsections"
    fields = (
        Field("name", "Name", default="Unknown Subsection"),
        Field("show_title_and_group", "Show Tittle and Group", "bool", default=True),
        Field("order_number", "Order", "int"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (Reference("section_id", "Section", "section", "sections"),)


class TagTransformer(EntityTransformer):
    source_type = "tag"
    entity_type = "tag"
    table = "tags"
    fields = (
        Field("name", "Name", default="Unknown Tag"),
        Field("description", "Description"),
        Field("group_number", "Group", "int"),
        Field("custom_active", "Custom ACTIVE (N/U)", "bool", default=False),
        Field("custom_any_can_see", "Custom Any Can View", "bool", default=False),
        Field(
            "custom_only_if_requested_or_shared",
            "Custom (N/U) Only If ReqORShared(not used)",
            "bool",
            default=False,
        ),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("company_id", "Company (will be used new architecture Arpil 2022)", "company", "companies"),
        Reference("custom_company_id", "Custom Company", "company", "companies"),
        created_by(),
    )
    junctions = (
        Junction("tag_hidden_companies", "tag_id", "company_id", "UX Not Show To These Companies", "company"),
    )


class QuestionTransformer(EntityTransformer):
    source_type = "question"
    entity_type = "question"
    table = "questions"
    fields = (
        Field("name", "Name"),
        Field("content", "Content"),
        Field("question_description", "Question Description"),
        Field("clarification", "Clarification"),
        Field("clarification_yes_no", "Clarification yes/no", "bool", default=False),
        Field("static_text", "Static"),
        Field("a_q_help", "A Q Help"),
        Field("question_type", "Type"),
        Field("question_id_number", "ID", "int"),
        Field("order_number", "Order", "float"),
        Field("required", "Required", "bool", default=False),
        Field("optional_question", "Answer Optional", "bool", default=False),
        Field("dependent_no_show", "Dependent (no show)", "bool", default=False),
        Field("lock", "Lock", "bool", default=False),
        Field("highlight", "HighLite", "bool", default=False),
        Field("support_file_requested", "Support File Requested", "bool", default=False),
        Field("support_file_reason", "Support file Reason"),
        Field("section_name_sort", "SECTION NAME SORT"),
        Field("section_sort_number", "SECTION SORT NUMBER", "float"),
        Field("subsection_name_sort", "SUBSECTION NAME SORT"),
        Field("subsection_sort_number", "SUBSECTION SORT NUMBER", "float"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("company_id", "Company", "company", "companies"),
        Reference("parent_section_id", "Parent Section", "section", "sections"),
        Reference("parent_subsection_id", "Parent Subsection", "subsection", "subsections"),
        # Choices come later; only set when the choice was migrated by an earlier run.
        Reference("parent_choice_id", "Parent Choice", "choice", "choices"),
        Reference("list_table_id", "List Table", "list_table", "list_tables"),
        created_by(),
    )
    junctions = (
        Junction("question_tags", "question_id", "tag_id", "Tags", "tag"),
        Junction("question_companies", "question_id", "company_id", "Company list", "company"),
    )


class ChoiceTransformer(EntityTransformer):
    source_type = "choice"
    entity_type = "choice"
    table = "choices"
    fields = (
        Field("content", "Content"),
        Field("import_map", "Import Map"),
        Field("order_number", "Order", "float"),
        *AUDIT_FIELDS,
    )
    references = (
        Reference("parent_question_id", "Parent Question", "question", "questions"),
        created_by(),
    )
