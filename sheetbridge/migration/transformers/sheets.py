"""Sheets, requests and sheet statuses."""

from __future__ import annotations

from typing import Any, Mapping

from .base import AUDIT_FIELDS, SLUG_FIELD, EntityTransformer, Field, Junction, Reference, created_by

FATHER_SHEET_KEY = "Version Father Sheet"
PREVIOUS_SHEET_KEY = "Version Prev. Sheet"


class SheetTransformer(EntityTransformer):
    """
    Sheets are inserted without lineage pointers. ``Version Father Sheet`` and
    ``Version Prev. Sheet`` may name sheets that are not migrated yet, so the
    lineage pass links them once every sheet row exists.
    """

    source_type = "sheet"
    entity_type = "sheet"
    table = "sheets"
    fields = (
        Field("name", "Name", default="Unnamed Sheet"),
        Field("name_lower_case", "Name Lower Case"),
        Field("requestor_name", "Requestor Name"),
        Field("requestor_email", "Requestor Email"),
        Field("new_status", "New Status"),
        Field("new_name", "New Name", "bool", default=False),
        Field("unread_comment", "Unread Comment", "bool", default=False),
        Field("mark_as_archived", "Mark as archived supplier", "bool", default=False),
        Field("mark_as_test_sheet", "Mark as a test sheet", "bool", default=False),
        Field("test_being_deleted", "Test Being Deleted", "bool", default=False),
        Field("version", "Version", "int"),
        Field("version_lock", "Version Lock", "bool", default=False),
        Field("version_description", "Version Description"),
        Field("version_close_date", "Version Close Date", "date"),
        Field("version_count_expected", "Version Count Expected gets zeroed on edit visit", "int"),
        Field("version_count_original", "Version Count Original", "int"),
        Field("version_count_processed", "Version Count Processed", "int"),
        Field("imported_file_url", "Imported file"),
        Field("supplier_assignment_log", "Supplier Assignment Log"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("company_id", "Company", "company", "companies"),
        Reference("assigned_to_company_id", "Sup Assigned to", "company", "companies"),
        Reference("original_requestor_assoc_id", "Original Requestor assoc", "company", "companies"),
        Reference("version_closed_by", "Version Closed by", "user", "users"),
        created_by(),
    )
    junctions = (
        # The trailing space is part of the legacy field label.
        Junction("sheet_shareable_companies", "sheet_id", "company_id", "Shareable with ", "company"),
        Junction("sheet_tags", "sheet_id", "tag_id", "tags", "tag"),
        Junction("sheet_questions", "sheet_id", "question_id", "Questions", "question", ordered=True),
        Junction("sheet_supplier_users_assigned", "sheet_id", "user_id", "Supplier Users Assigned", "user"),
    )

    def derive(self, record: Mapping[str, Any], row: dict[str, Any]) -> None:
        if row.get("name_lower_case") is None:
            row["name_lower_case"] = row["name"].lower()


class RequestTransformer(EntityTransformer):
    source_type = "request"
    entity_type = "request"
    table = "requests"
    fields = (
        Field("product_name", "Product name"),
        Field("processed", "Processed", "bool", default=False),
        Field("manufacturer_marked_as_provided", "Manufacturer Marked as Provided", "bool", default=False),
        Field("show_as_removed", "show as removed", "bool", default=False),
        Field("comment_requestor", "Comment Requestor"),
        Field("comment_supplier", "Comment Supplier"),
        Field("creator_email", "Creator Email"),
        Field("first_shared_date", "1 First Shared", "date"),
        Field("last_share_date", "1 Last share", "date"),
        Field("days_to_first_share", "1 Days to First share", "float"),
        Field("days_to_last_share", "1 Days to last share", "float"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("requestor_id", "Requesting company", "company", "companies"),
        Reference("requesting_from_id", "Supplier ", "company", "companies"),
        Reference("sheet_id", "Sheet", "sheet", "sheets"),
        created_by(),
    )
    junctions = (Junction("request_tags", "request_id", "tag_id", "tags", "tag"),)


class SheetStatusTransformer(EntityTransformer):
    source_type = "sheetstatuses"
    entity_type = "sheet_status"
    table = "sheet_statuses"
    fields = (
        Field("sheet_name", "Sheet Name"),
        Field("status", "Status"),
        Field("completed", "Completed", "bool", default=False),
        Field("complete_text", "Complete Text"),
        Field("observations", "Observations"),
        Field("version", "Version", "int"),
        Field("reminders_count", "Reminders count", "int", default=0),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("sheet_id", "Sheet", "sheet", "sheets"),
        Reference("company_id", "Company", "company", "companies"),
        Reference("supplier_id", "Supplier", "company", "companies"),
        Reference("father_of_sheet_id", "Father of Sheet", "sheet", "sheets"),
        created_by(),
    )
