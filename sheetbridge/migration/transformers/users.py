from __future__ import annotations

from typing import Any, Mapping

from email_validator import EmailNotValidError, validate_email

from sheetbridge.migration.errors import RecordValidationError

from .base import AUDIT_FIELDS, SLUG_FIELD, EntityTransformer, Field, Reference, get_value, source_id_of, to_text

EMAIL_PATH = ("authentication", "email", "email")


class UserTransformer(EntityTransformer):
    """Users keep their legacy profile data; no login account is created."""

    source_type = "user"
    entity_type = "user"
    table = "users"
    fields = (
        Field("first_name", "First name"),
        Field("last_name", "Last name"),
        Field("full_name", "Full Name"),
        Field("phone_text", "Phone text"),
        Field("phone_number", "Phone"),
        Field("profile_pic_url", "profile_pic"),
        Field("user_type", "user-type"),
        Field("language", "Language"),
        Field("is_company_main_contact", "is comp get email notifications", "bool", default=False),
        Field("is_company_point_person", "is comp point person", "bool", default=False),
        Field("is_supplier_pointguard", "is sup point person", "bool", default=False),
        Field("is_sup_get_email_notifications", "is sup get email notifications", "bool", default=False),
        Field("is_sup_cert_manager", "is sup cert manager", "bool", default=False),
        Field("is_sup_cert_tmplt_creator", "is sup cert tmplt creator", "bool", default=False),
        Field("is_sup_reviewer", "is sup cert reviewer", "bool", default=False),
        Field("is_sup_view_question_menu", "is sup view question menu", "bool", default=False),
        Field("invitation_sent", "Invitation sent", "bool", default=False),
        Field("profile_done", "Profile done", "bool", default=False),
        Field("is_prospect", "Is Prospect", "bool", default=False),
        Field("is_in_payed_or_established_plan", "Is in a payed or established plan", "bool", default=False),
        Field("prospect_company_text", "Prospect Company Text"),
        Field("plan_first_started", "Plan first started", "date"),
        Field("comments", "Comments"),
        Field("email_count", "Email Count", "int", default=0),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (Reference("company_id", "Company", "company", "companies"),)

    def validate(self, record: Mapping[str, Any]) -> None:
        email = to_text(get_value(record, EMAIL_PATH))
        if email is None:
            raise RecordValidationError(source_id_of(record), "user has no email")
        try:
            validate_email(email.strip(), check_deliverability=False)
        except EmailNotValidError as exc:
            raise RecordValidationError(source_id_of(record), f"invalid email: {exc}") from exc

    def derive(self, record: Mapping[str, Any], row: dict[str, Any]) -> None:
        validated = validate_email(to_text(get_value(record, EMAIL_PATH)).strip(), check_deliverability=False)
        row["email"] = validated.normalized
