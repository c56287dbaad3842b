"""Associations, stacks and companies."""

from __future__ import annotations

from typing import Any, Mapping

from .base import AUDIT_FIELDS, SLUG_FIELD, EntityTransformer, Field, Junction, Reference, created_by


class AssociationTransformer(EntityTransformer):
    source_type = "associations"
    entity_type = "association"
    table = "associations"
    fields = (
        Field("name", "Name", default="Unknown Association"),
        Field("active", "Active", "bool", default=True),
        *AUDIT_FIELDS,
    )
    references = (created_by(),)
    # Companies are migrated after associations; the association_companies
    # backfill stage fills this junction once they exist.
    junctions = (
        Junction("association_companies", "association_id", "company_id", "Companies", "company"),
    )


class StackTransformer(EntityTransformer):
    source_type = "stack"
    entity_type = "stack"
    table = "stacks"
    fields = (
        Field("name", "Name", default="Unknown Stack"),
        Field("is_bundle", "a_Is Bundle", "bool", default=False),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )
    references = (
        Reference("association_id", "a_Association", "association", "associations"),
        created_by(),
    )


class CompanyTransformer(EntityTransformer):
    source_type = "company"
    entity_type = "company"
    table = "companies"
    fields = (
        Field("name", "Name", default="Unknown Company"),
        Field("email_suffix", "EmailSuffix"),
        Field("location_text", "location text"),
        Field("logo_url", "Logo"),
        Field("active", "Active", "bool", default=True),
        Field("show_as_supplier", "Show as supplier", "bool", default=False),
        Field("hide_hq_import", "Hide HQimport", "bool", default=False),
        Field("is_zapier", "isZapier", "bool", default=False),
        Field("patch_status_applied", "Patch Status Applied", "bool", default=False),
        Field("plan_started_at", "Plan Started", "date"),
        Field("subscription_anniversary_date", "Subscription Anniversary Date", "date"),
        Field("subscription_trial_ends", "Subscription Trial Ends", "date"),
        Field("subscription_cancel_at_trial", "Subscription Cancel at trial", "bool", default=False),
        Field("subscription_canceled", "Subscription Canceled during pay", "bool", default=False),
        Field("subscription_expired", "Subscription Expired", "bool", default=False),
        Field("subscription_sheets_allowed", "Subscription sheets allowed", "int"),
        Field("premium_features_requested", "Premium Features Requested"),
        Field("list_emails_prefix", "List Emails Prefix"),
        SLUG_FIELD,
        *AUDIT_FIELDS,
    )

    def derive(self, record: Mapping[str, Any], row: dict[str, Any]) -> None:
        row["name_lower_case"] = row["name"].lower()
