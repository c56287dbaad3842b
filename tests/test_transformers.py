from __future__ import annotations

from datetime import datetime, timezone

import pytest

from sheetbridge.migration.identity import ChoiceContentIndex
from sheetbridge.migration.transformers import (
    AnswerTransformer,
    CompanyTransformer,
    SheetTransformer,
    UserTransformer,
    get_transformer,
    source_types,
)
from sheetbridge.migration.transformers.base import (
    coerce,
    get_value,
    to_bool,
    to_datetime,
    to_int,
    to_text,
    to_text_list,
)


def test_coercion_helpers_fall_back_instead_of_raising():
    assert to_bool("Yes") is True
    assert to_bool("off") is False
    assert to_bool("maybe") is None
    assert to_bool(2) is None
    assert to_int("3.7") == 3
    assert to_int("n/a") is None
    assert to_int(True) is None
    assert to_text("   ") is None
    assert to_text(12) == "12"
    assert to_text({"nested": 1}) is None
    assert to_text_list("single") == ["single"]
    assert to_text_list(["a", None, " ", "b"]) == ["a", "b"]
    assert coerce("", "int", 0) == 0
    assert coerce([], "text_list", None) is None


def test_dates_accept_iso_and_epoch_milliseconds():
    assert to_datetime("2024-01-02T03:04:05.000Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert to_datetime(1704164645000) == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert to_datetime("2024-01-02T03:04:05").tzinfo == timezone.utc
    assert to_datetime("yesterday") is None


def test_get_value_reads_nested_paths():
    record = {"authentication": {"email": {"email": "ops@acme-industries.com"}}, "Name": "Acme"}

    assert get_value(record, ("authentication", "email", "email")) == "ops@acme-industries.com"
    assert get_value(record, ("authentication", "password", "hash")) is None
    assert get_value(record, ("Name", "first")) is None
    assert get_value(record, "Name") == "Acme"


def test_company_defaults_and_derived_columns():
    transformer = CompanyTransformer()

    row = transformer.transform(
        {"_id": "c1", "Name": "ACME Corp", "Subscription sheets allowed": "25", "Created Date": "2023-05-01T00:00:00Z"},
        {},
    )
    fallback = transformer.transform({"_id": "c2"}, {})

    assert row["source_id"] == "c1"
    assert row["name_lower_case"] == "acme corp"
    assert row["subscription_sheets_allowed"] == 25
    assert row["active"] is True
    assert row["created_at"] == datetime(2023, 5, 1, tzinfo=timezone.utc)
    assert fallback["name"] == "Unknown Company"


def test_user_email_is_validated_and_normalized(cache):
    cache.record("comp-1", "company-target", "company")
    records = [
        {"_id": "u1", "authentication": {"email": {"email": " Jane.Doe@Acme-Industries.COM "}}, "Company": "comp-1"},
        {"_id": "u2", "First name": "No Email"},
        {"_id": "u3", "authentication": {"email": {"email": "not-an-email"}}},
        {"First name": "No id"},
    ]

    outcome = UserTransformer().prepare_chunk(records, cache, None)

    assert [prepared.source_id for prepared in outcome.prepared] == ["u1"]
    row = outcome.prepared[0].row
    assert row["email"] == "Jane.Doe@acme-industries.com"
    assert row["company_id"] == "company-target"
    assert row["id"]
    reasons = {failure.source_id: failure.reason for failure in outcome.failures}
    assert reasons["u2"] == "user has no email"
    assert reasons["u3"].startswith("invalid email")
    assert reasons[None] == "record has no _id"


def test_sheet_junctions_resolve_dedupe_and_keep_order(cache):
    cache.record_batch([("tag-1", "t1"), ("tag-2", "t2")], "tag")
    cache.record_batch([("q-1", "tq1"), ("q-2", "tq2")], "question")
    record = {
        "_id": "sheet-1",
        "Name": "Safety Data",
        "tags": ["tag-1", "tag-1", "tag-missing", "tag-2"],
        "Questions": ["q-1", "q-unknown", "q-2"],
    }

    outcome = SheetTransformer().prepare_chunk([record], cache, None)

    prepared = outcome.prepared[0]
    assert prepared.row["name_lower_case"] == "safety data"
    assert "father_sheet_id" not in prepared.row
    assert prepared.junctions["sheet_tags"] == [
        {"sheet_id": prepared.target_id, "tag_id": "t1"},
        {"sheet_id": prepared.target_id, "tag_id": "t2"},
    ]
    assert prepared.junctions["sheet_questions"] == [
        {"sheet_id": prepared.target_id, "question_id": "tq1", "order_number": 0},
        {"sheet_id": prepared.target_id, "question_id": "tq2", "order_number": 2},
    ]
    assert "sheet_shareable_companies" not in prepared.junctions


def _seed_answer_targets(store, cache):
    store.insert("sheets", [{"id": "sheet-target", "name": "SDS"}])
    store.insert("questions", [{"id": "question-target", "name": "Flash point"}])
    store.commit()
    cache.record("sheet-1", "sheet-target", "sheet")
    cache.record("question-1", "question-target", "question")


def test_answer_requires_sheet_and_question(store, cache):
    _seed_answer_targets(store, cache)
    transformer = AnswerTransformer(choice_index=ChoiceContentIndex())

    outcome = transformer.prepare_chunk(
        [
            {"_id": "a1", "Sheet": "sheet-1", "Originating Question": "question-1", "Number": "4.5"},
            {"_id": "a2", "Sheet": "sheet-unknown", "Originating Question": "question-1"},
            {"_id": "a3", "Sheet": "sheet-1"},
        ],
        cache,
        store,
    )

    assert [prepared.source_id for prepared in outcome.prepared] == ["a1"]
    assert outcome.prepared[0].row["number_value"] == 4.5
    assert outcome.prepared[0].row["sheet_id"] == "sheet-target"
    reasons = {failure.source_id: failure.reason for failure in outcome.failures}
    assert "'Sheet'" in reasons["a2"]
    assert "'Originating Question'" in reasons["a3"]


def test_answer_drops_mappings_whose_rows_are_gone(store, cache):
    _seed_answer_targets(store, cache)
    cache.record("sheet-2", "sheet-deleted", "sheet")

    outcome = AnswerTransformer(choice_index=ChoiceContentIndex()).prepare_chunk(
        [{"_id": "a1", "Sheet": "sheet-2", "Originating Question": "question-1"}],
        cache,
        store,
    )

    assert outcome.prepared == []
    assert outcome.failures[0].source_id == "a1"


def test_answer_matches_choice_by_content(store, cache):
    _seed_answer_targets(store, cache)
    index = ChoiceContentIndex(
        [{"id": "choice-yes", "parent_question_id": "question-target", "content": "Yes", "import_map": None}]
    )
    transformer = AnswerTransformer(choice_index=index)

    outcome = transformer.prepare_chunk(
        [
            {
                "_id": "a1",
                "Sheet": "sheet-1",
                "Originating Question": "question-1",
                "List of Text Choices": ["yes"],
            },
            {
                "_id": "a2",
                "Sheet": "sheet-1",
                "Originating Question": "question-1",
                "List of Text Choices": ["yes", "no"],
            },
        ],
        cache,
        store,
    )

    first, second = outcome.prepared
    assert first.row["choice_id"] == "choice-yes"
    assert first.junctions["answer_text_choices"] == [
        {"answer_id": first.target_id, "text_choice": "yes", "order_number": 0}
    ]
    assert "choice_id" not in second.row
    assert [entry["order_number"] for entry in second.junctions["answer_text_choices"]] == [0, 1]


def test_answer_loads_choice_index_from_store(store, cache):
    _seed_answer_targets(store, cache)
    store.insert("choices", [{"id": "choice-no", "parent_question_id": "question-target", "content": "No"}])
    store.commit()
    transformer = AnswerTransformer()

    outcome = transformer.prepare_chunk(
        [{"_id": "a1", "Sheet": "sheet-1", "Originating Question": "question-1", "List of Text Choices": "NO"}],
        cache,
        store,
    )

    assert outcome.prepared[0].row["choice_id"] == "choice-no"


def test_registry_lookup():
    assert isinstance(get_transformer("sheet"), SheetTransformer)
    assert source_types()["sheet_status"] == "sheetstatuses"
    with pytest.raises(ValueError):
        get_transformer("invoice")
