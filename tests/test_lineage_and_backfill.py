from __future__ import annotations

import pytest

from sheetbridge.migration.pipeline import LineageGraph, PipelineSettings, backfill_junctions, link_sheet_lineage
from sheetbridge.migration.store import eq
from sheetbridge.migration.transformers import SectionTransformer


def seed_sheets(store, cache, *source_ids):
    store.insert(
        "sheets",
        [{"id": f"t-{source_id}", "name": source_id, "source_id": source_id} for source_id in source_ids],
    )
    store.commit()
    cache.record_batch([(source_id, f"t-{source_id}") for source_id in source_ids], "sheet")


def lineage_of(store, sheet_id):
    return store.select("sheets", ["father_sheet_id", "prev_sheet_id"], [eq("id", sheet_id)])[0]


def test_links_father_and_previous_sheets(store, cache):
    seed_sheets(store, cache, "s1", "s2", "s3")
    records = [
        {"_id": "s1"},
        {"_id": "s2", "Version Father Sheet": "s1"},
        {"_id": "s3", "Version Father Sheet": "s1", "Version Prev. Sheet": "s2"},
    ]

    stats = link_sheet_lineage(records, store=store, cache=cache)

    assert stats.to_dict() == {
        "examined": 3,
        "linked": 2,
        "unchanged": 0,
        "no_lineage": 1,
        "unresolved": 0,
        "cycles_rejected": 0,
    }
    assert lineage_of(store, "t-s2") == {"father_sheet_id": "t-s1", "prev_sheet_id": None}
    assert lineage_of(store, "t-s3") == {"father_sheet_id": "t-s1", "prev_sheet_id": "t-s2"}


def test_rerun_leaves_links_unchanged(store, cache):
    seed_sheets(store, cache, "s1", "s2")
    records = [{"_id": "s2", "Version Father Sheet": "s1"}]
    link_sheet_lineage(records, store=store, cache=cache)

    stats = link_sheet_lineage(records, store=store, cache=cache)

    assert stats.linked == 0
    assert stats.unchanged == 1
    assert stats.to_stage_stats().to_dict() == {"migrated": 0, "skipped": 1, "failed": 0}


def test_self_links_are_rejected(store, cache):
    seed_sheets(store, cache, "s1")

    stats = link_sheet_lineage([{"_id": "s1", "Version Prev. Sheet": "s1"}], store=store, cache=cache)

    assert stats.cycles_rejected == 1
    assert lineage_of(store, "t-s1") == {"father_sheet_id": None, "prev_sheet_id": None}
    assert stats.to_stage_stats().failed == 1


def test_links_that_close_a_cycle_are_rejected(store, cache):
    seed_sheets(store, cache, "s1", "s2", "s3")
    store.update("sheets", {"father_sheet_id": "t-s1"}, [eq("id", "t-s2")])
    store.update("sheets", {"prev_sheet_id": "t-s2"}, [eq("id", "t-s3")])
    store.commit()

    stats = link_sheet_lineage([{"_id": "s1", "Version Father Sheet": "s3"}], store=store, cache=cache)

    assert stats.cycles_rejected == 1
    assert stats.linked == 0
    assert lineage_of(store, "t-s1")["father_sheet_id"] is None


def test_unresolved_pointers_are_counted(store, cache):
    seed_sheets(store, cache, "s1")
    records = [
        {"_id": "s1", "Version Father Sheet": "never-migrated"},
        {"_id": "not-migrated", "Version Father Sheet": "s1"},
    ]

    stats = link_sheet_lineage(records, store=store, cache=cache)

    assert stats.unresolved == 2
    assert stats.unchanged == 1
    assert stats.linked == 0


def test_dry_run_does_not_update(store, cache):
    seed_sheets(store, cache, "s1", "s2")

    stats = link_sheet_lineage([{"_id": "s2", "Version Father Sheet": "s1"}], store=store, cache=cache, dry_run=True)

    assert stats.linked == 1
    assert lineage_of(store, "t-s2")["father_sheet_id"] is None


def test_lineage_graph_cycle_detection():
    graph = LineageGraph()
    graph.set("a", "father_sheet_id", "b")
    graph.set("b", "father_sheet_id", "c")

    assert graph.would_cycle("c", "a")
    assert graph.would_cycle("a", "a")
    assert not graph.would_cycle("a", "c")

    graph.set("b", "father_sheet_id", None)
    assert not graph.would_cycle("c", "a")


def seed_sections_and_questions(store, cache):
    store.insert("sections", [{"id": "t-sec1", "name": "Safety"}, {"id": "t-sec3", "name": "Storage"}])
    store.insert("questions", [{"id": "t-q1", "name": "Flash point"}, {"id": "t-q2", "name": "Boiling point"}])
    store.commit()
    cache.record_batch([("sec1", "t-sec1"), ("sec3", "t-sec3")], "section")
    cache.record_batch([("q1", "t-q1"), ("q2", "t-q2")], "question")


def test_backfill_links_owned_rows_once(store, cache):
    seed_sections_and_questions(store, cache)
    records = [
        {"_id": "sec1", "Questions": ["q1", "q2"]},
        {"_id": "sec2", "Questions": ["q1"]},
        {"_id": "sec3", "Questions": ["q-unknown"]},
    ]

    stats = backfill_junctions(
        records, store=store, cache=cache, transformer=SectionTransformer(), tables=("section_questions",)
    )
    again = backfill_junctions(
        records, store=store, cache=cache, transformer=SectionTransformer(), tables=("section_questions",)
    )

    assert stats.to_dict() == {"migrated": 1, "skipped": 2, "failed": 0}
    assert again.to_dict() == stats.to_dict()
    rows = store.select("section_questions", ["section_id", "question_id", "order_number"], order_by=("order_number",))
    assert rows == [
        {"section_id": "t-sec1", "question_id": "t-q1", "order_number": 0},
        {"section_id": "t-sec1", "question_id": "t-q2", "order_number": 1},
    ]


def test_backfill_dry_run_writes_nothing(store, cache):
    seed_sections_and_questions(store, cache)

    stats = backfill_junctions(
        [{"_id": "sec1", "Questions": ["q1"]}],
        store=store,
        cache=cache,
        transformer=SectionTransformer(),
        tables=("section_questions",),
        settings=PipelineSettings(dry_run=True),
    )

    assert stats.migrated == 1
    assert store.count("section_questions") == 0


def test_backfill_rejects_unknown_junction_tables(store, cache):
    with pytest.raises(ValueError, match="no junctions named"):
        backfill_junctions([], store=store, cache=cache, transformer=SectionTransformer(), tables=("sheet_tags",))
