from __future__ import annotations

import pytest

from sheetbridge.migration.errors import MappingConflictError
from sheetbridge.migration.identity import ChoiceContentIndex, IdentityCache, SqlMappingStore
from sheetbridge.models import MigrationIdMap, db


def test_record_then_resolve(cache):
    cache.record("bubble-1", "target-1", "company")

    assert cache.resolve("bubble-1", "company") == "target-1"
    assert cache.is_already_migrated("bubble-1", "company")
    assert cache.resolve("bubble-1", "user") is None
    assert cache.resolve(None, "company") is None
    assert cache.resolve("", "company") is None


def test_preloaded_miss_is_authoritative(cache, mapping_store):
    mapping_store.seed("company", [("c1", "t1"), ("c2", "t2")])

    assert cache.preload("company") == 2
    assert cache.is_preloaded("company")
    assert cache.resolve("c1", "company") == "t1"
    assert cache.resolve("unknown", "company") is None
    assert mapping_store.lookup_calls == 0


def test_non_preloaded_type_falls_back_to_store_once(cache, mapping_store):
    mapping_store.seed("sheet", [("s1", "t1")])

    assert cache.resolve("s1", "sheet") == "t1"
    assert cache.resolve("s1", "sheet") == "t1"
    assert mapping_store.lookup_calls == 1


def test_resolve_many_preserves_order_and_gaps(cache, mapping_store):
    mapping_store.seed("question", [("q1", "t1"), ("q2", "t2")])

    resolved = cache.resolve_many(["q2", None, "missing", "q1", "q2"], "question")

    assert resolved == ["t2", None, None, "t1", "t2"]
    assert mapping_store.lookup_calls == 1


def test_identical_record_is_ignored(cache, mapping_store):
    assert cache.record_batch([("s1", "t1")], "sheet") == 1
    assert cache.record_batch([("s1", "t1")], "sheet") == 0
    assert len(mapping_store.saved) == 1


def test_remapping_a_source_id_is_rejected(cache):
    cache.record("s1", "t1", "sheet")

    with pytest.raises(MappingConflictError):
        cache.record("s1", "t2", "sheet")
    with pytest.raises(MappingConflictError):
        cache.record("s2", "t1", "sheet")
    assert cache.resolve("s2", "sheet") is None


def test_conflicts_inside_one_batch_write_nothing(cache, mapping_store):
    with pytest.raises(MappingConflictError):
        cache.record_batch([("s1", "t1"), ("s1", "t2")], "sheet")
    with pytest.raises(MappingConflictError):
        cache.record_batch([("s1", "t1"), ("s2", "t1")], "sheet")

    assert mapping_store.saved == []


def test_conflict_with_persisted_mapping_is_detected(cache, mapping_store):
    mapping_store.seed("user", [("u1", "t1")])

    with pytest.raises(MappingConflictError, match="already mapped"):
        cache.record("u1", "t9", "user")


def test_discard_forgets_rolled_back_mappings(cache):
    cache.preload("tag")
    cache.record_batch([("a", "t-a"), ("b", "t-b")], "tag")

    cache.discard(["a"], "tag")

    assert cache.resolve("a", "tag") is None
    assert cache.resolve("b", "tag") == "t-b"
    assert cache.stats() == {"tag": 1}


def test_clear_keeps_persisted_mappings(cache, mapping_store):
    cache.record("s1", "t1", "sheet")
    cache.clear()

    assert not cache.is_preloaded("sheet")
    assert cache.resolve("s1", "sheet") == "t1"


def test_sql_mapping_store_round_trip(app):
    first = IdentityCache(SqlMappingStore(db.session))
    first.record_batch([("c1", "t1"), ("c2", "t2")], "company")
    db.session.commit()

    second = IdentityCache(SqlMappingStore(db.session))
    assert second.preload("company") == 2
    assert second.resolve("c2", "company") == "t2"
    assert db.session.query(MigrationIdMap).filter_by(entity_type="company").count() == 2

    with pytest.raises(MappingConflictError):
        second.record("c1", "other", "company")


def test_choice_content_index_matches_case_insensitively():
    index = ChoiceContentIndex(
        [
            {"id": "choice-yes", "parent_question_id": "q1", "content": "Yes", "import_map": "Y"},
            {"id": "choice-no", "parent_question_id": "q1", "content": "No", "import_map": None},
            {"id": "orphan", "parent_question_id": None, "content": "Maybe", "import_map": None},
        ]
    )

    assert index.lookup("q1", "  yes ") == "choice-yes"
    assert index.lookup("q1", "y") == "choice-yes"
    assert index.lookup("q2", "Yes") is None
    assert index.lookup("q1", "Maybe") is None
    assert len(index) == 3
