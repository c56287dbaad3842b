# conftest.py

import os

import pytest
from flask import Flask

# Set testing environment BEFORE importing config so TestingConfig values are used
os.environ["FLASK_ENV"] = "testing"

from config import TestingConfig  # noqa: E402
from sheetbridge.migration import init_migration  # noqa: E402
from sheetbridge.migration.errors import SourceApiError  # noqa: E402
from sheetbridge.migration.identity import IdentityCache  # noqa: E402
from sheetbridge.migration.store import TargetStore  # noqa: E402
from sheetbridge.models import db  # noqa: E402
from sheetbridge.utils.sqlite import configure_sqlite_engine  # noqa: E402


def build_migration_app(tmp_path, **overrides) -> Flask:
    """
    Construct a minimal Flask app backed by a fresh SQLite file with the
    migration engine attached.
    """
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir(parents=True, exist_ok=True)
    app = Flask(__name__, instance_path=str(instance_dir))
    app.config.from_object(TestingConfig)
    app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{(tmp_path / 'test.db').as_posix()}"
    app.config.update(overrides)

    db.init_app(app)
    with app.app_context():
        configure_sqlite_engine(db.engine, enable_foreign_keys=False)
        db.create_all()
    init_migration(app)
    return app


class InMemoryMappingStore:
    """Dict-backed mapping store; counts lookups so tests can assert cache hits."""

    def __init__(self):
        self.mappings = {}
        self.lookup_calls = 0
        self.saved = []

    def seed(self, entity_type, pairs):
        self.mappings.setdefault(entity_type, {}).update(dict(pairs))

    def load_all(self, entity_type):
        return dict(self.mappings.get(entity_type, {}))

    def lookup(self, entity_type, source_ids):
        self.lookup_calls += 1
        known = self.mappings.get(entity_type, {})
        return {source_id: known[source_id] for source_id in source_ids if source_id in known}

    def lookup_targets(self, entity_type, target_ids):
        self.lookup_calls += 1
        reverse = {target_id: source_id for source_id, target_id in self.mappings.get(entity_type, {}).items()}
        return {target_id: reverse[target_id] for target_id in target_ids if target_id in reverse}

    def save(self, entity_type, pairs):
        self.saved.append((entity_type, list(pairs)))
        self.seed(entity_type, pairs)


class FakeSourceClient:
    """Serves canned records per legacy type; types in ``failing`` raise like an unreachable API."""

    def __init__(self, records=None, *, failing=()):
        self.records = {source_type: list(items) for source_type, items in (records or {}).items()}
        self.failing = set(failing)
        self.calls = []

    def add(self, source_type, *records):
        self.records.setdefault(source_type, []).extend(records)

    def _check(self, source_type):
        if source_type in self.failing:
            raise SourceApiError(f"{source_type} request failed with HTTP 503.", status_code=503)

    def count_all(self, source_type):
        self.calls.append(("count_all", source_type))
        self._check(source_type)
        return len(self.records.get(source_type, []))

    def iter_records(self, source_type, *, limit=None):
        self.calls.append(("iter_records", source_type))
        self._check(source_type)
        records = self.records.get(source_type, [])
        if limit is not None:
            records = records[:limit]
        for record in records:
            yield dict(record)

    def get_by_id(self, source_type, source_id):
        self.calls.append(("get_by_id", source_type, source_id))
        self._check(source_type)
        for record in self.records.get(source_type, []):
            if record.get("_id") == source_id:
                return dict(record)
        return None


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create a test Flask application with an isolated database"""
    migration_app = build_migration_app(tmp_path)
    ctx = migration_app.app_context()
    ctx.push()
    try:
        yield migration_app
    finally:
        db.session.remove()
        db.engine.dispose()
        ctx.pop()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def store(app):
    return TargetStore()


@pytest.fixture
def mapping_store():
    return InMemoryMappingStore()


@pytest.fixture
def cache(mapping_store):
    return IdentityCache(mapping_store)


@pytest.fixture
def source_client():
    return FakeSourceClient()


@pytest.fixture
def sleeps():
    """Collects delays passed to ``sleep_fn`` instead of sleeping."""
    return []
