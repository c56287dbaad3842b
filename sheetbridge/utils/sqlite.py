# sheetbridge/utils/sqlite.py

"""
SQLite engine hooks.

Pragmas favour concurrent CLI and worker access. pysqlite's own transaction
handling breaks SAVEPOINT, which row-level failure isolation depends on, so
the driver is put in autocommit mode and SQLAlchemy emits BEGIN itself.
"""

import logging

from sqlalchemy import event

logger = logging.getLogger(__name__)


def _configure_sqlite_connection_factory(*, enable_foreign_keys):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        try:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)

    return _configure_sqlite_connection


def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


def configure_sqlite_engine(engine, *, enable_foreign_keys=True):
    """Attach the hooks to ``engine`` once. Returns False for non-SQLite engines."""
    if not engine.url.drivername.startswith("sqlite"):
        return False
    if getattr(engine, "_sqlite_pragmas_configured", False):
        return True
    event.listen(engine, "connect", _configure_sqlite_connection_factory(enable_foreign_keys=enable_foreign_keys))
    event.listen(engine, "begin", _emit_begin)
    engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]
    return True
