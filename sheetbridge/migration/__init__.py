"""
Migration engine package.

``init_migration`` validates the stage registry, records source readiness and
worker state in ``app.extensions['migration']`` and registers the
``migration`` and ``reconcile`` CLI groups.
"""

from __future__ import annotations

from typing import Any, Mapping

from flask import Flask

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import migration_cli, reconcile_cli
from .pipeline.service import RunOptions, create_run, execute_run
from .registry import get_stage_registry, validate_stage_order
from .source import check_source_readiness

MIGRATION_EXTENSION_KEY = EXTENSION_KEY

__all__ = [
    "MIGRATION_EXTENSION_KEY",
    "RunOptions",
    "create_run",
    "execute_run",
    "get_celery_app",
    "get_source_readiness",
    "init_migration",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        MIGRATION_EXTENSION_KEY,
        {
            "stages": (),
            "worker_enabled": False,
            "celery_app": None,
            "source_readiness": {},
        },
    )


def _set_cli(app: Flask) -> None:
    for group in (migration_cli, reconcile_cli):
        # Avoid duplicate registrations when tests build several apps
        if group.name in app.cli.commands:
            app.cli.commands.pop(group.name)
        app.cli.add_command(group)


def init_migration(app: Flask) -> None:
    """Attach the migration engine to ``app``."""
    registry = get_stage_registry()
    validate_stage_order(registry)

    state = _ensure_extension_state(app)
    worker_enabled = bool(app.config.get("MIGRATION_WORKER_ENABLED", False))
    readiness = check_source_readiness(app.config)
    state.update(
        {
            "stages": tuple(registry),
            "worker_enabled": worker_enabled,
            "source_readiness": readiness.as_dict(),
        }
    )

    if readiness.status != "ready" or readiness.notes:
        messages = list(readiness.messages())
        app.logger.warning(
            "Migration source not ready (status=%s). %s",
            readiness.status,
            "; ".join(messages) or "No additional context provided.",
            extra={"migration_source_status": readiness.status, "migration_source_messages": messages},
        )

    if worker_enabled:
        ensure_celery_app(app, state)
    _set_cli(app)
    app.logger.info(
        "Migration engine initialised with %d stages",
        len(registry),
        extra={"migration_worker_enabled": worker_enabled},
    )


def get_source_readiness(app: Flask) -> Mapping[str, Any]:
    state = _ensure_extension_state(app)
    return dict(state.get("source_readiness", {}))
