"""
Celery wiring for queued migration runs.

A migration run is one long task that commits chunk by chunk, so the worker
takes one task at a time and acknowledges it only once the run returns. The
broker defaults to a SQLite file next to the instance folder; set
``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` to point at Redis or Postgres.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "migrations"
DEFAULT_BROKER_FILENAME = "migration-broker.sqlite"
EXTENSION_KEY = "migration"
TASK_MODULE = "sheetbridge.migration.tasks"
RUN_TASK_NAME = "migration.pipeline.run"
HEALTHCHECK_TASK_NAME = "migration.healthcheck"


def _broker_file(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    path = Path(configured) if configured else Path(DEFAULT_BROKER_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _parse_overrides(raw: Mapping[str, Any] | str | None, logger: logging.Logger) -> dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("CELERY_CONFIG is not valid JSON; ignoring it.", exc_info=True)
            return {}
    if not isinstance(raw, Mapping):
        logger.warning("CELERY_CONFIG must be an object; ignoring it.", extra={"celery_config_type": type(raw).__name__})
        return {}
    return dict(raw)


@dataclass(frozen=True)
class WorkerSettings:
    """Broker location, queue and limits for the migration worker."""

    broker_url: str
    result_backend: str
    queue: str = DEFAULT_QUEUE_NAME
    time_limit: int = 6 * 60 * 60
    overrides: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_app(cls, app: Flask) -> "WorkerSettings":
        config = app.config
        broker_url = config.get("CELERY_BROKER_URL")
        result_backend = config.get("CELERY_RESULT_BACKEND")
        if not (broker_url and result_backend):
            # Celery wants forward slashes even on Windows.
            location = _broker_file(app).as_posix()
            broker_url = broker_url or f"sqla+sqlite:///{location}"
            result_backend = result_backend or f"db+sqlite:///{location}"
        return cls(
            broker_url=broker_url,
            result_backend=result_backend,
            queue=config.get("MIGRATION_WORKER_QUEUE") or DEFAULT_QUEUE_NAME,
            time_limit=int(config.get("MIGRATION_TASK_TIME_LIMIT") or cls.time_limit),
            overrides=_parse_overrides(config.get("CELERY_CONFIG"), app.logger),
        )

    def as_conf(self) -> dict[str, Any]:
        conf: dict[str, Any] = {
            "task_default_queue": self.queue,
            "task_queues": [Queue(self.queue)],
            "task_routes": {RUN_TASK_NAME: {"queue": self.queue}},
            "task_acks_late": True,
            "worker_prefetch_multiplier": 1,
            "task_time_limit": self.time_limit,
            "broker_connection_retry_on_startup": True,
            "worker_hijack_root_logger": False,
        }
        conf.update(self.overrides)
        return conf


def create_celery_app(app: Flask, settings: WorkerSettings | None = None) -> Celery:
    """Build the Celery instance whose tasks run inside an ``app`` context."""

    settings = settings or WorkerSettings.from_app(app)
    celery_app = Celery(
        app.import_name,
        broker=settings.broker_url,
        backend=settings.result_backend,
        include=(TASK_MODULE,),
    )
    celery_app.conf.update(settings.as_conf())

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    app.logger.info(
        "Migration worker configured",
        extra={
            "celery_broker_url": settings.broker_url,
            "celery_queue": settings.queue,
            "celery_overrides": sorted(settings.overrides),
        },
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Return the migration Celery instance, creating it on first use."""

    state: dict[str, Any] | None = app.extensions.get(EXTENSION_KEY)  # type: ignore[arg-type]
    if state is None:
        return None
    return ensure_celery_app(app, state)


__all__ = [
    "DEFAULT_QUEUE_NAME",
    "EXTENSION_KEY",
    "HEALTHCHECK_TASK_NAME",
    "RUN_TASK_NAME",
    "WorkerSettings",
    "create_celery_app",
    "ensure_celery_app",
    "get_celery_app",
]
