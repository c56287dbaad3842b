"""Legacy platform source: readiness checks and the paginated API client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Tuple

from sheetbridge.migration.errors import SourceConfigError

REQUIRED_SETTINGS: Tuple[str, ...] = ("MIGRATION_SOURCE_BASE_URL", "MIGRATION_SOURCE_API_TOKEN")
PLACEHOLDER_TOKENS = frozenset({"changeme", "replace-me", "your-api-token", "your-token-here"})


@dataclass(frozen=True)
class SourceReadiness:
    missing_settings: Tuple[str, ...]
    placeholder_settings: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()

    @property
    def status(self) -> Literal["ready", "missing-config", "placeholder-config"]:
        if self.missing_settings:
            return "missing-config"
        if self.placeholder_settings:
            return "placeholder-config"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_settings:
            messages.append(f"Missing required source settings: {', '.join(self.missing_settings)}")
        if self.placeholder_settings:
            messages.append(f"Source settings still hold placeholder values: {', '.join(self.placeholder_settings)}")
        messages.extend(self.notes)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "missing_settings": list(self.missing_settings),
            "placeholder_settings": list(self.placeholder_settings),
            "messages": list(self.messages()),
        }


def check_source_readiness(config: Mapping[str, Any]) -> SourceReadiness:
    """Non-raising check of the settings the source client needs."""

    missing = tuple(sorted(name for name in REQUIRED_SETTINGS if not config.get(name)))
    placeholders: Tuple[str, ...] = ()
    token = str(config.get("MIGRATION_SOURCE_API_TOKEN") or "").strip().lower()
    if token and token in PLACEHOLDER_TOKENS:
        placeholders = ("MIGRATION_SOURCE_API_TOKEN",)
    notes: Tuple[str, ...] = ()
    base_url = str(config.get("MIGRATION_SOURCE_BASE_URL") or "")
    if base_url.startswith("http://"):
        notes = ("MIGRATION_SOURCE_BASE_URL uses plain http; the bearer token will travel unencrypted.",)
    return SourceReadiness(missing_settings=missing, placeholder_settings=placeholders, notes=notes)


def ensure_source_ready(config: Mapping[str, Any]) -> SourceReadiness:
    """Validate source settings, raising ``SourceConfigError`` when the client cannot be built."""

    readiness = check_source_readiness(config)
    if readiness.status != "ready":
        raise SourceConfigError("; ".join(readiness.messages()))
    return readiness


from .client import LegacySourceClient, SourcePage, chunk_records, create_source_client  # noqa: E402

__all__ = [
    "LegacySourceClient",
    "REQUIRED_SETTINGS",
    "SourcePage",
    "SourceReadiness",
    "check_source_readiness",
    "chunk_records",
    "create_source_client",
    "ensure_source_ready",
]
