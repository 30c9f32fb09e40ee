"""Runtime settings for a validation session, optionally loaded from JSON."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from roster_doctor.hooks import DEFAULT_ALLOWED_EMAIL_DOMAINS, DEFAULT_CHANGE_CAP
from roster_doctor.mapping import DEFAULT_FUZZY_THRESHOLD, DEFAULT_MIN_MATCH_CHARS


@dataclass
class Settings:
    clean_up: bool = False
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD
    min_match_chars: int = DEFAULT_MIN_MATCH_CHARS
    change_cap: int = DEFAULT_CHANGE_CAP
    history_size: int = 100
    progress_debounce_ms: int = 0
    allowed_email_domains: tuple[str, ...] = DEFAULT_ALLOWED_EMAIL_DOMAINS
    structural_checks: bool = True

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["allowed_email_domains"] = list(self.allowed_email_domains)
        return payload


def settings_from_dict(payload: dict[str, Any]) -> Settings:
    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    values = dict(payload)
    if "allowed_email_domains" in values:
        values["allowed_email_domains"] = tuple(values["allowed_email_domains"])
    settings = Settings(**values)
    if not 0.0 <= settings.fuzzy_threshold <= 1.0:
        raise ValueError("fuzzy_threshold must be between 0 and 1")
    if settings.change_cap < 0 or settings.history_size < 1:
        raise ValueError("change_cap must be >= 0 and history_size >= 1")
    return settings


def load_settings(path: Path) -> Settings:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Config root must be a JSON object.")
    return settings_from_dict(payload)


def starter_config() -> dict[str, Any]:
    return Settings().to_dict()
