from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.shipci/runs.db"


class SettingsError(ValueError):
    """An environment variable holds a value shipci cannot use."""
    pass


@dataclass(frozen=True)
class Settings:
    term_color: str = "auto"
    github_token: Optional[str] = None
    github_repository: Optional[str] = None
    event_name: Optional[str] = None
    event_path: Optional[str] = None
    webhook_secret: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    workers: Optional[int] = None
    publish_dir: Optional[str] = None


def _positive_int(name: str, raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        raise SettingsError(f"{name} must be a positive integer, got {raw!r}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ

    color = (env.get("SHIPCI_TERM_COLOR") or env.get("CARGO_TERM_COLOR") or "auto").lower()
    if color not in ("always", "never", "auto"):
        color = "auto"

    workers = _positive_int("SHIPCI_WORKERS", env.get("SHIPCI_WORKERS"))

    return Settings(
        term_color=color,
        github_token=env.get("GITHUB_TOKEN") or None,
        github_repository=env.get("GITHUB_REPOSITORY") or None,
        event_name=env.get("GITHUB_EVENT_NAME") or None,
        event_path=env.get("GITHUB_EVENT_PATH") or None,
        webhook_secret=env.get("SHIPCI_WEBHOOK_SECRET") or None,
        database_url=env.get("SHIPCI_DATABASE_URL", DEFAULT_DATABASE_URL),
        workers=workers,
        publish_dir=env.get("SHIPCI_PUBLISH_DIR") or None,
    )
