import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .github import DEFAULT_API_URL, DEFAULT_TIMEOUT
from .scheduler import DEFAULT_MAX_WORKERS, DEFAULT_SWEEP_INTERVAL

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _number(env: Mapping[str, str], key: str, default, cast):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _log_level(env: Mapping[str, str]) -> str:
    level = env.get("REPOSCHEDULER_LOG_LEVEL", "INFO").strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"REPOSCHEDULER_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
    return level


@dataclass
class Settings:
    """Runtime configuration, normally read from the environment (.env included)."""

    data_dir: Path = Path("data")
    store_path: Optional[Path] = None
    credentials_db: Optional[Path] = None
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    http_timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    api_url: str = DEFAULT_API_URL
    log_level: str = "INFO"

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.store_path is None:
            self.store_path = self.data_dir / "jobs.json"
        if self.credentials_db is None:
            self.credentials_db = self.data_dir / "credentials.db"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        store = env.get("REPOSCHEDULER_STORE")
        creds = env.get("REPOSCHEDULER_CREDENTIALS_DB")
        return cls(
            data_dir=Path(env.get("REPOSCHEDULER_DATA_DIR", "data")),
            store_path=Path(store) if store else None,
            credentials_db=Path(creds) if creds else None,
            sweep_interval=_number(env, "REPOSCHEDULER_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL, float),
            http_timeout=_number(env, "REPOSCHEDULER_HTTP_TIMEOUT", DEFAULT_TIMEOUT, float),
            max_workers=_number(env, "REPOSCHEDULER_MAX_WORKERS", DEFAULT_MAX_WORKERS, int),
            api_url=env.get("GITHUB_API_URL", DEFAULT_API_URL),
            log_level=_log_level(env),
        )
