from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

MIB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


@dataclass
class Settings:
    # Storage
    db_path: str = "keepmarks.sqlite"

    # Import limits
    csv_max_bytes: int = 5 * MIB
    html_max_bytes: int = 10 * MIB

    # Network maintenance
    network_jobs: int = 6
    link_check_timeout_s: float = 10.0
    favicon_timeout_s: float = 10.0
    max_redirects: int = 10
    favicon_fallback_url: str = "https://www.google.com/s2/favicons?domain={host}&sz={size}"
    favicon_size: int = 64
    user_agent: str = "keepmarks/0.3 (+https://example.invalid)"

    # Reading list
    reading_list_limit: int = 10

    # Metadata lookup while typing a URL
    metadata_debounce_s: float = 0.5

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.db_path = _env_str("KEEPMARKS_DB_PATH", s.db_path)

        s.csv_max_bytes = _env_int("KEEPMARKS_CSV_MAX_BYTES", s.csv_max_bytes)
        s.html_max_bytes = _env_int("KEEPMARKS_HTML_MAX_BYTES", s.html_max_bytes)

        s.network_jobs = _env_int("KEEPMARKS_NETWORK_JOBS", s.network_jobs)
        s.link_check_timeout_s = _env_float("KEEPMARKS_LINK_CHECK_TIMEOUT_S", s.link_check_timeout_s)
        s.favicon_timeout_s = _env_float("KEEPMARKS_FAVICON_TIMEOUT_S", s.favicon_timeout_s)
        s.max_redirects = _env_int("KEEPMARKS_MAX_REDIRECTS", s.max_redirects)
        s.favicon_fallback_url = _env_str("KEEPMARKS_FAVICON_FALLBACK_URL", s.favicon_fallback_url)
        s.favicon_size = _env_int("KEEPMARKS_FAVICON_SIZE", s.favicon_size)
        s.user_agent = _env_str("KEEPMARKS_UA", s.user_agent)

        s.reading_list_limit = _env_int("KEEPMARKS_READING_LIST_LIMIT", s.reading_list_limit)
        s.metadata_debounce_s = _env_float("KEEPMARKS_METADATA_DEBOUNCE_S", s.metadata_debounce_s)

        s.log_level = _env_str("KEEPMARKS_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("KEEPMARKS_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
