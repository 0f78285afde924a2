"""Application configuration read from the environment and an optional .env file."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from dotenv import dotenv_values, load_dotenv

_INTEGER = re.compile(r"[+-]?[0-9]+")


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or holds an invalid value."""


@dataclass
class Config:
    """All settings of the application."""

    host: str = "0.0.0.0"
    port: str = "8080"

    database_path: str = "./data/court_cases.db"

    log_level: str = "info"
    log_format: str = "json"

    cache_size: int = 1000
    cache_ttl: timedelta = timedelta(minutes=30)

    court_base_url: str = "https://delhihighcourt.nic.in"
    court_name: str = "Delhi District Courts"

    scraper_timeout: timedelta = timedelta(seconds=30)
    headless_mode: bool = True
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    browser_path: str = ""

    max_concurrent_scrapes: int = 5
    worker_pool_size: int = 10

    api_rate_limit: int = 100
    api_rate_window: timedelta = timedelta(seconds=60)


def _read_dotenv(path: Path, populate_environ: bool) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        if populate_environ:
            load_dotenv(path, override=False)
            return {}
        return {key: value for key, value in dotenv_values(path).items() if value is not None}
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"error loading .env file: {exc}") from exc


def _setting(values: Mapping[str, str], key: str, default: str) -> str:
    value = values.get(key, "")
    return value if value else default


def _int_setting(values: Mapping[str, str], key: str, default: int) -> int:
    raw = _setting(values, key, str(default))
    if not _INTEGER.fullmatch(raw):
        raise ConfigError(f"invalid {key}: {raw!r} is not an integer")
    return int(raw)


def load(env: Mapping[str, str] | None = None, dotenv_path: str | os.PathLike | None = None) -> Config:
    """Build a Config from environment variables.

    Values from a .env file are used where the environment does not set them.
    With no ``env`` given, the process environment is read and the .env file's
    values are added to it, as other parts of the program read it directly.
    """
    path = Path(dotenv_path) if dotenv_path is not None else Path(".env")
    if env is None:
        _read_dotenv(path, populate_environ=True)
        values: Mapping[str, str] = os.environ
    else:
        merged = _read_dotenv(path, populate_environ=False)
        merged.update(env)
        values = merged

    defaults = Config()
    return Config(
        host=_setting(values, "HOST", defaults.host),
        port=_setting(values, "PORT", defaults.port),
        database_path=_setting(values, "DATABASE_PATH", defaults.database_path),
        log_level=_setting(values, "LOG_LEVEL", defaults.log_level),
        log_format=_setting(values, "LOG_FORMAT", defaults.log_format),
        court_base_url=_setting(values, "COURT_BASE_URL", defaults.court_base_url),
        court_name=_setting(values, "COURT_NAME", defaults.court_name),
        user_agent=_setting(values, "USER_AGENT", defaults.user_agent),
        browser_path=_setting(values, "ROD_BROWSER_PATH", defaults.browser_path),
        cache_size=_int_setting(values, "CACHE_SIZE", 1000),
        cache_ttl=timedelta(minutes=_int_setting(values, "CACHE_TTL", 30)),
        scraper_timeout=timedelta(seconds=_int_setting(values, "SCRAPER_TIMEOUT", 30)),
        headless_mode=_setting(values, "HEADLESS_MODE", "true") == "true",
        max_concurrent_scrapes=_int_setting(values, "MAX_CONCURRENT_SCRAPES", 5),
        worker_pool_size=_int_setting(values, "WORKER_POOL_SIZE", 10),
        api_rate_limit=_int_setting(values, "API_RATE_LIMIT", 100),
        api_rate_window=timedelta(seconds=_int_setting(values, "API_RATE_WINDOW", 60)),
    )