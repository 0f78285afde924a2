from datetime import timedelta

import pytest

from courtfetch.config import Config, ConfigError, load


@pytest.fixture
def missing_dotenv(tmp_path):
    return tmp_path / ".env"


def test_defaults(missing_dotenv):
    cfg = load(env={}, dotenv_path=missing_dotenv)
    assert cfg.host == "0.0.0.0"
    assert cfg.port == "8080"
    assert cfg.database_path == "./data/court_cases.db"
    assert cfg.log_level == "info"
    assert cfg.log_format == "json"
    assert cfg.court_base_url == "https://delhihighcourt.nic.in"
    assert cfg.court_name == "Delhi District Courts"
    assert cfg.browser_path == ""


def test_default_durations_and_numbers(missing_dotenv):
    cfg = load(env={}, dotenv_path=missing_dotenv)
    assert cfg.cache_size == 1000
    assert cfg.cache_ttl == timedelta(minutes=30)
    assert cfg.scraper_timeout == timedelta(seconds=30)
    assert cfg.headless_mode is True
    assert cfg.max_concurrent_scrapes == 5
    assert cfg.worker_pool_size == 10
    assert cfg.api_rate_limit == 100
    assert cfg.api_rate_window == timedelta(seconds=60)


def test_loaded_defaults_match_dataclass_defaults(missing_dotenv):
    assert load(env={}, dotenv_path=missing_dotenv) == Config()


def test_environment_overrides(missing_dotenv):
    cfg = load(
        env={"HOST": "127.0.0.1", "PORT": "9090", "CACHE_TTL": "5", "SCRAPER_TIMEOUT": "12"},
        dotenv_path=missing_dotenv,
    )
    assert cfg.host == "127.0.0.1"
    assert cfg.port == "9090"
    assert cfg.cache_ttl == timedelta(minutes=5)
    assert cfg.scraper_timeout == timedelta(seconds=12)


def test_empty_value_falls_back_to_default(missing_dotenv):
    cfg = load(env={"PORT": "", "CACHE_SIZE": ""}, dotenv_path=missing_dotenv)
    assert cfg.port == Config().port
    assert cfg.cache_size == Config().cache_size


@pytest.mark.parametrize("value,expected", [("true", True), ("false", False), ("TRUE", False), ("1", False)])
def test_headless_mode_only_true_literal(missing_dotenv, value, expected):
    assert load(env={"HEADLESS_MODE": value}, dotenv_path=missing_dotenv).headless_mode is expected


@pytest.mark.parametrize(
    "key",
    [
        "CACHE_SIZE",
        "CACHE_TTL",
        "SCRAPER_TIMEOUT",
        "MAX_CONCURRENT_SCRAPES",
        "WORKER_POOL_SIZE",
        "API_RATE_LIMIT",
        "API_RATE_WINDOW",
    ],
)
def test_invalid_integer_raises(missing_dotenv, key):
    with pytest.raises(ConfigError, match=f"invalid {key}"):
        load(env={key: "abc"}, dotenv_path=missing_dotenv)


@pytest.mark.parametrize("raw", [" 5", "5.0", "1_000"])
def test_integer_syntax_is_strict(missing_dotenv, raw):
    with pytest.raises(ConfigError):
        load(env={"CACHE_SIZE": raw}, dotenv_path=missing_dotenv)


def test_signed_integer_accepted(missing_dotenv):
    assert load(env={"WORKER_POOL_SIZE": "+7"}, dotenv_path=missing_dotenv).worker_pool_size == 7


def test_dotenv_file_supplies_values(tmp_path):
    dotenv = tmp_path / ".env"
    dotenv.write_text("PORT=9191\nCOURT_NAME=Test Court\n")
    cfg = load(env={}, dotenv_path=dotenv)
    assert cfg.port == "9191"
    assert cfg.court_name == "Test Court"


def test_environment_wins_over_dotenv(tmp_path):
    dotenv = tmp_path / ".env"
    dotenv.write_text("PORT=9191\n")
    assert load(env={"PORT": "7070"}, dotenv_path=dotenv).port == "7070"


def test_process_environment_used_when_env_not_given(tmp_path, monkeypatch):
    monkeypatch.setenv("PORT", "6060")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    cfg = load(dotenv_path=tmp_path / ".env")
    assert cfg.port == "6060"
    assert cfg.log_level == "debug"