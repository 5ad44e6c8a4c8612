"""
Unit tests for configuration loading (economy_ledger/config.py).

Tests cover:
- Built-in defaults
- INI parsing, including the [ledger] section
- Environment variable overrides
- The use_test_database helper
"""

import configparser
from pathlib import Path

import pytest

from economy_ledger import config as config_module
from economy_ledger.config import (
    ServerConfig,
    _load_from_ini,
    _parse_bool,
    _parse_list,
    _parse_policy,
    get_config_status,
    load_config,
    print_config_summary,
    reload_config,
    use_test_database,
)

# ============================================================================
# DEFAULTS
# ============================================================================


@pytest.mark.unit
def test_defaults():
    """A bare ServerConfig carries the documented defaults."""
    cfg = ServerConfig()
    assert cfg.server.port == 8000
    assert cfg.ledger.missing_history_policy == "fail"
    assert cfg.ledger.wipe_confirm_word == "WIPE"
    assert cfg.ledger.timeline_rarities == ["epic", "legendary"]
    assert cfg.ledger.server_wipe_timeout_seconds == 0.0
    assert cfg.security.admin_token == ""


@pytest.mark.unit
@pytest.mark.parametrize(
    ("docs_enabled", "production", "expected"),
    [
        ("auto", False, True),
        ("auto", True, False),
        ("enabled", True, True),
        ("disabled", False, False),
    ],
)
def test_docs_should_be_enabled(docs_enabled, production, expected):
    cfg = ServerConfig()
    cfg.security.docs_enabled = docs_enabled
    cfg.security.production = production
    assert cfg.docs_should_be_enabled is expected


# ============================================================================
# PARSERS
# ============================================================================


@pytest.mark.unit
def test_parse_helpers():
    assert _parse_bool("Yes") is True
    assert _parse_bool("off") is False
    assert _parse_list(" a, b ,,c ") == ["a", "b", "c"]
    assert _parse_list("  ") == []


@pytest.mark.unit
def test_parse_policy_normalizes_and_rejects_unknown():
    assert _parse_policy("FAIL") == "fail"
    assert _parse_policy("assume-existed") == "assume_existed"
    assert _parse_policy("guess") is None


@pytest.mark.unit
def test_load_ledger_section_from_ini():
    """The [ledger] section populates LedgerSettings."""
    parser = configparser.ConfigParser()
    parser.read_string("""
        [ledger]
        clock_skew_seconds = 2.5
        wipe_confirm_word = RESET
        missing_history_policy = assume_existed
        server_wipe_timeout_seconds = 30
        timeline_rarities = Legendary
        query_page_size = 0

        [logging]
        level = debug
        format = json
    """)
    cfg = ServerConfig()
    _load_from_ini(parser, cfg)

    assert cfg.ledger.clock_skew_seconds == 2.5
    assert cfg.ledger.wipe_confirm_word == "RESET"
    assert cfg.ledger.missing_history_policy == "assume_existed"
    assert cfg.ledger.server_wipe_timeout_seconds == 30.0
    assert cfg.ledger.timeline_rarities == ["legendary"]
    assert cfg.ledger.query_page_size == 1
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.format == "json"


@pytest.mark.unit
def test_unknown_policy_in_ini_keeps_default():
    parser = configparser.ConfigParser()
    parser.read_string("[ledger]\nmissing_history_policy = maybe\n")
    cfg = ServerConfig()
    _load_from_ini(parser, cfg)
    assert cfg.ledger.missing_history_policy == "fail"


# ============================================================================
# ENVIRONMENT OVERRIDES
# ============================================================================


@pytest.mark.unit
def test_env_overrides_take_priority(monkeypatch):
    """ECON_* variables win over file values and defaults."""
    monkeypatch.setenv("ECON_PORT", "9100")
    monkeypatch.setenv("ECON_ADMIN_TOKEN", "  s3cret  ")
    monkeypatch.setenv("ECON_MISSING_HISTORY_POLICY", "assume-existed")
    monkeypatch.setenv("ECON_LOCK_TIMEOUT", "1.5")
    monkeypatch.setenv("ECON_CORS_ORIGINS", "http://a.test, http://b.test")

    cfg = load_config()

    assert cfg.server.port == 9100
    assert cfg.security.admin_token == "s3cret"
    assert cfg.ledger.missing_history_policy == "assume_existed"
    assert cfg.ledger.lock_timeout_seconds == 1.5
    assert cfg.security.cors_origins == ["http://a.test", "http://b.test"]


@pytest.mark.unit
def test_get_config_status_reports_token_presence(monkeypatch):
    monkeypatch.setattr(config_module.config.security, "admin_token", "")
    assert get_config_status()["admin_token_configured"] is False
    monkeypatch.setattr(config_module.config.security, "admin_token", "x")
    assert get_config_status()["admin_token_configured"] is True


@pytest.mark.unit
def test_reload_config_replaces_singleton(monkeypatch):
    monkeypatch.setattr(config_module, "config", config_module.config)
    monkeypatch.setenv("ECON_LOG_LEVEL", "warning")

    fresh = reload_config()

    assert config_module.config is fresh
    assert fresh.logging.level == "WARNING"


@pytest.mark.unit
def test_print_config_summary(capsys, monkeypatch):
    monkeypatch.setattr(config_module.config.security, "admin_token", "")
    print_config_summary()
    out = capsys.readouterr().out
    assert "ECONOMY LEDGER CONFIGURATION" in out
    assert "Admin token: NOT SET" in out


# ============================================================================
# TEST DATABASE HELPER
# ============================================================================


@pytest.mark.unit
def test_use_test_database_restores_path(tmp_path: Path):
    original = config_module.config.database.path
    db_path = tmp_path / "scratch.db"

    with use_test_database(db_path) as active:
        assert active == db_path
        assert config_module.config.database.absolute_path == db_path

    assert config_module.config.database.path == original
