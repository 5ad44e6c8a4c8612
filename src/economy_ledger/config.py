"""
Ledger service configuration management.

Settings come from three layers, the later ones overriding the earlier:

    1. Dataclass defaults
    2. config/server.ini (config/server.example.ini when no server.ini exists)
    3. ECON_* environment variables

Every recognised option is declared once in ``_OPTIONS`` together with its
environment variable (if any) and the coercer that turns raw text into a
typed value. A coercer returning None leaves the current value in place, so
an unrecognised policy or log format never clobbers a valid default.

Usage:
    from economy_ledger.config import config

    config.ledger.missing_history_policy
    config.security.admin_token

Environment Variable Mapping:
    ECON_HOST                    -> server.host
    ECON_PORT                    -> server.port
    ECON_PRODUCTION              -> security.production
    ECON_CORS_ORIGINS            -> security.cors_origins
    ECON_ADMIN_TOKEN             -> security.admin_token
    ECON_DB_PATH                 -> database.path
    ECON_LOG_LEVEL               -> logging.level
    ECON_MISSING_HISTORY_POLICY  -> ledger.missing_history_policy
    ECON_LOCK_TIMEOUT            -> ledger.lock_timeout_seconds
"""

import configparser
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

# =============================================================================
# PATHS
# =============================================================================

# Repository root: src/economy_ledger/config.py -> three levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "server.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "server.example.ini"

MissingHistoryPolicy = Literal["fail", "assume_existed"]

# =============================================================================
# SETTINGS SECTIONS
# =============================================================================


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"  # nosec B104 - bind all interfaces inside containers
    port: int = 8000


@dataclass
class SecuritySettings:
    """CORS, docs exposure and the admin token guarding /admin routes."""

    production: bool = False
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = field(default_factory=lambda: ["*"])
    cors_allow_headers: list[str] = field(default_factory=lambda: ["*"])
    docs_enabled: Literal["auto", "enabled", "disabled"] = "auto"
    # Empty disables the X-Admin-Token check; local development only.
    admin_token: str = ""


@dataclass
class DatabaseSettings:
    path: str = "data/economy.db"

    @property
    def absolute_path(self) -> Path:
        """The database file, resolving relative paths against the repo root."""
        candidate = Path(self.path)
        return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class LedgerSettings:
    """
    Event log, rollback, backfill and wipe behaviour.

    Attributes:
        clock_skew_seconds: How far an appended event may predate the user's
            previous event before the append is rejected.
        lock_timeout_seconds: Per-user lock acquisition timeout.
        wipe_confirm_word: Word a wipe request must echo (case-insensitive).
        missing_history_policy: ``fail`` refuses rollbacks over state the log
            cannot explain; ``assume_existed`` proceeds and reports it.
        server_wipe_timeout_seconds: Deadline for server-wide wipes; 0 means none.
        timeline_rarities: Rarities that appear on the activity timeline.
        query_page_size: Rows fetched per page by event queries.
    """

    clock_skew_seconds: float = 5.0
    lock_timeout_seconds: float = 10.0
    wipe_confirm_word: str = "WIPE"
    missing_history_policy: MissingHistoryPolicy = "fail"
    server_wipe_timeout_seconds: float = 0.0
    timeline_rarities: list[str] = field(default_factory=lambda: ["epic", "legendary"])
    query_page_size: int = 500


@dataclass
class ServerConfig:
    """All settings sections. Access through the module-level ``config``."""

    server: ServerSettings = field(default_factory=ServerSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)

    @property
    def is_production(self) -> bool:
        return self.security.production

    @property
    def docs_should_be_enabled(self) -> bool:
        """``auto`` exposes /docs everywhere except production."""
        mode = self.security.docs_enabled
        if mode == "auto":
            return not self.is_production
        return mode == "enabled"


# =============================================================================
# VALUE PARSERS
# =============================================================================


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: str) -> list[str]:
    """Split a comma-separated value, dropping blanks."""
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _parse_policy(value: str) -> MissingHistoryPolicy | None:
    """Normalize a missing-history policy name; None when unrecognised."""
    normalized = value.strip().lower().replace("-", "_")
    if normalized in ("fail", "assume_existed"):
        return normalized  # type: ignore[return-value]
    return None


def _one_of(*allowed: str) -> Callable[[str], str | None]:
    def coerce(value: str) -> str | None:
        lowered = value.strip().lower()
        return lowered if lowered in allowed else None

    return coerce


def _non_empty(value: str) -> str | None:
    return value.strip() or None


# (section, option, environment variable, coercer)
_OPTIONS: tuple[tuple[str, str, str | None, Callable[[str], Any]], ...] = (
    ("server", "host", "ECON_HOST", str),
    ("server", "port", "ECON_PORT", int),
    ("security", "production", "ECON_PRODUCTION", _parse_bool),
    ("security", "cors_origins", "ECON_CORS_ORIGINS", _parse_list),
    ("security", "cors_allow_credentials", None, _parse_bool),
    ("security", "docs_enabled", None, _one_of("auto", "enabled", "disabled")),
    ("security", "admin_token", "ECON_ADMIN_TOKEN", str.strip),
    ("database", "path", "ECON_DB_PATH", str),
    ("logging", "level", "ECON_LOG_LEVEL", lambda v: v.strip().upper()),
    ("logging", "format", None, _one_of("simple", "detailed", "json")),
    ("ledger", "clock_skew_seconds", None, float),
    ("ledger", "lock_timeout_seconds", "ECON_LOCK_TIMEOUT", float),
    ("ledger", "wipe_confirm_word", None, _non_empty),
    ("ledger", "missing_history_policy", "ECON_MISSING_HISTORY_POLICY", _parse_policy),
    ("ledger", "server_wipe_timeout_seconds", None, float),
    ("ledger", "timeline_rarities", None, lambda v: [r.lower() for r in _parse_list(v)]),
    ("ledger", "query_page_size", None, lambda v: max(1, int(v))),
)


def _assign(cfg: ServerConfig, section: str, option: str, value: Any) -> None:
    if value is not None:
        setattr(getattr(cfg, section), option, value)


# =============================================================================
# LOADING
# =============================================================================


def _load_from_ini(parser: configparser.ConfigParser, cfg: ServerConfig) -> None:
    """Copy every recognised option present in ``parser`` onto ``cfg``."""
    for section, option, _env, coerce in _OPTIONS:
        if parser.has_option(section, option):
            _assign(cfg, section, option, coerce(parser.get(section, option)))


def _apply_env_overrides(cfg: ServerConfig) -> None:
    """Apply non-empty ECON_* variables on top of file values."""
    for section, option, env_var, coerce in _OPTIONS:
        if env_var and (raw := os.getenv(env_var)):
            _assign(cfg, section, option, coerce(raw))


def load_config() -> ServerConfig:
    """Build a fresh ServerConfig from defaults, the INI file and the environment."""
    cfg = ServerConfig()

    source = next((path for path in (CONFIG_FILE, CONFIG_EXAMPLE) if path.exists()), None)
    if source is not None:
        parser = configparser.ConfigParser()
        parser.read(source)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)
    return cfg


def reload_config() -> ServerConfig:
    """
    Re-read configuration into the module-level singleton.

    Services that captured ``config.ledger`` at construction keep the settings
    they were built with.
    """
    global config
    config = load_config()
    return config


config = load_config()


# =============================================================================
# DIAGNOSTICS
# =============================================================================


def get_config_status() -> dict:
    """Where configuration came from and the settings operators ask about first."""
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "production_mode": config.is_production,
        "admin_token_configured": bool(config.security.admin_token),
        "missing_history_policy": config.ledger.missing_history_policy,
        "docs_enabled": config.docs_should_be_enabled,
    }


def print_config_summary() -> None:
    status = get_config_status()
    rule = "=" * 60
    lines = [
        "",
        rule,
        "ECONOMY LEDGER CONFIGURATION",
        rule,
        f"Config file: {status['config_file_path']}",
        f"File exists: {status['config_file_exists']}",
    ]
    if status["using_example"]:
        lines.append("WARNING: Using example config (copy to server.ini for production)")
    lines += [
        "-" * 60,
        f"Server:      {config.server.host}:{config.server.port}",
        f"Production:  {config.is_production}",
        f"Admin token: {'set' if status['admin_token_configured'] else 'NOT SET'}",
        f"Database:    {config.database.absolute_path}",
        f"Log level:   {config.logging.level}",
        f"History:     {config.ledger.missing_history_policy}",
        f"Wipe word:   {config.ledger.wipe_confirm_word}",
        rule,
        "",
    ]
    print("\n".join(lines))


# =============================================================================
# TEST HELPERS
# =============================================================================


class use_test_database:
    """
    Point the ledger at a temporary database for the duration of a block.

    Usage:
        with use_test_database(tmp_path / "ledger.db"):
            init_database()
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._previous: str | None = None

    def __enter__(self) -> Path:
        self._previous = config.database.path
        config.database.path = str(self.db_path)
        return self.db_path

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._previous is not None:
            config.database.path = self._previous
