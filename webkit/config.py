"""
webkit - Configuration Loader
===============================

What:  Builds the process-wide `Config` record, either from environment
       variables or from a structured config file.
Why:   Every other component (logger, database, router, server) is initialized
       from this record, so it has to be complete before anything else starts.
How:   Two mutually exclusive entry points:
         init_by_env()        typed env lookups with hard-coded defaults
         init_by_file(name)   pydantic-settings file source (YAML/JSON/TOML)
                              validated into the same pydantic models
Who:   Called exactly once by `webkit.main.main()`; the returned object is
       passed explicitly to each component.
When:  First thing at process start, synchronously.

Design Decision:
    The record is a frozen pydantic model rather than a mutable module global.
    Passing it by argument keeps initialization order visible in main() and
    lets tests build any configuration they need without patching globals.

    Env mode never fails: a value that cannot be parsed as the type of its
    default silently falls back to that default. File mode has no such
    leniency; any lookup, parse or validation problem raises ConfigError.
"""

import logging
import math
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
    YamlConfigSettingsSource,
)

from webkit.exceptions import ConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Directory searched first by find_config_file()
CONFIG_DIR_ENV = "WEBKIT_CONFIG_DIR"

DEFAULT_SERVER_PORT = ":3000"
DEFAULT_DB_TYPE = "pg"
DEFAULT_DB_CONN = "host=127.0.0.1 port=5432 user=cella dbname=test password=111111"

# Database log levels (1 = silent, 2 = error, 3 = warn, 4 = info)
DB_LOG_SILENT = 1
DB_LOG_ERROR = 2
DB_LOG_WARN = 3
DB_LOG_INFO = 4

_DB_LOG_LEVEL_NAMES = {
    "silent": DB_LOG_SILENT,
    "error": DB_LOG_ERROR,
    "warn": DB_LOG_WARN,
    "warning": DB_LOG_WARN,
    "info": DB_LOG_INFO,
}


# ══════════════════════════════════════════════════════════════════════════
# Duration Parsing
# ══════════════════════════════════════════════════════════════════════════

# Units accepted in duration strings such as "200ms", "1.5s" or "1h30m"
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """
    Parse a unit-suffixed duration string into a timedelta.

    Examples: "200ms" → 0.2s, "1h30m" → 5400s, "-1.5s" → -1.5s, "0" → 0s.

    Raises:
        ValueError: If the string is empty or contains anything but
                    number+unit groups.
    """
    text = value.strip()
    sign = -1.0 if text.startswith("-") else 1.0
    text = text.lstrip("+-")
    if text == "0":
        return timedelta(0)

    total = 0.0
    pos = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def _coerce_duration(value: Any) -> Any:
    """
    Before-validator for timedelta fields.

    Unit-suffixed strings are converted here; bare numbers (seconds) and
    ISO-8601 strings ("PT0.2S") are left for pydantic's own timedelta parsing.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text.upper().lstrip("+-").startswith("P"):
        return value
    try:
        float(text)
        return value
    except ValueError:
        return parse_duration(text)


# ══════════════════════════════════════════════════════════════════════════
# Configuration Sections
# ══════════════════════════════════════════════════════════════════════════

class ServerConf(BaseModel):
    """HTTP listener settings."""

    # What: Listen address in "host:port" form; an empty host means all interfaces
    port: str = Field(default=DEFAULT_SERVER_PORT, description="Listen address")

    model_config = {"frozen": True}


class LoggerConf(BaseModel):
    """
    Root logger settings.

    Output goes to stdout when `console` is true and, when `filename` is set,
    to a size-rotated file as well.
    """

    level: str = Field(default="INFO")
    filename: str = Field(default="", description="Log file path; empty disables file output")
    max_size: int = Field(default=100, ge=1, description="Rotate after this many MB")
    max_backups: int = Field(default=3, ge=0, description="Rotated files to keep")
    console: bool = Field(default=True)

    model_config = {"frozen": True}

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Ensures the level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper == "WARN":
            upper = "WARNING"
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level '{v}'. Must be one of: {valid_levels}")
        return upper


class DBConf(BaseModel):
    """
    Database connection and pool settings.

    Pool Mapping (see webkit.database.create_engine):
        max_idle_conn    → pool_size
        max_open_conn    → pool_size + max_overflow
        max_life_time    → pool_recycle (hours)
        max_idle_time    → pool_recycle (hours; the smaller non-zero value wins)
    """

    type: str = Field(default=DEFAULT_DB_TYPE, description="pg, mysql or sqlite")
    conn: str = Field(default=DEFAULT_DB_CONN, description="URL or key=value DSN")
    max_idle_conn: int = Field(default=10, ge=0)
    max_open_conn: int = Field(default=100, ge=0)
    max_life_time: int = Field(default=1, ge=0, description="Hours")
    max_idle_time: int = Field(default=1, ge=0, description="Hours")
    slow_query_time: timedelta = Field(default=timedelta(milliseconds=200))
    log_level: int = Field(default=DB_LOG_INFO)
    log_colorful: bool = Field(default=False)

    model_config = {"frozen": True}

    @field_validator("slow_query_time", mode="before")
    @classmethod
    def validate_slow_query_time(cls, v: Any) -> Any:
        return _coerce_duration(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        """Accepts level names (silent/error/warn/info) as well as numbers."""
        if isinstance(v, str) and v.strip().lower() in _DB_LOG_LEVEL_NAMES:
            return _DB_LOG_LEVEL_NAMES[v.strip().lower()]
        return v


class RedisConf(BaseModel):
    """Cache/store client options. Carried for the application; not dialed here."""

    addr: str = Field(default="127.0.0.1:6379")
    username: str = Field(default="")
    password: str = Field(default="")
    db: int = Field(default=0, ge=0)
    pool_size: int = Field(default=10, ge=1)
    min_idle_conns: int = Field(default=0, ge=0)
    dial_timeout: timedelta = Field(default=timedelta(seconds=5))
    read_timeout: timedelta = Field(default=timedelta(seconds=3))
    write_timeout: timedelta = Field(default=timedelta(seconds=3))

    model_config = {"frozen": True}

    @field_validator("dial_timeout", "read_timeout", "write_timeout", mode="before")
    @classmethod
    def validate_timeouts(cls, v: Any) -> Any:
        return _coerce_duration(v)


class Config(BaseSettings):
    """
    The complete configuration record.

    Values come only from the constructor; implicit environment and .env
    reading is switched off so that init_by_env() and init_by_file() stay the
    only two ways a Config is populated.
    """

    server: ServerConf = Field(default_factory=ServerConf)
    logger: LoggerConf = Field(default_factory=LoggerConf)
    db: DBConf = Field(default_factory=DBConf)
    redis: Optional[RedisConf] = None

    model_config = SettingsConfigDict(
        frozen=True,
        extra="ignore",
        yaml_file_encoding="utf-8",
        json_file_encoding="utf-8",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        return (init_settings,)


# ══════════════════════════════════════════════════════════════════════════
# Environment Loading
# ══════════════════════════════════════════════════════════════════════════

_INT_RE = re.compile(r"[+-]?[0-9]+", re.ASCII)

# Env ints are 64-bit; anything wider is out of range
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1

_FLOAT_SPECIALS = {"inf", "+inf", "-inf", "infinity", "+infinity", "-infinity", "nan", "+nan", "-nan"}

_BOOL_VALUES = {
    "1": True, "t": True, "T": True, "TRUE": True, "true": True, "True": True,
    "0": False, "f": False, "F": False, "FALSE": False, "false": False, "False": False,
}


def _parse_int(raw: str) -> int:
    if not _INT_RE.fullmatch(raw):
        raise ValueError(f"invalid int {raw!r}")
    value = int(raw)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"int {raw!r} out of range")
    return value


def _parse_bool(raw: str) -> bool:
    try:
        return _BOOL_VALUES[raw]
    except KeyError:
        raise ValueError(f"invalid bool {raw!r}") from None


def _parse_float(raw: str) -> float:
    if raw != raw.strip() or "_" in raw or not raw.isascii():
        raise ValueError(f"invalid float {raw!r}")
    value = float(raw)
    if math.isinf(value) and raw.lower() not in _FLOAT_SPECIALS:
        raise ValueError(f"float {raw!r} out of range")
    return value


# Parser chosen by the exact type of the default value.
# bool is listed separately from int even though it subclasses it.
_ENV_PARSERS: Dict[type, Callable[[str], Any]] = {
    str: str,
    int: _parse_int,
    bool: _parse_bool,
    float: _parse_float,
}


def get_env(key: str, default: T) -> T:
    """
    Read an environment variable, parsed as the type of `default`.

    What:    Typed env lookup with a fallback value.
    How:     Absent or empty → default. Otherwise the parser registered for
             type(default) is applied; a parse failure also yields default.
             Defaults of an unsupported type are returned unchanged.

    Examples:
        get_env("SERVER_PORT", ":3000")   → str
        get_env("DB_LOG_LEVEL", 4)        → int ("abc" → 4)
        get_env("DEBUG", False)           → bool ("TRUE" → True)
        get_env("RATIO", 0.5)             → float
    """
    raw = os.environ.get(key, "")
    if raw == "":
        return default

    parser = _ENV_PARSERS.get(type(default))
    if parser is None:
        return default

    try:
        return parser(raw)
    except ValueError:
        return default


def init_by_env() -> Config:
    """
    Build the configuration from environment variables.

    Recognized variables (default in parentheses):
        SERVER_PORT    (":3000")
        DB_TYPE        ("pg")
        DB_CONN        ("host=127.0.0.1 port=5432 user=cella dbname=test password=111111")
        DB_LOG_LEVEL   (4)
        LOG_LEVEL      ("INFO")

    Everything else keeps its model default. The function only reads the
    environment, so calling it twice with the same environment returns equal
    objects.
    """
    log_level = get_env("LOG_LEVEL", "INFO")
    try:
        logger_conf = LoggerConf(level=log_level)
    except ValidationError:
        logger_conf = LoggerConf()

    return Config(
        server=ServerConf(port=get_env("SERVER_PORT", DEFAULT_SERVER_PORT)),
        db=DBConf(
            type=get_env("DB_TYPE", DEFAULT_DB_TYPE),
            conn=get_env("DB_CONN", DEFAULT_DB_CONN),
            log_level=get_env("DB_LOG_LEVEL", DB_LOG_INFO),
        ),
        logger=logger_conf,
    )


# ══════════════════════════════════════════════════════════════════════════
# File Loading
# ══════════════════════════════════════════════════════════════════════════

def _yaml_source(path: Path) -> PydanticBaseSettingsSource:
    return YamlConfigSettingsSource(Config, yaml_file=path)


def _json_source(path: Path) -> PydanticBaseSettingsSource:
    return JsonConfigSettingsSource(Config, json_file=path)


def _toml_source(path: Path) -> PydanticBaseSettingsSource:
    return TomlConfigSettingsSource(Config, toml_file=path)


# Format is detected from the file extension
_FILE_SOURCES: Dict[str, Callable[[Path], PydanticBaseSettingsSource]] = {
    ".yaml": _yaml_source,
    ".yml": _yaml_source,
    ".json": _json_source,
    ".toml": _toml_source,
}


def find_config_file(file_name: str) -> Path:
    """
    Locate a config file by name.

    Search order:
        1. `file_name` itself when it is an absolute path
        2. $WEBKIT_CONFIG_DIR
        3. The working directory and its `config/` subdirectory
        4. Each parent of the working directory (and its `config/`)

    Raises:
        ConfigError: If no readable file is found.
    """
    candidate = Path(file_name).expanduser()
    if candidate.is_absolute():
        if candidate.is_file():
            return candidate
        raise ConfigError(f"config file not found: {file_name}", path=file_name)

    search_dirs = []
    env_dir = os.environ.get(CONFIG_DIR_ENV, "")
    if env_dir:
        search_dirs.append(Path(env_dir).expanduser())

    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        search_dirs.append(directory)
        search_dirs.append(directory / "config")

    for directory in search_dirs:
        path = directory / candidate
        if path.is_file():
            return path.resolve()

    raise ConfigError(f"config file not found: {file_name}", path=file_name)


def init_by_file(file_name: str) -> Config:
    """
    Build the configuration from a YAML, JSON or TOML file.

    What:    Resolves the file, parses it with the pydantic-settings source
             for its extension, and validates the result into Config.
    Raises:  ConfigError for a missing file, unknown extension, parse error
             or validation error. The caller treats this as fatal.

    Example (config.yaml):
        server:
          port: ":8080"
        db:
          type: pg
          conn: postgresql://app:secret@db:5432/app
          slow_query_time: 500ms
    """
    path = find_config_file(file_name)

    make_source = _FILE_SOURCES.get(path.suffix.lower())
    if make_source is None:
        raise ConfigError(
            f"unsupported config file type '{path.suffix}'. "
            f"Supported: {', '.join(sorted(_FILE_SOURCES))}",
            path=str(path),
        )

    try:
        data = make_source(path)()
    except Exception as exc:
        raise ConfigError(f"config init fail: {exc}", path=str(path)) from exc

    if not isinstance(data, dict):
        raise ConfigError("config init fail: top level must be a mapping", path=str(path))

    try:
        config = Config(**data)
    except ValidationError as exc:
        raise ConfigError(f"config init fail: {exc}", path=str(path)) from exc

    logger.debug("Loaded configuration from %s", path)
    return config
