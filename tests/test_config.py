"""
webkit - Config Loader Tests
==============================

What:  get_env parsing rules, init_by_env defaults/overrides, init_by_file
       for YAML/JSON/TOML, and failure paths that must raise ConfigError.
How:   Real files under tmp_path; env isolated through the clean_env fixture.

What we test:
    ✅ Absent, empty, valid and unparseable env values for each default type
    ✅ init_by_env defaults and overrides, with no failure mode
    ✅ Every section populated from a YAML file; JSON and TOML variants
    ✅ Missing, malformed, mistyped and unsupported files raise ConfigError
    ✅ Duration strings ("200ms", "1h30m")
"""

import json
from datetime import timedelta

import pydantic
import pytest

from webkit.config import (
    DEFAULT_DB_CONN,
    Config,
    DBConf,
    LoggerConf,
    find_config_file,
    get_env,
    init_by_env,
    init_by_file,
    parse_duration,
)
from webkit.exceptions import ConfigError


class TestGetEnv:
    """Typed env lookup with fallback."""

    @pytest.mark.parametrize("default", ["fallback", 7, True, 1.5])
    def test_absent_returns_default(self, clean_env, default):
        assert get_env("WEBKIT_TEST_KEY", default) == default

    @pytest.mark.parametrize("default", ["fallback", 7, False, 1.5])
    def test_empty_returns_default(self, clean_env, default):
        clean_env.setenv("WEBKIT_TEST_KEY", "")
        assert get_env("WEBKIT_TEST_KEY", default) == default

    @pytest.mark.parametrize(
        "raw, default, expected",
        [
            ("abc", "fallback", "abc"),
            ("42", 7, 42),
            ("-3", 7, -3),
            ("+8", 7, 8),
            ("true", False, True),
            ("T", False, True),
            ("1", False, True),
            ("0", True, False),
            ("FALSE", True, False),
            ("2.5", 1.5, 2.5),
            ("1e3", 1.5, 1000.0),
            ("9223372036854775807", 7, 9223372036854775807),
            ("-9223372036854775808", 7, -9223372036854775808),
            ("-inf", 1.5, float("-inf")),
        ],
    )
    def test_valid_value_is_parsed(self, clean_env, raw, default, expected):
        clean_env.setenv("WEBKIT_TEST_KEY", raw)
        value = get_env("WEBKIT_TEST_KEY", default)
        assert value == expected
        assert type(value) is type(default)

    @pytest.mark.parametrize(
        "raw, default",
        [
            ("4x", 7),
            ("4.0", 7),
            (" 42", 7),
            ("yes", False),
            ("on", True),
            ("abc", 1.5),
            ("1_000", 1.5),
            ("\u0663", 7),
            ("9223372036854775808", 7),
            ("-9223372036854775809", 7),
            ("99999999999999999999", 7),
            ("1e500", 1.5),
            ("-1e500", 1.5),
            ("\u0663.5", 1.5),
        ],
    )
    def test_invalid_value_returns_default(self, clean_env, raw, default):
        clean_env.setenv("WEBKIT_TEST_KEY", raw)
        assert get_env("WEBKIT_TEST_KEY", default) == default

    def test_unsupported_default_type_returns_default(self, clean_env):
        clean_env.setenv("WEBKIT_TEST_KEY", "[1, 2]")
        default = ["x"]
        assert get_env("WEBKIT_TEST_KEY", default) is default


class TestInitByEnv:

    def test_defaults(self, clean_env):
        config = init_by_env()
        assert config.server.port == ":3000"
        assert config.db.type == "pg"
        assert config.db.conn == DEFAULT_DB_CONN
        assert config.db.log_level == 4
        assert config.logger.level == "INFO"
        assert config.redis is None

    def test_overrides(self, clean_env):
        clean_env.setenv("SERVER_PORT", "127.0.0.1:8080")
        clean_env.setenv("DB_TYPE", "sqlite")
        clean_env.setenv("DB_CONN", "./app.db")
        clean_env.setenv("DB_LOG_LEVEL", "2")
        clean_env.setenv("LOG_LEVEL", "debug")

        config = init_by_env()
        assert config.server.port == "127.0.0.1:8080"
        assert config.db.type == "sqlite"
        assert config.db.conn == "./app.db"
        assert config.db.log_level == 2
        assert config.logger.level == "DEBUG"

    def test_bad_values_fall_back_silently(self, clean_env):
        clean_env.setenv("DB_LOG_LEVEL", "verbose")
        clean_env.setenv("LOG_LEVEL", "loud")
        config = init_by_env()
        assert config.db.log_level == 4
        assert config.logger.level == "INFO"

    def test_repeatable(self, clean_env):
        clean_env.setenv("SERVER_PORT", ":9999")
        assert init_by_env() == init_by_env()

    def test_config_is_read_only(self, clean_env):
        config = init_by_env()
        with pytest.raises(pydantic.ValidationError):
            config.server.port = ":1"


FULL_YAML = """\
server:
  port: ":8080"
logger:
  level: warn
  max_backups: 5
db:
  type: pg
  conn: "host=db port=5432 user=app dbname=app password=secret"
  max_idle_conn: 5
  max_open_conn: 50
  max_life_time: 2
  max_idle_time: 1
  slow_query_time: 500ms
  log_level: warn
  log_colorful: true
redis:
  addr: "cache:6379"
  password: pw
  db: 2
  pool_size: 20
  dial_timeout: 2s
"""


class TestInitByFile:

    def test_yaml_populates_every_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(FULL_YAML)

        config = init_by_file(str(path))

        assert config.server.port == ":8080"
        assert config.logger.level == "WARNING"
        assert config.logger.max_backups == 5
        assert config.db.type == "pg"
        assert config.db.conn == "host=db port=5432 user=app dbname=app password=secret"
        assert config.db.max_idle_conn == 5
        assert config.db.max_open_conn == 50
        assert config.db.max_life_time == 2
        assert config.db.max_idle_time == 1
        assert config.db.slow_query_time == timedelta(milliseconds=500)
        assert config.db.log_level == 3
        assert config.db.log_colorful is True
        assert config.redis.addr == "cache:6379"
        assert config.redis.password == "pw"
        assert config.redis.db == 2
        assert config.redis.pool_size == 20
        assert config.redis.dial_timeout == timedelta(seconds=2)
        assert config.redis.read_timeout == timedelta(seconds=3)

    def test_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "server": {"port": ":7000"},
            "db": {"type": "sqlite", "conn": "app.db", "slow_query_time": 0.25},
        }))

        config = init_by_file(str(path))

        assert config.server.port == ":7000"
        assert config.db.type == "sqlite"
        assert config.db.slow_query_time == timedelta(milliseconds=250)
        assert config.logger == LoggerConf()

    def test_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            '[server]\nport = ":9000"\n\n'
            '[db]\ntype = "mysql"\nconn = "mysql://u:p@h/db"\nslow_query_time = "1.5s"\n'
        )

        config = init_by_file(str(path))

        assert config.server.port == ":9000"
        assert config.db.type == "mysql"
        assert config.db.slow_query_time == timedelta(seconds=1.5)

    def test_relative_name_found_via_config_dir(self, tmp_path, clean_env):
        (tmp_path / "app.yaml").write_text('server:\n  port: ":6000"\n')
        clean_env.setenv("WEBKIT_CONFIG_DIR", str(tmp_path))

        assert init_by_file("app.yaml").server.port == ":6000"

    def test_relative_name_found_in_config_subdir(self, tmp_path, clean_env):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "svc.yml").write_text('server:\n  port: ":6001"\n')
        clean_env.chdir(tmp_path)

        assert find_config_file("svc.yml") == (tmp_path / "config" / "svc.yml").resolve()

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server: [unclosed\n  port: :8080\n")

        with pytest.raises(ConfigError, match="config init fail"):
            init_by_file(str(path))

    def test_malformed_json_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"server": ')

        with pytest.raises(ConfigError):
            init_by_file(str(path))

    def test_wrong_field_type_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("db:\n  max_idle_conn: plenty\n")

        with pytest.raises(ConfigError):
            init_by_file(str(path))

    def test_bad_duration_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("db:\n  slow_query_time: soon\n")

        with pytest.raises(ConfigError):
            init_by_file(str(path))

    def test_non_mapping_top_level_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(ConfigError):
            init_by_file(str(path))

    def test_unknown_extension_raises(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[server]\nport=:80\n")

        with pytest.raises(ConfigError, match="unsupported config file type"):
            init_by_file(str(path))

    def test_missing_file_raises(self, tmp_path, clean_env):
        clean_env.chdir(tmp_path)
        with pytest.raises(ConfigError, match="not found"):
            init_by_file("does-not-exist-4f1c.yaml")

    def test_missing_absolute_path_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            init_by_file(str(tmp_path / "nope.yaml"))


class TestDurations:

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("200ms", timedelta(milliseconds=200)),
            ("1.5s", timedelta(seconds=1.5)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("2m3s", timedelta(minutes=2, seconds=3)),
            ("500us", timedelta(microseconds=500)),
            ("-2s", timedelta(seconds=-2)),
            ("0", timedelta(0)),
        ],
    )
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "5", "1x", "1s garbage", "s"])
    def test_parse_duration_rejects(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_dbconf_accepts_iso_and_seconds(self):
        assert DBConf(slow_query_time="PT0.1S").slow_query_time == timedelta(milliseconds=100)
        assert DBConf(slow_query_time=2).slow_query_time == timedelta(seconds=2)

    def test_dbconf_log_level_names(self):
        assert DBConf(log_level="silent").log_level == 1
        assert DBConf(log_level="error").log_level == 2
        assert DBConf(log_level="info").log_level == 4


def test_logger_conf_rejects_unknown_level():
    with pytest.raises(pydantic.ValidationError):
        LoggerConf(level="chatty")


def test_config_ignores_environment(clean_env):
    """Config() alone never reads env vars; only init_by_env() does."""
    clean_env.setenv("SERVER", '{"port": ":1234"}')
    assert Config().server.port == ":3000"
