import os
from unittest import mock

import pytest

from sql_alertmanager import config
from sql_alertmanager.errors import ConfigError

RULES_YAML = """
db: postgres://alerts@localhost/metrics
rules:
  - name: disk_full
    query: SELECT host, summary FROM disks WHERE used > 0.9
    evaluateFreq: 1m
    for: 5m
    labelCols: [host]
    annotationCols: [summary]
  - name: replication_lag
    query: SELECT 1
    evaluateFreq: 30
"""


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("30s", 30.0),
        ("5m", 300.0),
        ("1h30m", 5400.0),
        ("250ms", 0.25),
        ("1.5h", 5400.0),
        ("0", 0.0),
        (45, 45.0),
        (2.5, 2.5),
    ],
)
def test_parse_duration(raw, expected):
    assert config.parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "5", "m", "5 m", "5d", "-5s", True, -1])
def test_parse_duration_rejects(raw):
    with pytest.raises(ValueError):
        config.parse_duration(raw)


def test_format_duration():
    assert config.format_duration(0) == "0s"
    assert config.format_duration(0.25) == "250ms"
    assert config.format_duration(90) == "1m30s"
    assert config.format_duration(3600) == "1h"
    assert config.format_duration(5400) == "1h30m"


def test_load_rules_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(RULES_YAML)

    conf = config.load_rules_config(path)

    assert conf.db == "postgres://alerts@localhost/metrics"
    disk, lag = conf.rules
    assert disk.name == "disk_full"
    assert disk.evaluate_freq_s == 60.0
    assert disk.for_s == 300.0
    assert disk.query_timeout_s == 30.0
    assert disk.label_cols == ("host",)
    assert disk.annotation_cols == ("summary",)
    assert lag.evaluate_freq_s == 30.0
    assert lag.for_s == 0.0
    assert lag.label_cols == ()


def test_load_rules_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="error opening config file"):
        config.load_rules_config(tmp_path / "nope.yaml")


def test_load_rules_config_bad_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("rules: [unclosed")
    with pytest.raises(ConfigError, match="error parsing yaml"):
        config.load_rules_config(path)


def test_empty_config_has_no_rules():
    conf = config.parse_rules_config(None)
    assert conf.rules == []
    assert conf.db is None


@pytest.mark.parametrize(
    "data, message",
    [
        ({"rules": [], "extra": 1}, "unknown config field"),
        ({"db": "x", "rules": [{"name": "a", "query": "q", "evaluateFreq": "1m", "labels": []}]}, "unknown field"),
        ({"db": "x", "rules": [{"query": "q", "evaluateFreq": "1m"}]}, "name is required"),
        ({"db": "x", "rules": [{"name": "a", "evaluateFreq": "1m"}]}, "query is required"),
        ({"db": "x", "rules": [{"name": "a", "query": "q"}]}, "evaluateFreq is required"),
        ({"db": "x", "rules": [{"name": "a", "query": "q", "evaluateFreq": "0s"}]}, "must be positive"),
        ({"db": "x", "rules": [{"name": "a", "query": "q", "evaluateFreq": "soon"}]}, "invalid duration"),
        ({"db": "x", "rules": [{"name": "a", "query": "q", "evaluateFreq": "1m", "labelCols": "host"}]}, "labelCols"),
        ({"rules": [{"name": "a", "query": "q", "evaluateFreq": "1m"}]}, "'db' is required"),
        (
            {
                "db": "x",
                "rules": [
                    {"name": "a", "query": "q", "evaluateFreq": "1m"},
                    {"name": "a", "query": "q2", "evaluateFreq": "1m"},
                ],
            },
            "duplicate rule name",
        ),
        (["not", "a", "mapping"], "must be a mapping"),
    ],
)
def test_parse_rules_config_rejects(data, message):
    with pytest.raises(ConfigError, match=message):
        config.parse_rules_config(data)


def test_settings_defaults():
    with mock.patch.dict(os.environ, {}, clear=True):
        settings = config.read_settings([])
        assert settings.CONFIG_PATH == "./config.yaml"
        assert settings.STATE_PATH == "./alertstate.json"
        assert settings.ALERTMANAGER_HOST == "localhost"
        assert settings.ALERTMANAGER_PATH == "/api/v2/"
        assert settings.ALERTMANAGER_SCHEME == "http"
        assert settings.MAX_REQUEST_TIMEOUT_S == 5.0
        assert settings.DEBUG is False


def test_settings_from_env_and_flags():
    env = {
        "ALERTMANAGER_HOST": "am:9093",
        "MAX_REQUEST_TIMEOUT": "10s",
        "SQLAM_STATE": "/data/state.json",
        "LOG_LEVEL": "debug",
    }
    with mock.patch.dict(os.environ, env, clear=True):
        settings = config.read_settings(["--config", "/etc/rules.yaml"])
        assert settings.ALERTMANAGER_HOST == "am:9093"
        assert settings.MAX_REQUEST_TIMEOUT_S == 10.0
        assert settings.STATE_PATH == "/data/state.json"
        assert settings.CONFIG_PATH == "/etc/rules.yaml"
        assert settings.DEBUG is True


def test_settings_invalid_env_duration_falls_back():
    with mock.patch.dict(os.environ, {"MAX_REQUEST_TIMEOUT": "soon"}, clear=True):
        settings = config.read_settings([])
        assert settings.MAX_REQUEST_TIMEOUT_S == 5.0


def test_settings_invalid_flag_duration_exits():
    with mock.patch.dict(os.environ, {}, clear=True):
        with pytest.raises(SystemExit):
            config.read_settings(["--max-request-timeout", "soon"])
