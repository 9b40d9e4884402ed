"""Central configuration for sql_alertmanager.

Process settings come from command-line flags whose defaults are read from
the environment. Alert rules come from a YAML file.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import yaml

from .errors import ConfigError
from .models.alerts import AlertRule
from .models.settings import Settings

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_TOP_LEVEL_KEYS = {"db", "rules"}
_RULE_KEYS = {"name", "query", "evaluateFreq", "for", "labelCols", "annotationCols"}


def parse_duration(raw: str | int | float) -> float:
    """Parse a Go-style duration into seconds.

    Accepts compound strings such as ``"1h30m"``, ``"250ms"`` or ``"2m"`` and
    bare numbers, which are taken as seconds. Raises ValueError otherwise.

    Example:
        >>> parse_duration("1m30s")
        90.0
    """
    if isinstance(raw, bool):
        raise ValueError(f"invalid duration: {raw!r}")
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValueError(f"negative duration: {raw!r}")
        return float(raw)
    text = (raw or "").strip()
    if not text:
        raise ValueError("empty duration")
    if text == "0":
        return 0.0
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {raw!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds in the shortest Go-style form (``90`` -> ``1m30s``)."""
    if seconds <= 0:
        return "0s"
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    whole = int(seconds)
    frac = seconds - whole
    hours, rest = divmod(whole, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or frac or not parts:
        parts.append(f"{secs + frac:g}s")
    return "".join(parts)


@dataclass
class RulesConfig:
    db: str | None
    rules: list[AlertRule]


def _env_duration(name: str, default: str) -> float:
    raw = os.environ.get(name) or default
    try:
        return parse_duration(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return parse_duration(default)


def _duration_arg(raw: str) -> float:
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sql-alertmanager",
        description="Evaluate SQL alert rules and keep Alertmanager in sync.",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("SQLAM_CONFIG") or "./config.yaml",
        help="path to the rules config file",
    )
    parser.add_argument(
        "--state",
        default=os.environ.get("SQLAM_STATE") or "./alertstate.json",
        help="path of the local alert state file",
    )
    parser.add_argument(
        "--alertmanager-host",
        default=os.environ.get("ALERTMANAGER_HOST") or "localhost",
        help="host[:port] of Alertmanager",
    )
    parser.add_argument(
        "--alertmanager-path",
        default=os.environ.get("ALERTMANAGER_PATH") or "/api/v2/",
        help="Alertmanager v2 API base path",
    )
    parser.add_argument(
        "--alertmanager-scheme",
        default=os.environ.get("ALERTMANAGER_SCHEME") or "http",
        choices=("http", "https"),
    )
    parser.add_argument(
        "--max-request-timeout",
        type=_duration_arg,
        default=_env_duration("MAX_REQUEST_TIMEOUT", "5s"),
        help="timeout for each Alertmanager request (e.g. 5s)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=os.environ.get("LOG_LEVEL", "").upper() == "DEBUG",
        help="show debug logs",
    )
    return parser


def read_settings(argv: Sequence[str] | None = None) -> Settings:
    """Read process settings from ``argv`` with environment defaults."""
    args = build_arg_parser().parse_args(argv)
    return Settings(
        CONFIG_PATH=args.config,
        STATE_PATH=args.state,
        ALERTMANAGER_HOST=args.alertmanager_host,
        ALERTMANAGER_PATH=args.alertmanager_path,
        ALERTMANAGER_SCHEME=args.alertmanager_scheme,
        MAX_REQUEST_TIMEOUT_S=args.max_request_timeout,
        DEBUG=args.debug,
    )


def _string_list(rule_name: str, key: str, value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"rule {rule_name!r}: {key} must be a list of strings")
    return tuple(value)


def _required_str(index: int, raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"rule #{index}: {key} is required")
    return value


def _parse_rule(index: int, raw: Any) -> AlertRule:
    if not isinstance(raw, dict):
        raise ConfigError(f"rule #{index}: expected a mapping")
    unknown = sorted(set(raw) - _RULE_KEYS)
    if unknown:
        raise ConfigError(f"rule #{index}: unknown field(s) {', '.join(unknown)}")

    name = _required_str(index, raw, "name")
    query = _required_str(index, raw, "query")
    if raw.get("evaluateFreq") is None:
        raise ConfigError(f"rule {name!r}: evaluateFreq is required")
    try:
        evaluate_freq_s = parse_duration(raw["evaluateFreq"])
        for_s = parse_duration(raw["for"]) if raw.get("for") is not None else 0.0
    except ValueError as exc:
        raise ConfigError(f"rule {name!r}: {exc}") from exc
    if evaluate_freq_s <= 0:
        raise ConfigError(f"rule {name!r}: evaluateFreq must be positive")

    return AlertRule(
        name=name,
        query=query,
        evaluate_freq_s=evaluate_freq_s,
        for_s=for_s,
        label_cols=_string_list(name, "labelCols", raw.get("labelCols")),
        annotation_cols=_string_list(name, "annotationCols", raw.get("annotationCols")),
    )


def parse_rules_config(data: Any) -> RulesConfig:
    """Validate the decoded YAML document and build the rule list."""
    if data is None:
        logger.warning("Config file is empty; no rules will be evaluated")
        return RulesConfig(db=None, rules=[])
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping with 'db' and 'rules'")
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"unknown config field(s) {', '.join(unknown)}")

    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ConfigError("'rules' must be a list")
    rules = [_parse_rule(i, raw) for i, raw in enumerate(raw_rules)]

    seen: set[str] = set()
    for rule in rules:
        if rule.name in seen:
            raise ConfigError(f"duplicate rule name {rule.name!r}")
        seen.add(rule.name)

    db = data.get("db")
    if db is not None and not isinstance(db, str):
        raise ConfigError("'db' must be a connection string")
    if rules and not db:
        raise ConfigError("'db' is required when rules are configured")
    if not rules:
        logger.warning("No rules configured")
    return RulesConfig(db=db, rules=rules)


def load_rules_config(path: str | Path) -> RulesConfig:
    """Read and validate the YAML rules file at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"error opening config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"error parsing yaml in {path}: {exc}") from exc
    return parse_rules_config(data)


__all__ = [
    "RulesConfig",
    "build_arg_parser",
    "format_duration",
    "load_rules_config",
    "parse_duration",
    "parse_rules_config",
    "read_settings",
]
