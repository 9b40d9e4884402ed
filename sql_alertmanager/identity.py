"""Canonical alert identity derived from a label set."""

from __future__ import annotations

from collections.abc import Mapping

ALERTNAME_LABEL = "alertname"


def alert_key(labels: Mapping[str, str]) -> str:
    """Render labels as sorted ``key=value`` pairs joined by commas.

    The result only depends on the key/value pairs, never on insertion order,
    so it is stable across cycles and process restarts. An empty mapping
    yields an empty string.
    """
    if not labels:
        return ""
    return ",".join(f"{k}={labels[k]}" for k in sorted(labels))


__all__ = ["ALERTNAME_LABEL", "alert_key"]
