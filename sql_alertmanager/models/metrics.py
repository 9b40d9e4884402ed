"""Per-rule evaluation metrics dataclass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RuleMetrics:
    cycles: int = 0
    failures: int = 0
    alerts_sent: int = 0
    last_error: str | None = None
    max_duration_s: float = 0.0
