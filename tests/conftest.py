"""Shared test fixtures and dummy classes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest

from sql_alertmanager.database import QueryResult
from sql_alertmanager.errors import AlertmanagerError
from sql_alertmanager.models.alerts import ActiveAlert, AlertRule, SubmissionAlert
from sql_alertmanager.state import AlertStateStore

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for the state store and the engine."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


class FakeAlertmanager:
    """In-memory Alertmanager keeping one open alert per label set."""

    def __init__(self) -> None:
        self.open: dict[tuple, ActiveAlert] = {}
        self.posted: list[list[SubmissionAlert]] = []
        self.get_calls: list[str] = []
        self.fail_get = False
        self.fail_post = False

    async def get_active_alerts(self, rule_name: str) -> list[ActiveAlert]:
        self.get_calls.append(rule_name)
        if self.fail_get:
            raise AlertmanagerError("connection refused")
        return [
            ActiveAlert(
                labels=dict(alert.labels),
                annotations=dict(alert.annotations),
                starts_at=alert.starts_at,
            )
            for alert in self.open.values()
            if alert.labels.get("alertname") == rule_name
        ]

    async def post_alerts(self, batch: list[SubmissionAlert]) -> None:
        if self.fail_post:
            raise AlertmanagerError("failed to send alerts: HTTP 400", 400, "bad")
        self.posted.append(list(batch))
        for alert in batch:
            ident = tuple(sorted(alert.labels.items()))
            if alert.ends_at is not None:
                self.open.pop(ident, None)
            else:
                self.open[ident] = ActiveAlert(
                    labels=dict(alert.labels),
                    annotations=dict(alert.annotations),
                    starts_at=alert.starts_at,
                )


class FakeExecutor:
    """Query executor returning canned rows."""

    def __init__(self, rows: list[dict[str, str | None]] | None = None) -> None:
        self.rows = rows or []
        self.columns: list[str] | None = None
        self.calls: list[tuple[str, float]] = []
        self.error: Exception | None = None

    async def execute(self, query: str, timeout_s: float) -> QueryResult:
        self.calls.append((query, timeout_s))
        if self.error is not None:
            raise self.error
        columns = self.columns
        if columns is None:
            columns = sorted({col for row in self.rows for col in row})
        return QueryResult(columns=list(columns), rows=[dict(r) for r in self.rows])


class FakeStatement:
    def __init__(self, columns: list[str], records: list[tuple]) -> None:
        self._columns = columns
        self._records = records

    def get_attributes(self) -> tuple:
        return tuple(SimpleNamespace(name=c) for c in self._columns)

    async def fetch(self, timeout: float | None = None) -> list[tuple]:
        return list(self._records)


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    async def prepare(self, query: str, timeout: float | None = None) -> FakeStatement:
        self._pool.queries.append(query)
        if self._pool.error is not None:
            raise self._pool.error
        return FakeStatement(self._pool.columns, self._pool.records)

    async def fetchval(self, query: str) -> Any:
        self._pool.queries.append(query)
        return 1


class _Acquire:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    async def __aenter__(self) -> FakeConnection:
        return FakeConnection(self._pool)

    async def __aexit__(self, *exc: object) -> None:
        return None


class FakePool:
    """Stand-in for ``asyncpg.Pool`` returning fixed columns and records."""

    def __init__(self, columns: list[str], records: list[tuple]) -> None:
        self.columns = columns
        self.records = records
        self.queries: list[str] = []
        self.error: Exception | None = None

    def acquire(self) -> _Acquire:
        return _Acquire(self)


def make_rule(**overrides: Any) -> AlertRule:
    values: dict[str, Any] = {
        "name": "disk_full",
        "query": "SELECT host, severity, summary FROM disks WHERE used > 0.9",
        "evaluate_freq_s": 60.0,
        "for_s": 0.0,
        "label_cols": ("host", "severity"),
        "annotation_cols": ("summary",),
    }
    values.update(overrides)
    return AlertRule(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> AlertStateStore:
    return AlertStateStore(tmp_path / "alertstate.json", clock=clock)


@pytest.fixture
def alertmanager() -> FakeAlertmanager:
    return FakeAlertmanager()
