"""Exception hierarchy for sql_alertmanager."""

from __future__ import annotations


class SqlAlertmanagerError(Exception):
    """Base error for sql_alertmanager."""


class ConfigError(SqlAlertmanagerError):
    """Invalid or unreadable configuration. Fatal at startup."""


class StateLoadError(SqlAlertmanagerError):
    """The persisted alert state file exists but cannot be trusted."""


class StateFlushError(SqlAlertmanagerError):
    """Writing the alert state file failed; in-memory state is still current."""


class QueryError(SqlAlertmanagerError):
    """A rule query failed or timed out."""


class AlertmanagerError(SqlAlertmanagerError):
    """Alertmanager request failed or returned an unusable response."""

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
