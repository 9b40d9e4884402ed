"""Async client for the Alertmanager v2 alerts API."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from .errors import AlertmanagerError
from .identity import ALERTNAME_LABEL
from .models.alerts import ActiveAlert, SubmissionAlert

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_S = 5.0


def build_client(
    host: str,
    path: str = "/api/v2/",
    scheme: str = "http",
    timeout_s: float = _DEFAULT_TIMEOUT_S,
) -> httpx.AsyncClient:
    """Create the shared httpx client rooted at the v2 API path."""
    base_path = "/" + path.strip("/") + "/" if path.strip("/") else "/"
    return httpx.AsyncClient(
        base_url=f"{scheme}://{host}{base_path}",
        timeout=timeout_s,
        headers={"Accept": "application/json"},
    )


def _matcher(rule_name: str) -> str:
    escaped = rule_name.replace("\\", "\\\\").replace('"', '\\"')
    return f'{ALERTNAME_LABEL}="{escaped}"'


class AlertmanagerClient:
    """Thin wrapper exposing the two calls the rule loops need.

    The underlying ``httpx.AsyncClient`` is shared by every rule and owned by
    the caller.
    """

    def __init__(
        self, client: httpx.AsyncClient, timeout_s: float = _DEFAULT_TIMEOUT_S
    ) -> None:
        self._client = client
        self.timeout_s = timeout_s

    async def get_active_alerts(self, rule_name: str) -> list[ActiveAlert]:
        """Return the alerts Alertmanager holds open for ``rule_name``."""
        params = {"active": "true", "filter": _matcher(rule_name)}
        try:
            resp = await self._client.get(
                "alerts", params=params, timeout=self.timeout_s
            )
        except httpx.HTTPError as exc:
            raise AlertmanagerError(f"failed to get active alerts: {exc!r}") from exc

        if not resp.is_success:
            raise AlertmanagerError(
                f"failed to get active alerts: HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise AlertmanagerError("active alerts response is not JSON") from exc
        if not isinstance(data, list):
            raise AlertmanagerError("active alerts response is not a list")
        return [ActiveAlert.from_payload(item) for item in data]

    async def post_alerts(self, batch: Sequence[SubmissionAlert]) -> None:
        """Post ``batch``. Alerts with an end time close the matching alert."""
        payload = [alert.to_payload() for alert in batch]
        try:
            resp = await self._client.post(
                "alerts", json=payload, timeout=self.timeout_s
            )
        except httpx.HTTPError as exc:
            raise AlertmanagerError(f"failed to send alerts: {exc!r}") from exc

        if not resp.is_success:
            raise AlertmanagerError(
                f"failed to send alerts: HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        logger.debug("Posted %d alert(s) to %s", len(payload), resp.request.url)


__all__ = ["AlertmanagerClient", "build_client"]
