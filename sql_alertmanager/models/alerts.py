"""Alert rule and alert payload dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import AlertmanagerError
from ..identity import alert_key
from ..utils import format_timestamp, parse_timestamp


@dataclass(frozen=True)
class AlertRule:
    name: str
    query: str
    evaluate_freq_s: float
    for_s: float = 0.0
    label_cols: tuple[str, ...] = ()
    annotation_cols: tuple[str, ...] = ()

    @property
    def query_timeout_s(self) -> float:
        return self.evaluate_freq_s / 2


@dataclass
class ConditionInstance:
    """One query row translated into labels and annotations."""

    labels: dict[str, str]
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return alert_key(self.labels)


@dataclass
class ActiveAlert:
    """An alert Alertmanager currently reports as open."""

    labels: dict[str, str]
    annotations: dict[str, str]
    starts_at: datetime
    generator_url: str | None = None

    @property
    def key(self) -> str:
        return alert_key(self.labels)

    @classmethod
    def from_payload(cls, item: Any) -> "ActiveAlert":
        """Build from one item of ``GET /api/v2/alerts``."""
        if not isinstance(item, dict):
            raise AlertmanagerError(f"unexpected alert payload: {item!r}")
        labels = item.get("labels")
        if not isinstance(labels, dict):
            raise AlertmanagerError("alert payload has no labels")
        try:
            starts_at = parse_timestamp(item.get("startsAt"))
        except ValueError as exc:
            raise AlertmanagerError(f"alert payload has invalid startsAt: {exc}") from exc
        annotations = item.get("annotations") or {}
        if not isinstance(annotations, dict):
            raise AlertmanagerError("alert payload has invalid annotations")
        return cls(
            labels={str(k): str(v) for k, v in labels.items()},
            annotations={str(k): str(v) for k, v in annotations.items()},
            starts_at=starts_at,
            generator_url=item.get("generatorURL") or None,
        )


@dataclass
class SubmissionAlert:
    """Outbound alert; ``ends_at`` set means the alert is resolved."""

    labels: dict[str, str]
    annotations: dict[str, str]
    starts_at: datetime
    ends_at: datetime | None = None
    generator_url: str | None = None

    @property
    def resolved(self) -> bool:
        return self.ends_at is not None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": format_timestamp(self.starts_at),
        }
        if self.ends_at is not None:
            payload["endsAt"] = format_timestamp(self.ends_at)
        if self.generator_url:
            payload["generatorURL"] = self.generator_url
        return payload
