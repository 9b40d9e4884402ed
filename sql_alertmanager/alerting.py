"""Turn query rows into alerts and reconcile them with Alertmanager.

Each cycle sorts alerts into three buckets:

1. new alerts, which have been firing for at least the rule's ``for`` window
2. alerts Alertmanager already has open that are still firing
3. alerts Alertmanager has open that stopped firing

Buckets 1 and 2 come from the query. Bucket 3 is found by walking the open
alerts and looking for a firing alert with the same labels; whatever has no
match is sent back with an end time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Protocol

from .errors import StateFlushError
from .identity import ALERTNAME_LABEL
from .models.alerts import ActiveAlert, AlertRule, ConditionInstance, SubmissionAlert
from .state import AlertStateStore

logger = logging.getLogger(__name__)


class ActiveAlertSource(Protocol):
    async def get_active_alerts(self, rule_name: str) -> list[ActiveAlert]: ...


def build_conditions(
    rule: AlertRule, rows: Iterable[Mapping[str, str | None]]
) -> list[ConditionInstance]:
    """Translate query rows into condition instances.

    Empty and NULL values are left out. The rule name is always added as the
    ``alertname`` label, after the label columns, so no column can replace it.
    """
    conditions: list[ConditionInstance] = []
    for row in rows:
        annotations = {}
        for col in rule.annotation_cols:
            val = row.get(col) or ""
            if val:
                annotations[col] = val

        labels = {}
        for col in rule.label_cols:
            val = row.get(col) or ""
            if val:
                labels[col] = val
        labels[ALERTNAME_LABEL] = rule.name

        conditions.append(ConditionInstance(labels=labels, annotations=annotations))
    return conditions


def missing_columns(rule: AlertRule, columns: Sequence[str]) -> list[str]:
    present = set(columns)
    return [
        col
        for col in (*rule.label_cols, *rule.annotation_cols)
        if col not in present
    ]


def _mark_active(store: AlertStateStore, rule: AlertRule, key: str) -> None:
    try:
        store.mark_active(key)
    except StateFlushError as exc:
        logger.warning("rule=%s stage=state: %s (alert %s)", rule.name, exc, key)


def _mark_resolved(store: AlertStateStore, rule: AlertRule, key: str) -> None:
    try:
        store.mark_resolved(key)
    except StateFlushError as exc:
        logger.warning("rule=%s stage=state: %s (alert %s)", rule.name, exc, key)


def select_candidates(
    rule: AlertRule,
    conditions: Iterable[ConditionInstance],
    store: AlertStateStore,
    now: datetime,
) -> dict[str, SubmissionAlert]:
    """Record every firing identity and keep those past the ``for`` window.

    Returns identity -> alert in first-seen order. Instances sharing an
    identity collapse onto the first one.
    """
    candidates: dict[str, SubmissionAlert] = {}
    seen: set[str] = set()
    for condition in conditions:
        key = condition.key
        if key in seen:
            continue
        seen.add(key)
        _mark_active(store, rule, key)
        if store.should_fire(key, rule.for_s):
            candidates[key] = SubmissionAlert(
                labels=dict(condition.labels),
                annotations=dict(condition.annotations),
                starts_at=now,
            )
        else:
            logger.debug(
                "rule=%s alert %s pending (for=%ss)", rule.name, key, rule.for_s
            )
    return candidates


def merge_active(
    rule: AlertRule,
    candidates: Mapping[str, SubmissionAlert],
    active: Iterable[ActiveAlert],
    store: AlertStateStore,
    now: datetime,
) -> list[SubmissionAlert]:
    """Combine candidates with the alerts Alertmanager has open.

    A still-firing alert keeps its original start time. An open alert with no
    firing candidate is resolved at ``now`` and its debounce record dropped.
    """
    resolved: list[SubmissionAlert] = []
    handled: set[frozenset] = set()
    for existing in active:
        labelset = frozenset(existing.labels.items())
        if labelset in handled:
            continue
        handled.add(labelset)

        key = existing.key
        match = candidates.get(key)
        if match is not None and match.labels == existing.labels:
            match.starts_at = existing.starts_at
            continue

        resolved.append(
            SubmissionAlert(
                labels=dict(existing.labels),
                annotations=dict(existing.annotations),
                starts_at=existing.starts_at,
                ends_at=now,
                generator_url=existing.generator_url,
            )
        )
        _mark_resolved(store, rule, key)

    return [*candidates.values(), *resolved]


async def reconcile(
    rule: AlertRule,
    conditions: Sequence[ConditionInstance],
    store: AlertStateStore,
    alertmanager: ActiveAlertSource,
    now: datetime | None = None,
) -> list[SubmissionAlert]:
    """Compute the batch to post for one evaluation of ``rule``.

    Errors from ``alertmanager.get_active_alerts`` propagate; debounce records
    created before the failure are kept.
    """
    if now is None:
        now = store.now()
    candidates = select_candidates(rule, conditions, store, now)
    active = await alertmanager.get_active_alerts(rule.name)
    batch = merge_active(rule, candidates, active, store, now)
    logger.debug(
        "rule=%s firing=%d eligible=%d open=%d batch=%d",
        rule.name,
        len(conditions),
        len(candidates),
        len(active),
        len(batch),
    )
    return batch


__all__ = [
    "ActiveAlertSource",
    "build_conditions",
    "merge_active",
    "missing_columns",
    "reconcile",
    "select_candidates",
]
