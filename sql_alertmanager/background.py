"""Rule evaluation loops (one asyncio task per rule)."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Protocol

from .alerting import build_conditions, missing_columns, reconcile
from .config import format_duration
from .database import QueryResult
from .errors import AlertmanagerError, QueryError
from .models.alerts import ActiveAlert, AlertRule, SubmissionAlert
from .models.metrics import RuleMetrics
from .state import AlertStateStore

logger = logging.getLogger(__name__)


class Executor(Protocol):
    async def execute(self, query: str, timeout_s: float) -> QueryResult: ...


class Alertmanager(Protocol):
    async def get_active_alerts(self, rule_name: str) -> list[ActiveAlert]: ...

    async def post_alerts(self, batch: list[SubmissionAlert]) -> None: ...


class RuleRunner:
    """Owns the evaluation task of every rule and their shared stop signal."""

    def __init__(
        self,
        executor: Executor,
        alertmanager: Alertmanager,
        store: AlertStateStore,
    ) -> None:
        self.executor = executor
        self.alertmanager = alertmanager
        self.store = store
        self.metrics: dict[str, RuleMetrics] = {}
        self.tasks: dict[str, asyncio.Task] = {}
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self, rules: Iterable[AlertRule]) -> None:
        for rule in rules:
            task = self.tasks.get(rule.name)
            if isinstance(task, asyncio.Task) and not task.done():
                continue
            self.tasks[rule.name] = asyncio.create_task(
                self._rule_loop(rule), name=f"rule:{rule.name}"
            )

    def stop(self) -> None:
        """Ask every loop to finish its current cycle and exit."""
        self._stop.set()

    async def wait(self) -> None:
        """Block until every rule loop has returned.

        With no rules running this waits for the stop signal instead.
        """
        if self.tasks:
            await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        else:
            await self._stop.wait()
        for name, metrics in self.metrics.items():
            logger.info(
                "rule=%s cycles=%d failures=%d alerts_sent=%d max_cycle=%.2fs"
                " last_error=%s",
                name,
                metrics.cycles,
                metrics.failures,
                metrics.alerts_sent,
                metrics.max_duration_s,
                metrics.last_error,
            )

    def metrics_for(self, name: str) -> RuleMetrics:
        return self.metrics.setdefault(name, RuleMetrics())

    async def _sleep(self, delay_s: float) -> bool:
        """Wait ``delay_s`` or until stopped. Returns False when stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, delay_s))
        except asyncio.TimeoutError:
            return True
        return False

    async def _rule_loop(self, rule: AlertRule) -> None:
        logger.info(
            "registered rule name=%s every=%s for=%s",
            rule.name,
            format_duration(rule.evaluate_freq_s),
            format_duration(rule.for_s),
        )
        delay = rule.evaluate_freq_s
        while await self._sleep(delay):
            start = time.monotonic()
            try:
                await self.run_cycle(rule)
            except Exception:
                logger.exception("rule=%s stage=cycle: unexpected error", rule.name)
                self._record(rule.name, time.monotonic() - start, "unexpected error")
            elapsed = time.monotonic() - start
            delay = rule.evaluate_freq_s - elapsed
            if delay < 0:
                logger.warning(
                    "rule=%s cycle took %.2fs, longer than its %s interval",
                    rule.name,
                    elapsed,
                    format_duration(rule.evaluate_freq_s),
                )
        logger.info("rule stopped name=%s", rule.name)

    def _record(
        self, name: str, duration_s: float, error: str | None, sent: int = 0
    ) -> None:
        metrics = self.metrics_for(name)
        metrics.cycles += 1
        metrics.max_duration_s = max(metrics.max_duration_s, duration_s)
        metrics.alerts_sent += sent
        if error is not None:
            metrics.failures += 1
            metrics.last_error = error

    async def run_cycle(self, rule: AlertRule) -> list[SubmissionAlert] | None:
        """Evaluate ``rule`` once and post the resulting batch.

        Returns the batch that was posted (possibly empty), or None when a
        stage failed. Failures are logged and recorded, never raised.
        """
        start = time.monotonic()
        logger.debug("rule=%s executing query: %s", rule.name, rule.query)
        try:
            result = await self.executor.execute(rule.query, rule.query_timeout_s)
        except QueryError as exc:
            logger.error("rule=%s stage=query: %s", rule.name, exc)
            self._record(rule.name, time.monotonic() - start, str(exc))
            return None

        for col in missing_columns(rule, result.columns):
            logger.warning(
                "rule=%s column missing from query result: %s", rule.name, col
            )

        conditions = build_conditions(rule, result.rows)
        if conditions:
            logger.info("rule=%s alerts found count=%d", rule.name, len(conditions))
        else:
            logger.debug("rule=%s no alerts found", rule.name)

        try:
            batch = await reconcile(rule, conditions, self.store, self.alertmanager)
        except AlertmanagerError as exc:
            logger.error("rule=%s stage=fetch: %s", rule.name, exc)
            self._record(rule.name, time.monotonic() - start, str(exc))
            return None

        if not batch:
            logger.debug("rule=%s nothing to send", rule.name)
            self._record(rule.name, time.monotonic() - start, None)
            return batch

        try:
            await self.alertmanager.post_alerts(batch)
        except AlertmanagerError as exc:
            logger.error(
                "rule=%s stage=post: count=%d code=%s error=%s body=%s",
                rule.name,
                len(batch),
                exc.status_code,
                exc,
                exc.body,
            )
            self._record(rule.name, time.monotonic() - start, str(exc))
            return None

        resolved = sum(1 for alert in batch if alert.resolved)
        logger.info(
            "rule=%s alerts sent count=%d resolved=%d",
            rule.name,
            len(batch),
            resolved,
        )
        self._record(rule.name, time.monotonic() - start, None, sent=len(batch))
        return batch


__all__ = ["RuleRunner"]
