"""Entrypoint for running sql_alertmanager.

This module loads the state file and rules, opens the database pool and the
Alertmanager client, starts one loop per rule and drains them on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Sequence

from . import config
from .alertmanager import AlertmanagerClient, build_client
from .background import RuleRunner
from .database import QueryExecutor, create_pool, ping
from .errors import SqlAlertmanagerError
from .logger import setup_logging
from .models.settings import Settings
from .state import AlertStateStore

logger = logging.getLogger(__name__)


def _install_signal_handlers(runner: RuleRunner) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down gracefully", sig.name)
        runner.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported; %s not installed", sig.name)


async def serve(settings: Settings) -> None:
    store = AlertStateStore(settings.STATE_PATH)
    store.load()

    rules_config = config.load_rules_config(settings.CONFIG_PATH)

    pool = None
    if rules_config.db:
        try:
            pool = await create_pool(rules_config.db)
            await ping(pool)
        except Exception as exc:
            if pool is not None:
                await pool.close()
            raise SqlAlertmanagerError(f"DB connection test failed: {exc}") from exc

    http_client = build_client(
        settings.ALERTMANAGER_HOST,
        settings.ALERTMANAGER_PATH,
        settings.ALERTMANAGER_SCHEME,
        settings.MAX_REQUEST_TIMEOUT_S,
    )
    try:
        runner = RuleRunner(
            QueryExecutor(pool),
            AlertmanagerClient(http_client, settings.MAX_REQUEST_TIMEOUT_S),
            store,
        )
        _install_signal_handlers(runner)
        runner.start(rules_config.rules)
        logger.info("Started %d rule(s)", len(runner.tasks))
        await runner.wait()
    finally:
        await http_client.aclose()
        if pool is not None:
            await pool.close()
    logger.info("Shutdown complete")


def run(argv: Sequence[str] | None = None) -> int:
    settings = config.read_settings(argv)
    setup_logging(settings.DEBUG)
    logger.info("Starting sql_alertmanager")
    try:
        asyncio.run(serve(settings))
    except SqlAlertmanagerError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
