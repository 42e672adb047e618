"""
Taskflow - Main Entry Point
===========================

Builds the task store, the Airtable repositories (tasks, plus observations
and the fuel ledger when their tables are configured) and the Telegram
notifier from settings and runs the periodic sync loop:

    - online:  drain pending changes, then refresh the active filter
    - offline: try a reconnect
    - poll Telegram for button presses when a bot token is configured

Run with ``python -m taskflow.main``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from taskflow.config import Settings, get_settings
from taskflow.core.errors import ConnectivityError, NoCacheAvailable, TaskflowError
from taskflow.services.airtable import (
    AirtableFuelRepository,
    AirtableObservationRepository,
    AirtableTaskRepository,
)
from taskflow.services.fuel import FuelLedger
from taskflow.services.observations import ObservationStore
from taskflow.services.state_store import build_state_store
from taskflow.services.task_store import TaskStore
from taskflow.services.telegram import TelegramNotifier

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure logging for the application (root logger defaults to WARNING)."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Services:
    store: TaskStore
    repository: AirtableTaskRepository
    notifier: Optional[TelegramNotifier] = None
    observations: Optional[ObservationStore] = None
    fuel: Optional[FuelLedger] = None


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncGenerator[Services, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Build the repositories and notifier, restore persisted state
    - Shutdown: Persist state, close HTTP clients and the state store
    """
    repository = AirtableTaskRepository.from_settings(settings)
    notifier = TelegramNotifier.from_settings(settings) if settings.telegram_configured else None
    store = TaskStore.from_settings(settings, repository, build_state_store(settings))

    observations = None
    if settings.observations_configured:
        observations = ObservationStore(
            AirtableObservationRepository.from_settings(settings),
            is_online=lambda: store.online,
        )
    fuel = None
    if settings.fuel_configured:
        fuel = FuelLedger(
            AirtableFuelRepository.from_settings(settings),
            is_online=lambda: store.online,
        )

    await store.start()
    logger.info(
        "Taskflow started (filter=%s, cache=%s, pending=%d)",
        store.active_filter.value,
        store.cache_duration.value,
        len(store.pending_changes),
    )

    try:
        yield Services(
            store=store,
            repository=repository,
            notifier=notifier,
            observations=observations,
            fuel=fuel,
        )
    finally:
        await store.close()
        await repository.aclose()
        if observations is not None:
            await observations.repository.aclose()
        if fuel is not None:
            await fuel.repository.aclose()
        if notifier is not None:
            await notifier.aclose()
        logger.info("Taskflow stopped")


async def load_records(services: Services) -> None:
    """Fetch the first page of observations and of the fuel ledger."""
    if services.observations is not None:
        try:
            observations = await services.observations.load()
            logger.info("Loaded %d observation(s)", len(observations))
        except TaskflowError as exc:
            logger.warning("Could not load observations: %s", exc.message)

    if services.fuel is not None:
        try:
            await services.fuel.load()
        except TaskflowError as exc:
            logger.warning("Could not load fuel operations: %s", exc.message)
            return
        for fuel_type, litres in services.fuel.balances.items():
            logger.info("Fuel balance %s: %.1f L", fuel_type.value, litres)


async def sync_once(store: TaskStore) -> None:
    """One pass of the sync loop."""
    if not store.online:
        try:
            await store.set_online(True)
        except ConnectivityError as exc:
            logger.info("Still offline: %s", exc.message)
        return

    try:
        report = await store.sync_pending_changes()
    except ConnectivityError as exc:
        logger.warning("Connection lost: %s", exc.message)
        await store.set_online(False)
        return
    if report.failed:
        logger.warning("%d change(s) need attention", len(store.failed_changes))


async def tick(services: Services) -> None:
    try:
        await sync_once(services.store)
    except NoCacheAvailable as exc:
        logger.info("%s", exc.message)
    except TaskflowError as exc:
        logger.error("Sync pass failed: %s", exc.message)

    if services.notifier is None:
        return
    try:
        await services.notifier.process_updates(services.store)
    except TaskflowError as exc:
        logger.error("Telegram polling failed: %s", exc.message)


async def run(settings: Settings) -> None:
    async with lifespan(settings) as services:
        try:
            await services.store.load_tasks()
        except ConnectivityError as exc:
            logger.warning("Starting offline: %s", exc.message)
            await services.store.set_online(False)
        except TaskflowError as exc:
            logger.error("Initial load failed: %s", exc.message)
        await load_records(services)

        while True:
            await asyncio.sleep(settings.POLL_INTERVAL_SECONDS)
            await tick(services)


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
