"""
Scraping service: one supervised poller per data source.

Each configured module gets its own asyncio task. A failing poller is
logged, paused and restarted from scratch by its supervisor without
affecting the pollers of other modules.
"""

import asyncio
import logging
from typing import Callable, Iterable, Iterator, Optional

from .api_client import ChainAPIClient
from .config import ConfigurationError
from .database import MonitorDatabase
from .models import Context, Module
from .poller import LOOP_INTERVAL, ROW_AMOUNT, Poller
from .sources import DataSource, build_source

logger = logging.getLogger(__name__)

FAILED_TASK_SLEEP = 30  # seconds before a failed poller is restarted

SourceFactory = Callable[[Module, ChainAPIClient, MonitorDatabase], DataSource]


class AccountRegistry:
    """
    Accounts shared by all pollers.

    Accounts are only added at startup. Once the first poller starts the
    registry is frozen; pollers iterate over an immutable snapshot.
    """

    def __init__(self) -> None:
        self._contexts: list[Context] = []
        self._snapshot: Optional[tuple[Context, ...]] = None

    def add(self, contexts: Iterable[Context]) -> None:
        if self._snapshot is not None:
            raise ConfigurationError("accounts cannot be added once pollers are running")
        self._contexts.extend(contexts)

    def freeze(self) -> None:
        if self._snapshot is None:
            self._snapshot = tuple(self._contexts)

    @property
    def frozen(self) -> bool:
        return self._snapshot is not None

    def __iter__(self) -> Iterator[Context]:
        if self._snapshot is not None:
            return iter(self._snapshot)
        return iter(tuple(self._contexts))

    def __len__(self) -> int:
        return len(self._contexts)


class Supervisor:
    """
    Keeps one poller running forever.

    Any exception escaping the poller is logged with the data source
    name, followed by a cooldown and a fresh start. Cancellation is the
    only way out.
    """

    def __init__(self, poller: Poller, cooldown: float = FAILED_TASK_SLEEP):
        self.poller = poller
        self.cooldown = cooldown
        self.restarts = 0

    async def run(self) -> None:
        while True:
            try:
                await self.poller.run_forever()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.restarts += 1
                logger.error(
                    f"Failed task while running fetcher '{self.poller.name}': {e!r}"
                )

            await asyncio.sleep(self.cooldown)


class ScrapingService:
    """
    Owns the account registry and the per-module supervisors.

    Example:
        service = ScrapingService(db, api)
        service.add_accounts(accounts)
        for module in config.collection.modules:
            service.run(module)
        await service.wait_forever()
    """

    def __init__(
        self,
        db: MonitorDatabase,
        api: ChainAPIClient,
        row_amount: int = ROW_AMOUNT,
        loop_interval: float = LOOP_INTERVAL,
        failed_task_sleep: float = FAILED_TASK_SLEEP,
        source_factory: SourceFactory = build_source,
    ):
        self.db = db
        self.api = api
        self.row_amount = row_amount
        self.loop_interval = loop_interval
        self.failed_task_sleep = failed_task_sleep
        self.source_factory = source_factory

        self.registry = AccountRegistry()
        self._supervisors: dict[Module, Supervisor] = {}
        self._tasks: dict[Module, asyncio.Task] = {}

    @property
    def running(self) -> set[Module]:
        return set(self._supervisors)

    def add_accounts(self, contexts: Iterable[Context]) -> None:
        """Add accounts to monitor. Only valid before the first run()."""
        self.registry.add(contexts)

    def run(self, module: Module) -> None:
        """
        Start the supervised poller for a module as a background task.

        Raises:
            ConfigurationError: If the module is already running
        """
        if module in self._supervisors:
            raise ConfigurationError(
                "configuration contains the same module multiple times"
            )

        self.registry.freeze()

        source = self.source_factory(module, self.api, self.db)
        poller = Poller(
            source,
            self.registry,
            row_amount=self.row_amount,
            loop_interval=self.loop_interval,
        )
        supervisor = Supervisor(poller, cooldown=self.failed_task_sleep)

        self._supervisors[module] = supervisor
        self._tasks[module] = asyncio.create_task(
            supervisor.run(), name=f"poller-{module.value}"
        )
        logger.info(f"Started {source.name} for {len(self.registry)} accounts")

    def restarts(self, module: Module) -> int:
        """How many times the poller of a module has been restarted after a failure."""
        return self._supervisors[module].restarts

    async def wait_forever(self) -> None:
        """Park the caller; pollers run until the process ends or stop() is called."""
        await asyncio.Event().wait()

    async def stop(self) -> None:
        """Cancel every poller task and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("All pollers stopped")
