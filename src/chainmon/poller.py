"""
Pagination and deduplication loop for one data source.

The poller keeps no cursor of its own. For every account it starts at
page 1 and keeps paging only while each stored page was entirely new,
relying on the database's unique index to report what was new. A restart
therefore re-derives its progress from what is already stored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from .models import Context
from .sources import DataSource

logger = logging.getLogger(__name__)

ROW_AMOUNT = 10
LOOP_INTERVAL = 300  # seconds between full passes over the accounts


@dataclass
class CycleStats:
    """Summary of one full pass over the accounts."""
    accounts: int = 0
    pages: int = 0
    stored: int = 0


class Poller:
    """
    Drives one data source over every monitored account, forever.

    Fetch or store failures are not handled here: they abort the pass and
    propagate to the supervisor, which restarts the poller from scratch.

    Example:
        poller = Poller(TransferSource(api, db), registry)
        stats = await poller.run_cycle()
    """

    def __init__(
        self,
        source: DataSource,
        contexts: Iterable[Context],
        row_amount: int = ROW_AMOUNT,
        loop_interval: float = LOOP_INTERVAL,
    ):
        """
        Args:
            source: Data source to drive
            contexts: Accounts to visit; iterated afresh on every pass
            row_amount: Entries requested per page
            loop_interval: Seconds to sleep after each full pass
        """
        self.source = source
        self.contexts = contexts
        self.row_amount = row_amount
        self.loop_interval = loop_interval

    @property
    def name(self) -> str:
        return self.source.name

    async def poll_account(self, context: Context) -> tuple[int, int]:
        """
        Collect all new entries of one account.

        Returns:
            Tuple of (pages fetched, records newly stored)
        """
        page = 1
        stored = 0

        while True:
            resp = await self.source.fetch_page(context, self.row_amount, page)

            if self.source.is_empty(resp):
                logger.debug(
                    f"{self.name}: No new entries were found for {context}, moving on..."
                )
                break

            newly_inserted = await self.source.store_batch(context, resp)
            if newly_inserted == 0:
                logger.debug(
                    f"{self.name}: No new entries were found for {context}, moving on..."
                )
                break

            stored += newly_inserted
            logger.info(f"{self.name}: {newly_inserted} new entries found for {context}")

            # A partially new page means everything newer was already stored.
            if newly_inserted < self.row_amount:
                logger.debug(
                    f"{self.name}: All new entries have been fetched for {context}, "
                    "continuing with the next accounts."
                )
                break

            page += 1

        return page, stored

    async def run_cycle(self) -> CycleStats:
        """Visit every account once."""
        stats = CycleStats()

        for context in tuple(self.contexts):
            pages, stored = await self.poll_account(context)
            stats.accounts += 1
            stats.pages += pages
            stats.stored += stored

        logger.debug(
            f"{self.name}: pass complete, {stats.accounts} accounts, "
            f"{stats.pages} pages, {stats.stored} new entries"
        )
        return stats

    async def run_forever(self) -> None:
        """Repeat full passes, pausing between them so other pollers get API time."""
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.loop_interval)
