"""
Data sources for the polling engine.

A data source knows how to fetch one page of one kind of chain data for
one account, how to tell an empty page from a full one, and how to store
a page. The poller is written against the DataSource protocol only.
"""

import asyncio
import logging
from typing import Protocol, Union

from .api_client import ChainAPIClient
from .database import MonitorDatabase
from .models import (
    Context,
    Module,
    NominationsResponse,
    RewardsSlashesResponse,
    TransfersResponse,
)

logger = logging.getLogger(__name__)

Batch = Union[TransfersResponse, RewardsSlashesResponse, NominationsResponse]


class DataSource(Protocol):
    """Capability shared by every kind of chain data the service collects."""

    @property
    def name(self) -> str:
        ...

    async def fetch_page(self, context: Context, row: int, page: int) -> Batch:
        ...

    def is_empty(self, batch: Batch) -> bool:
        ...

    async def store_batch(self, context: Context, batch: Batch) -> int:
        ...


class TransferSource:
    """Balance transfers sent or received by an account."""

    name = "TransferFetcher"

    def __init__(self, api: ChainAPIClient, db: MonitorDatabase):
        self.api = api
        self.db = db

    async def fetch_page(
        self, context: Context, row: int, page: int
    ) -> TransfersResponse:
        return await self.api.request_transfers(context, row, page)

    def is_empty(self, batch: TransfersResponse) -> bool:
        return batch.data.transfers is None

    async def store_batch(self, context: Context, batch: TransfersResponse) -> int:
        return await asyncio.to_thread(self.db.store_transfers, context, batch)


class RewardsSlashesSource:
    """Staking rewards and slashes of an account."""

    name = "RewardsSlashesFetcher"

    def __init__(self, api: ChainAPIClient, db: MonitorDatabase):
        self.api = api
        self.db = db

    async def fetch_page(
        self, context: Context, row: int, page: int
    ) -> RewardsSlashesResponse:
        return await self.api.request_rewards_slashes(context, row, page)

    def is_empty(self, batch: RewardsSlashesResponse) -> bool:
        return batch.data.items is None

    async def store_batch(
        self, context: Context, batch: RewardsSlashesResponse
    ) -> int:
        return await asyncio.to_thread(self.db.store_rewards_slashes, context, batch)


class NominationsSource:
    """
    Validators currently nominated by an account.

    The endpoint is not paginated: row and page are ignored and every call
    returns the full current state.
    """

    name = "NominationsFetcher"

    def __init__(self, api: ChainAPIClient, db: MonitorDatabase):
        self.api = api
        self.db = db

    async def fetch_page(
        self, context: Context, row: int, page: int
    ) -> NominationsResponse:
        return await self.api.request_nominations(context)

    def is_empty(self, batch: NominationsResponse) -> bool:
        return batch.data.items is None

    async def store_batch(self, context: Context, batch: NominationsResponse) -> int:
        return await asyncio.to_thread(self.db.store_nominations, context, batch)


SOURCES: dict[Module, type] = {
    Module.TRANSFER: TransferSource,
    Module.REWARDS_SLASHES: RewardsSlashesSource,
    Module.NOMINATIONS: NominationsSource,
}


def build_source(
    module: Module, api: ChainAPIClient, db: MonitorDatabase
) -> DataSource:
    """Create the data source collecting the given module."""
    return SOURCES[module](api, db)
