"""
chainmon - on-chain account activity monitor for Polkadot and Kusama

Polls the Subscan API for the transfers, staking rewards/slashes and
nominations of a configured set of accounts and stores every newly
observed event exactly once in SQLite.

Features:
- One supervised poller per data kind, restarted automatically on failure
- Store-side deduplication via unique indexes (no in-process cursor)
- Shared request spacing and retry with backoff for the API
- CSV transfer reports over a time window
"""

from .models import Context, Module, Network
from .api_client import ChainAPIClient, ChainAPIError, ChainAPIRateLimitError
from .config import Config, ConfigurationError, load_config, load_accounts
from .database import MonitorDatabase, PersistenceError
from .sources import (
    DataSource,
    TransferSource,
    RewardsSlashesSource,
    NominationsSource,
    build_source,
)
from .poller import Poller, CycleStats
from .service import AccountRegistry, Supervisor, ScrapingService
from .reports import TransfersReport

__all__ = [
    # Models
    "Context",
    "Module",
    "Network",
    # API client
    "ChainAPIClient",
    "ChainAPIError",
    "ChainAPIRateLimitError",
    # Configuration
    "Config",
    "ConfigurationError",
    "load_config",
    "load_accounts",
    # Storage
    "MonitorDatabase",
    "PersistenceError",
    # Polling engine
    "DataSource",
    "TransferSource",
    "RewardsSlashesSource",
    "NominationsSource",
    "build_source",
    "Poller",
    "CycleStats",
    "AccountRegistry",
    "Supervisor",
    "ScrapingService",
    # Reports
    "TransfersReport",
]
__version__ = "0.1.0"
