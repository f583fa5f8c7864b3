"""
Shared pytest fixtures for all tests.

This module provides reusable fixtures for:
- Temporary directories and databases
- Sample accounts
- A scripted chain API and the data sources built on it
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from src.chainmon.database import MonitorDatabase
from src.chainmon.models import Context
from src.chainmon.sources import (
    NominationsSource,
    RewardsSlashesSource,
    TransferSource,
)

from .factories import ALICE, BOB, EVE, FakeChainAPI


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory for test files.

    The directory is automatically cleaned up after the test completes.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    return temp_dir / "test_monitor.db"


@pytest.fixture
def empty_db(temp_db_path: Path) -> MonitorDatabase:
    """Database with schema and unique indexes but no events."""
    return MonitorDatabase(str(temp_db_path))


@pytest.fixture
def accounts() -> list[Context]:
    """Alice and Bob on Polkadot, Eve on Kusama."""
    return [ALICE, BOB, EVE]


# =============================================================================
# Chain API Fixtures
# =============================================================================


@pytest.fixture
def fake_api() -> FakeChainAPI:
    """Scripted chain API with empty histories."""
    return FakeChainAPI()


@pytest.fixture
def transfer_source(fake_api: FakeChainAPI, empty_db: MonitorDatabase) -> TransferSource:
    return TransferSource(fake_api, empty_db)


@pytest.fixture
def rewards_slashes_source(
    fake_api: FakeChainAPI, empty_db: MonitorDatabase
) -> RewardsSlashesSource:
    return RewardsSlashesSource(fake_api, empty_db)


@pytest.fixture
def nominations_source(
    fake_api: FakeChainAPI, empty_db: MonitorDatabase
) -> NominationsSource:
    return NominationsSource(fake_api, empty_db)
