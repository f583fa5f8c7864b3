"""
Tests for the scraping service, its supervisors and the account registry.
"""

import asyncio
import logging

import pytest

from src.chainmon.config import ConfigurationError
from src.chainmon.database import TRANSFER_EVENTS_RAW
from src.chainmon.models import Module
from src.chainmon.service import AccountRegistry, ScrapingService, Supervisor
from src.chainmon.poller import Poller
from src.chainmon.sources import build_source

from .factories import ALICE, BOB, EVE, generate_transfers


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def service(fake_api, empty_db) -> ScrapingService:
    """Service with a long pass interval and no failure cooldown."""
    return ScrapingService(
        empty_db,
        fake_api,
        row_amount=10,
        loop_interval=3600,
        failed_task_sleep=0,
    )


class TestAccountRegistry:
    """Tests for the startup-only account list."""

    def test_add_and_iterate(self):
        registry = AccountRegistry()
        registry.add([ALICE, BOB])
        registry.add([EVE])

        assert list(registry) == [ALICE, BOB, EVE]
        assert len(registry) == 3

    def test_add_after_freeze_rejected(self):
        registry = AccountRegistry()
        registry.add([ALICE])
        registry.freeze()

        with pytest.raises(ConfigurationError):
            registry.add([BOB])

        assert list(registry) == [ALICE]
        assert registry.frozen


class TestRegistration:
    """Tests for ScrapingService.run()."""

    @pytest.mark.asyncio
    async def test_duplicate_module_rejected(self, service):
        service.add_accounts([ALICE])
        service.run(Module.TRANSFER)

        with pytest.raises(ConfigurationError, match="same module"):
            service.run(Module.TRANSFER)

        assert service.running == {Module.TRANSFER}
        assert len(service._tasks) == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_run_does_not_block(self, service, fake_api):
        service.add_accounts([ALICE])

        service.run(Module.TRANSFER)
        service.run(Module.NOMINATIONS)

        assert service.running == {Module.TRANSFER, Module.NOMINATIONS}
        await wait_until(lambda: len(fake_api.calls) >= 2)
        await service.stop()

    @pytest.mark.asyncio
    async def test_accounts_frozen_after_run(self, service):
        service.add_accounts([ALICE])
        service.run(Module.TRANSFER)

        with pytest.raises(ConfigurationError):
            service.add_accounts([BOB])
        await service.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_tasks(self, service):
        service.add_accounts([ALICE])
        service.run(Module.TRANSFER)

        await service.stop()

        assert all(task.done() for task in service._tasks.values())


class TestSupervisor:
    """Tests for restart-after-failure behaviour."""

    @pytest.mark.asyncio
    async def test_restarts_after_each_failure(
        self, fake_api, nominations_source, caplog
    ):
        caplog.set_level(logging.ERROR)
        fake_api.fail_nominations = 3
        supervisor = Supervisor(
            Poller(nominations_source, [ALICE], loop_interval=3600), cooldown=0
        )

        task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: len(fake_api.calls) >= 4)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        failures = [
            r for r in caplog.records
            if "Failed task while running fetcher 'NominationsFetcher'" in r.getMessage()
        ]
        assert supervisor.restarts == 3
        assert len(failures) == 3

    @pytest.mark.asyncio
    async def test_cooldown_before_restart(self, fake_api, nominations_source):
        fake_api.fail_nominations = -1
        supervisor = Supervisor(
            Poller(nominations_source, [ALICE], loop_interval=3600), cooldown=3600
        )

        task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: supervisor.restarts == 1)
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(fake_api.calls) == 1


class TestFailureIsolation:
    """A failing module never affects the others."""

    @pytest.mark.asyncio
    async def test_failing_nominations_do_not_stop_transfers(
        self, service, fake_api, empty_db
    ):
        fake_api.transfers[ALICE.stash] = generate_transfers(25, ALICE)
        fake_api.fail_nominations = -1
        service.add_accounts([ALICE, BOB])

        service.run(Module.NOMINATIONS)
        service.run(Module.TRANSFER)

        await wait_until(lambda: service.restarts(Module.NOMINATIONS) >= 5)
        await wait_until(
            lambda: len(fake_api.calls_for("transfers")) == 4
        )
        await asyncio.sleep(0.05)
        await service.stop()

        # Alice: pages 1-3, Bob: page 1, then the pass sleeps.
        assert len(fake_api.calls_for("transfers")) == 4
        assert service.restarts(Module.TRANSFER) == 0
        assert empty_db.count_events()[TRANSFER_EVENTS_RAW] == 25

    @pytest.mark.asyncio
    async def test_each_module_gets_its_own_source(self, fake_api, empty_db):
        built = []

        def factory(module, api, db):
            built.append(module)
            return build_source(module, api, db)

        service = ScrapingService(
            empty_db, fake_api, loop_interval=3600, source_factory=factory
        )
        service.add_accounts([ALICE])
        for module in Module:
            service.run(module)

        assert built == list(Module)
        await service.stop()


class TestWaitForever:

    @pytest.mark.asyncio
    async def test_wait_forever_blocks(self, service):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(service.wait_forever(), timeout=0.05)
