"""Tests for the expiration sweeper."""

import asyncio
from datetime import timedelta

import pytest
from conftest import ISSUER_ID, USER_ID
from test_helpers import FailingStore

from prism_keys.keys.audit import AuditLog
from prism_keys.keys.sweeper import ExpirationSweeper
from prism_keys.models.key_models import KeyRecord, KeyTier, LogLevel


def make_key(code, clock, expires_in, owner_id=USER_ID, owner_label="player", active=True):
    return KeyRecord(
        code=code,
        ownerId=owner_id,
        ownerLabel=owner_label,
        createdAt=clock.now - timedelta(days=1),
        expiresAt=clock.now + expires_in,
        active=active,
        tier=KeyTier.SHORT_LIVED,
    )


@pytest.fixture
def sweeper(store, audit, clock):
    return ExpirationSweeper(store, audit, interval=60.0, clock=clock)


class TestSweepOnce:
    @pytest.mark.asyncio
    async def test_expires_only_past_due_active_keys(self, sweeper, store, clock):
        await store.create_key(make_key("PrismKey - PAST - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))
        await store.create_key(make_key("PrismKey - LIVE - 0000 - 0000 - 0002", clock, timedelta(hours=1)))
        await store.create_key(
            make_key("PrismKey - DONE - 0000 - 0000 - 0003", clock, timedelta(hours=-5), active=False)
        )

        report = await sweeper.sweep_once()

        assert report.expired == ["PrismKey - PAST - 0000 - 0000 - 0001"]
        assert report.failed == []
        assert (await store.get_key("PrismKey - PAST - 0000 - 0000 - 0001")).active is False
        assert (await store.get_key("PrismKey - LIVE - 0000 - 0000 - 0002")).active is True

    @pytest.mark.asyncio
    async def test_key_expiring_exactly_now_is_swept(self, sweeper, store, clock):
        await store.create_key(make_key("PrismKey - EDGE - 0000 - 0000 - 0001", clock, timedelta(0)))

        report = await sweeper.sweep_once()

        assert report.expired == ["PrismKey - EDGE - 0000 - 0000 - 0001"]

    @pytest.mark.asyncio
    async def test_one_info_entry_per_expired_key(self, sweeper, store, clock):
        await store.create_key(make_key("PrismKey - AAAA - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))
        await store.create_key(
            make_key(
                "PrismKey - BBBB - 0000 - 0000 - 0002",
                clock,
                timedelta(minutes=-2),
                owner_id=ISSUER_ID,
                owner_label="boss",
            )
        )

        await sweeper.sweep_once()

        assert len(store.logs) == 2
        assert all(entry.level is LogLevel.INFO for entry in store.logs)
        messages = {entry.message for entry in store.logs}
        assert messages == {
            "Key PrismKey - AAAA - 0000 - 0000 - 0001 expired for player",
            "Key PrismKey - BBBB - 0000 - 0000 - 0002 expired for boss",
        }
        assert {entry.actorId for entry in store.logs} == {USER_ID, ISSUER_ID}

    @pytest.mark.asyncio
    async def test_second_sweep_is_noop(self, sweeper, store, clock):
        await store.create_key(make_key("PrismKey - AAAA - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))

        await sweeper.sweep_once()
        report = await sweeper.sweep_once()

        assert report.expired == []
        assert len(store.logs) == 1

    @pytest.mark.asyncio
    async def test_failure_on_one_key_does_not_stop_the_rest(self, clock):
        store = FailingStore()
        store.expire_failures.add("PrismKey - FAIL - 0000 - 0000 - 0001")
        sweeper = ExpirationSweeper(store, AuditLog(store, clock=clock), clock=clock)
        await store.create_key(make_key("PrismKey - FAIL - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))
        await store.create_key(make_key("PrismKey - OKAY - 0000 - 0000 - 0002", clock, timedelta(minutes=-1)))

        report = await sweeper.sweep_once()

        assert report.failed == ["PrismKey - FAIL - 0000 - 0000 - 0001"]
        assert report.expired == ["PrismKey - OKAY - 0000 - 0000 - 0002"]
        assert (await store.get_key("PrismKey - FAIL - 0000 - 0000 - 0001")).active is True

    @pytest.mark.asyncio
    async def test_log_failure_does_not_stop_the_sweep(self, clock):
        store = FailingStore("append_log")
        sweeper = ExpirationSweeper(store, AuditLog(store, clock=clock), clock=clock)
        await store.create_key(make_key("PrismKey - AAAA - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))
        await store.create_key(make_key("PrismKey - BBBB - 0000 - 0000 - 0002", clock, timedelta(minutes=-1)))

        report = await sweeper.sweep_once()

        assert len(report.expired) == 2

    @pytest.mark.asyncio
    async def test_listing_failure_returns_empty_report(self, clock):
        store = FailingStore("list_all_keys")
        sweeper = ExpirationSweeper(store, AuditLog(store, clock=clock), clock=clock)

        report = await sweeper.sweep_once()

        assert report.expired == []
        assert report.failed == []


class TestSweeperLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_periodically_and_stop_cancels(self, store, audit, clock):
        sweeper = ExpirationSweeper(store, audit, interval=0.01, clock=clock)
        await store.create_key(make_key("PrismKey - AAAA - 0000 - 0000 - 0001", clock, timedelta(minutes=-1)))

        sweeper.start()
        assert sweeper.running is True
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert sweeper.running is False
        assert (await store.get_key("PrismKey - AAAA - 0000 - 0000 - 0001")).active is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, sweeper):
        sweeper.start()
        task = sweeper._task
        sweeper.start()
        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, sweeper):
        await sweeper.stop()
        assert sweeper.running is False
