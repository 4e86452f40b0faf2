"""Tests for the delivery dispatcher."""

from datetime import datetime

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from defi_alerts.alerter.dispatcher import DeliveryDispatcher
from defi_alerts.evaluator.models import AlertStatus, FixedClock
from defi_alerts.reconciler import fingerprint
from defi_alerts.storage.repos import AlertDTO, AlertRepository, DeliveryRepository


async def create_pending(session: AsyncSession, candidate, *, now: datetime) -> AlertDTO:
    alert, _ = await AlertRepository(session).upsert_by_fingerprint(
        fingerprint(candidate.kind, candidate.identity), candidate, now=now
    )
    await session.commit()
    return alert


async def deliveries_for(session: AsyncSession, alert_id: str):
    grouped = await DeliveryRepository(session).list_for_alerts([alert_id])
    return list(reversed(grouped[alert_id]))


class TestDispatchSuccess:
    @pytest.mark.asyncio
    async def test_all_channels_deliver_and_alert_is_dispatched(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        console, webhook = make_channel("console"), make_channel("webhook")

        result = await DeliveryDispatcher(async_session, [console, webhook], clock=clock).dispatch_pending()

        assert result.alerts_considered == 1
        assert result.alerts_dispatched == 1
        assert result.success_count == 2
        assert console.calls == [alert.id]
        assert webhook.calls == [alert.id]
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.DISPATCHED
        records = await deliveries_for(async_session, alert.id)
        assert [(d.channel, d.success) for d in records] == [("console", True), ("webhook", True)]

    @pytest.mark.asyncio
    async def test_one_success_is_enough_to_promote(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        channels = [make_channel("console", succeed=False), make_channel("webhook")]

        result = await DeliveryDispatcher(async_session, channels, clock=clock).dispatch_pending()

        assert result.alerts_dispatched == 1
        assert result.stats_for("console").failed == 1
        assert result.stats_for("webhook").delivered == 1
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.DISPATCHED


class TestDispatchFailure:
    @pytest.mark.asyncio
    async def test_all_failed_stays_pending_and_retries(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        webhook = make_channel("webhook", succeed=False)
        dispatcher = DeliveryDispatcher(async_session, [webhook], clock=clock)

        first = await dispatcher.dispatch_pending()
        second = await dispatcher.dispatch_pending()

        assert first.alerts_dispatched == 0
        assert second.alerts_considered == 1
        assert webhook.calls == [alert.id, alert.id]
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.PENDING
        records = await deliveries_for(async_session, alert.id)
        assert [d.success for d in records] == [False, False]

    @pytest.mark.asyncio
    async def test_exception_is_recorded_and_isolated(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        broken = make_channel("webhook", error=httpx.ConnectError("connection refused"))
        console = make_channel("console")

        result = await DeliveryDispatcher(async_session, [broken, console], clock=clock).dispatch_pending()

        assert result.alerts_dispatched == 1
        assert console.calls == [alert.id]
        records = await deliveries_for(async_session, alert.id)
        assert records[0].channel == "webhook"
        assert records[0].success is False
        assert records[0].metadata["error"] == "connection refused"
        assert records[0].metadata["attempted_at"] == clock.now().isoformat()

    @pytest.mark.asyncio
    async def test_timeout_is_recorded_as_failure(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        slow = make_channel("webhook", delay=1.0)

        result = await DeliveryDispatcher(
            async_session, [slow], timeout_seconds=0.05, clock=clock
        ).dispatch_pending()

        assert result.failure_count == 1
        [record] = await deliveries_for(async_session, alert.id)
        assert record.success is False
        assert "timed out" in record.metadata["error"]
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.PENDING


class TestPerChannelIdempotency:
    @pytest.mark.asyncio
    async def test_succeeded_channel_is_never_retried(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        console = make_channel("console")
        webhook = make_channel("webhook", succeed=False)
        dispatcher = DeliveryDispatcher(async_session, [console, webhook], clock=clock)

        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        await dispatcher.dispatch_pending()

        # Condition recurs: the alert is forced back to pending.
        clock.advance(minutes=10)
        await create_pending(async_session, make_candidate(), now=clock.now())
        webhook.succeed = True
        result = await dispatcher.dispatch_pending()

        assert console.calls == [alert.id]
        assert webhook.calls == [alert.id, alert.id]
        assert result.stats_for("console").skipped == 1
        assert result.stats_for("webhook").delivered == 1
        assert result.alerts_dispatched == 1

    @pytest.mark.asyncio
    async def test_prior_success_promotes_reopened_alert(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        console = make_channel("console")
        dispatcher = DeliveryDispatcher(async_session, [console], clock=clock)
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        await dispatcher.dispatch_pending()

        await create_pending(async_session, make_candidate(), now=clock.now())
        result = await dispatcher.dispatch_pending()

        assert console.calls == [alert.id]
        assert result.alerts_dispatched == 1
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_acknowledgement_does_not_count_as_delivery(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        await AlertRepository(async_session).acknowledge(alert.id, now=clock.now())
        await async_session.commit()

        # Condition recurs after the acknowledgement.
        clock.advance(minutes=10)
        await create_pending(async_session, make_candidate(), now=clock.now())
        webhook = make_channel("webhook", succeed=False)
        result = await DeliveryDispatcher(async_session, [webhook], clock=clock).dispatch_pending()

        assert webhook.calls == [alert.id]
        assert result.alerts_dispatched == 0
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.PENDING


class TestChannelNames:
    def test_acknowledgement_channel_name_rejected(self, async_session: AsyncSession, make_channel) -> None:
        with pytest.raises(ValueError, match="reserved"):
            DeliveryDispatcher(async_session, [make_channel("ack")])

    @pytest.mark.asyncio
    async def test_duplicate_names_keep_first_channel(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        first = make_channel("console", succeed=False)
        second = make_channel("console")

        result = await DeliveryDispatcher(async_session, [first, second], clock=clock).dispatch_pending()

        assert first.calls == [alert.id]
        assert second.calls == []
        assert result.stats_for("console").failed == 1
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.PENDING


class TestDispatchBatch:
    @pytest.mark.asyncio
    async def test_batch_limit_takes_oldest(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        ids = []
        for opp in ("a", "b", "c"):
            ids.append((await create_pending(async_session, make_candidate(opportunity_id=opp), now=clock.now())).id)
            clock.advance(minutes=1)
        console = make_channel("console")

        result = await DeliveryDispatcher(async_session, [console], batch_limit=2, clock=clock).dispatch_pending()

        assert result.alerts_considered == 2
        assert console.calls == ids[:2]

    @pytest.mark.asyncio
    async def test_no_channels_leaves_alerts_pending(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())

        result = await DeliveryDispatcher(async_session, [], clock=clock).dispatch_pending()

        assert result.alerts_considered == 0
        assert result.channels == {}
        assert (await AlertRepository(async_session).get_by_id(alert.id)).status is AlertStatus.PENDING

    @pytest.mark.asyncio
    async def test_non_pending_alerts_are_ignored(
        self, async_session: AsyncSession, clock: FixedClock, make_candidate, make_channel
    ) -> None:
        alert = await create_pending(async_session, make_candidate(), now=clock.now())
        await AlertRepository(async_session).acknowledge(alert.id, now=clock.now())
        console = make_channel("console")

        result = await DeliveryDispatcher(async_session, [console], clock=clock).dispatch_pending()

        assert result.alerts_considered == 0
        assert console.calls == []
