"""
Unit tests for the tracking scheduler.

Telemetry, store and vehicle lookups are AsyncMocks; intervals are kept short
so the periodic behaviour can be observed with real sleeps.
"""
import asyncio

import pytest

from tracking_service.exceptions import (
    AlreadyTrackingError, NoTrackingReferenceError, RemoteError,
    StoreWriteError, VehicleNotFoundError
)


def writes_for(store, delivery_id):
    return [c for c in store.write_sample.call_args_list if c.args[1] == delivery_id]


@pytest.mark.asyncio
async def test_start_creates_single_session(scheduler, store):
    info = await scheduler.start_delivery_tracking("del-1", "veh-1", 30)

    assert info.delivery_id == "del-1"
    assert info.vehicle_id == "veh-1"
    assert info.interval_seconds == 30
    stats = await scheduler.get_tracking_stats()
    assert stats.active_trackings == 1
    assert stats.deliveries[0].delivery_id == "del-1"
    # immediate first sample
    assert len(writes_for(store, "del-1")) == 1

    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_duplicate_start_is_rejected(scheduler):
    first = await scheduler.start_delivery_tracking("del-1", "veh-1", 30)

    with pytest.raises(AlreadyTrackingError):
        await scheduler.start_delivery_tracking("del-1", "veh-1", 5)

    stats = await scheduler.get_tracking_stats()
    assert stats.active_trackings == 1
    assert stats.deliveries[0].start_time == first.start_time
    assert stats.deliveries[0].interval_seconds == 30

    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_concurrent_duplicate_starts(scheduler):
    results = await asyncio.gather(
        scheduler.start_delivery_tracking("del-1", "veh-1", 30),
        scheduler.start_delivery_tracking("del-1", "veh-1", 30),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadyTrackingError) for r in results) == 1
    assert (await scheduler.get_tracking_stats()).active_trackings == 1

    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_vehicle_without_tracking_reference_fails_fast(scheduler, telemetry):
    with pytest.raises(NoTrackingReferenceError):
        await scheduler.start_delivery_tracking("del-2", "veh-2", 30)

    assert not scheduler.is_tracking("del-2")
    assert (await scheduler.get_tracking_stats()).active_trackings == 0
    telemetry.search_unit_by_id.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_vehicle_is_not_tracked(scheduler):
    with pytest.raises(VehicleNotFoundError):
        await scheduler.start_delivery_tracking("del-3", "missing", 30)
    assert not scheduler.is_tracking("del-3")


@pytest.mark.asyncio
async def test_invalid_interval_is_rejected(scheduler):
    with pytest.raises(ValueError):
        await scheduler.start_delivery_tracking("del-1", "veh-1", 0)


@pytest.mark.asyncio
@pytest.mark.timeout(10)
@pytest.mark.parametrize("hang_in", ["vehicle_lookup", "initial_fetch"])
async def test_cancelled_start_releases_reservation(scheduler, telemetry, vehicles, hang_in):
    never = asyncio.Event()
    lookup = vehicles.get_vehicle.side_effect

    async def hang(*args, **kwargs):
        await never.wait()

    if hang_in == "vehicle_lookup":
        vehicles.get_vehicle.side_effect = hang
    else:
        telemetry.search_unit_by_id.side_effect = hang

    start = asyncio.create_task(scheduler.start_delivery_tracking("del-1", "veh-1", 30))
    await asyncio.sleep(0.05)
    start.cancel()
    with pytest.raises(asyncio.CancelledError):
        await start

    assert not scheduler.is_tracking("del-1")
    assert (await scheduler.get_tracking_stats()).active_trackings == 0

    vehicles.get_vehicle.side_effect = lookup
    telemetry.search_unit_by_id.side_effect = None
    info = await scheduler.start_delivery_tracking("del-1", "veh-1", 30)
    assert info.delivery_id == "del-1"
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_initial_failure_does_not_prevent_tracking(scheduler, telemetry):
    telemetry.search_unit_by_id.side_effect = RemoteError("provider down")

    info = await scheduler.start_delivery_tracking("del-1", "veh-1", 30)

    assert info.delivery_id == "del-1"
    assert scheduler.is_tracking("del-1")
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_stop_unknown_delivery_is_not_an_error(scheduler):
    await scheduler.start_delivery_tracking("del-1", "veh-1", 30)

    result = await scheduler.stop_delivery_tracking("never-started")

    assert result.success is False
    assert result.message == "No active tracking found"
    assert (await scheduler.get_tracking_stats()).active_trackings == 1
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
async def test_stop_returns_duration_and_removes_session(scheduler):
    await scheduler.start_delivery_tracking("del-1", "veh-1", 30)

    result = await scheduler.stop_delivery_tracking("del-1")

    assert result.success is True
    assert result.duration == 0
    assert not scheduler.is_tracking("del-1")
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_ticks_follow_interval(scheduler, store):
    await scheduler.start_delivery_tracking("del-1", "veh-1", 1)

    await asyncio.sleep(3.5)

    assert 3 <= len(writes_for(store, "del-1")) <= 4
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_failed_tick_does_not_stop_timer(scheduler, telemetry, store, unit_payload):
    calls = {"n": 0}

    async def flaky(unit_id, flags=256):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RemoteError("provider glitch")
        return unit_payload()

    telemetry.search_unit_by_id.side_effect = flaky
    await scheduler.start_delivery_tracking("del-1", "veh-1", 0.2)

    await asyncio.sleep(0.7)

    assert calls["n"] >= 3
    assert len(writes_for(store, "del-1")) >= 2
    assert scheduler.is_tracking("del-1")
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_store_failure_does_not_stop_timer(scheduler, store):
    store.write_sample.side_effect = StoreWriteError("influx down")
    await scheduler.start_delivery_tracking("del-1", "veh-1", 0.1)

    await asyncio.sleep(0.35)

    assert store.write_sample.await_count >= 3
    assert scheduler.is_tracking("del-1")
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_at_most_one_cycle_in_flight(scheduler, telemetry, unit_payload):
    state = {"running": 0, "peak": 0}

    async def slow(unit_id, flags=256):
        state["running"] += 1
        state["peak"] = max(state["peak"], state["running"])
        await asyncio.sleep(0.25)
        state["running"] -= 1
        return unit_payload()

    telemetry.search_unit_by_id.side_effect = slow
    await scheduler.start_delivery_tracking("del-1", "veh-1", 0.05)

    await asyncio.sleep(0.8)

    assert state["peak"] == 1
    await scheduler.stop_all_trackings()


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_stop_prevents_further_writes(scheduler, store):
    await scheduler.start_delivery_tracking("del-1", "veh-1", 0.1)
    await asyncio.sleep(0.25)

    await scheduler.stop_delivery_tracking("del-1")
    await asyncio.sleep(0.01)
    written = len(writes_for(store, "del-1"))
    await asyncio.sleep(0.3)

    assert len(writes_for(store, "del-1")) == written


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_stop_all_drains_every_session(scheduler, store):
    for delivery_id in ("del-1", "del-2", "del-3"):
        await scheduler.start_delivery_tracking(delivery_id, "veh-1", 0.1)
    await asyncio.sleep(0.15)

    stopped = await scheduler.stop_all_trackings(timeout=2)

    assert stopped == 3
    assert (await scheduler.get_tracking_stats()).active_trackings == 0
    written = store.write_sample.await_count
    await asyncio.sleep(0.3)
    assert store.write_sample.await_count == written


@pytest.mark.asyncio
async def test_stop_all_without_sessions_is_noop(scheduler):
    assert await scheduler.stop_all_trackings() == 0
    assert (await scheduler.get_tracking_stats()).active_trackings == 0


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_stop_all_cancels_tasks_stuck_past_timeout(scheduler, telemetry, unit_payload):
    release = asyncio.Event()

    async def stuck(unit_id, flags=256):
        if telemetry.search_unit_by_id.await_count > 1:
            await release.wait()
        return unit_payload()

    telemetry.search_unit_by_id.side_effect = stuck
    await scheduler.start_delivery_tracking("del-1", "veh-1", 0.05)
    await asyncio.sleep(0.1)

    await scheduler.stop_all_trackings(timeout=0.1)

    assert (await scheduler.get_tracking_stats()).active_trackings == 0


@pytest.mark.asyncio
async def test_current_position_is_read_only(scheduler, store):
    sample = await scheduler.get_current_position("veh-1")

    assert sample.vehicle_id == "veh-1"
    assert sample.fuel.value == 110.0
    store.write_sample.assert_not_called()
    assert (await scheduler.get_tracking_stats()).active_trackings == 0


@pytest.mark.asyncio
async def test_current_position_propagates_provider_errors(scheduler, telemetry):
    telemetry.search_unit_by_id.side_effect = RemoteError("provider down")
    with pytest.raises(RemoteError):
        await scheduler.get_current_position("veh-1")


@pytest.mark.asyncio
async def test_history_delegates_to_store(scheduler, store):
    await scheduler.get_delivery_history("del-1", "csv")
    store.query_history.assert_awaited_once_with("del-1", "csv")
