from __future__ import annotations

import asyncio

import pytest

from soledge.activity import CONTROL, CONTROL_ERROR
from soledge.control import ControlLoop, PowerSample


def _kinds(activity, kind):
    return [e for e in activity.entries() if e.kind == kind]


@pytest.mark.asyncio
async def test_low_production_high_load_sheds_once(control, engine, store, activity):
    # Fan 75W + Light 40W on = 115W > 80W
    decision = control.update(enabled=True, production_w=50, consumption_w=10)
    assert decision.shutdown
    assert decision.total_consumption_w == 115
    await control.wait_idle()

    assert sorted(store.writes) == [("Fan", 0), ("Light", 0)]
    assert control.shutdown_count == 1
    assert len(_kinds(activity, CONTROL)) == 1
    assert all(not d.is_on for d in engine.devices)

    # confirmation snapshot and further input changes do not re-fire
    engine.apply_snapshot(store.snapshot(""))
    control.update(production_w=40)
    await asyncio.sleep(0)
    assert control.shutdown_count == 1
    assert len(store.writes) == 2


@pytest.mark.asyncio
async def test_disabled_loop_never_acts(control, store):
    for production in (0, 50, 59.9, 60, 200):
        for consumption in (0, 100, 200):
            decision = control.update(production_w=production, consumption_w=consumption)
            assert not decision.shutdown
    await asyncio.sleep(0)
    assert store.writes == []
    assert control.shutdown_count == 0


@pytest.mark.asyncio
async def test_enough_production_keeps_devices_on(control, store):
    decision = control.update(enabled=True, production_w=60)
    assert decision.reason == "balanced"
    assert not decision.low_production
    await asyncio.sleep(0)
    assert store.writes == []


@pytest.mark.asyncio
async def test_load_under_threshold_is_left_alone(control, engine, store):
    await engine.toggle("Fan")
    store.writes.clear()
    decision = control.update(enabled=True, production_w=10)
    # only Light (40W) remains on
    assert decision.total_consumption_w == 40
    assert not decision.shutdown
    await asyncio.sleep(0)
    assert store.writes == []


@pytest.mark.asyncio
async def test_never_switches_devices_on(control, engine, store):
    await engine.toggle_group(["Fan", "Light"], target=False)
    store.writes.clear()
    for production in (0, 30, 200):
        control.update(enabled=True, production_w=production)
    await asyncio.sleep(0)
    assert store.writes == []
    assert all(not d.is_on for d in engine.devices)


@pytest.mark.asyncio
async def test_device_changes_trigger_evaluation(control, engine, store):
    await engine.toggle_group(["Fan", "Light"], target=False)
    control.update(enabled=True, production_w=20)
    assert control.shutdown_count == 0

    store.put("Fan", 1)
    store.put("Light", 1)
    engine.apply_snapshot(store.snapshot(""))
    assert control.shutdown_count == 1
    await control.wait_idle()
    assert all(not d.is_on for d in engine.devices)


@pytest.mark.asyncio
async def test_failed_shutdown_is_logged_and_retried_next_tick(control, engine, store, activity):
    store.fail_keys.add("Light")
    control.update(enabled=True, production_w=30)
    await control.wait_idle()

    assert control.shutdown_count == 1
    assert len(_kinds(activity, CONTROL_ERROR)) == 1
    assert all(d.is_on for d in engine.devices)

    store.fail_keys.clear()
    control.update(production_w=29)
    await control.wait_idle()
    assert control.shutdown_count == 2
    assert all(not d.is_on for d in engine.devices)


@pytest.mark.asyncio
async def test_pending_user_write_defers_shutdown(control, engine, store):
    store.gate = asyncio.Event()
    task = asyncio.create_task(engine.toggle("Light"))
    await asyncio.sleep(0)

    # Fan (75W) alone is under the threshold, so turn it back into a breach
    control.high_consumption_w = 50
    decision = control.update(enabled=True, production_w=10)
    assert decision.reason == "write pending"
    assert control.shutdown_count == 0

    store.gate.set()
    await task
    # clearing the pending write re-evaluates and sheds the remaining load
    await control.wait_idle()
    assert control.shutdown_count == 1
    assert all(not d.is_on for d in engine.devices)


@pytest.mark.asyncio
async def test_thresholds_are_configurable(engine, activity, store):
    loop = ControlLoop(engine, activity, low_production_w=100, high_consumption_w=120, enabled=True)
    try:
        decision = loop.update(production_w=90)
        assert decision.low_production
        assert not decision.high_consumption
        assert loop.sample == PowerSample(production_w=90, consumption_w=0)
        await asyncio.sleep(0)
        assert store.writes == []
    finally:
        loop.close()
