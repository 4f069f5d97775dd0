from tableside.services.timeout_scheduler import OrderTimeoutScheduler

from conftest import settle


def recording_scheduler(clock, sleeper):
    fired = []

    async def handler(order_id):
        fired.append(order_id)

    return OrderTimeoutScheduler(handler=handler, clock=clock, sleep=sleeper), fired


async def test_arm_waits_default_minutes_then_fires(clock, sleeper):
    scheduler, fired = recording_scheduler(clock, sleeper)
    scheduler.arm("order-1")
    await settle()

    assert sleeper.waits[0][0] == 30 * 60
    assert scheduler.active_timeouts() == ["order-1"]

    sleeper.release_all()
    await settle()

    assert fired == ["order-1"]
    assert not scheduler.is_armed("order-1")


async def test_rearming_keeps_a_single_timer(clock, sleeper):
    scheduler, fired = recording_scheduler(clock, sleeper)
    scheduler.arm("order-1", 30)
    await settle()
    scheduler.arm("order-1", 5)
    await settle()

    assert scheduler.active_timeouts() == ["order-1"]

    sleeper.release_all()
    await settle()
    assert fired == ["order-1"]
    assert sleeper.waits[-1][0] == 5 * 60


async def test_disarm_prevents_fire_and_tolerates_unknown_ids(clock, sleeper):
    scheduler, fired = recording_scheduler(clock, sleeper)
    scheduler.arm("order-1")
    await settle()

    scheduler.disarm("order-1")
    scheduler.disarm("order-1")
    scheduler.disarm("never-armed")
    sleeper.release_all()
    await settle()

    assert fired == []


async def test_shutdown_cancels_without_firing(clock, sleeper):
    scheduler, fired = recording_scheduler(clock, sleeper)
    for order_id in ("a", "b", "c"):
        scheduler.arm(order_id)
    await settle()

    scheduler.shutdown()
    sleeper.release_all()
    await settle()

    assert fired == []
    assert scheduler.active_timeouts() == []


async def test_handler_errors_are_swallowed(clock, sleeper):
    async def explode(order_id):
        raise RuntimeError("store down")

    scheduler = OrderTimeoutScheduler(handler=explode, clock=clock, sleep=sleeper)
    await scheduler.fire("order-1")
