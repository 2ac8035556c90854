import asyncio
import logging
import threading

from weightsmart_monitor.core.observable import EventChannel, StateCell


def test_callbacks_receive_values_until_unsubscribed() -> None:
    cell = StateCell(0, name="counter")
    seen: list[int] = []
    unsubscribe = cell.subscribe(seen.append)

    cell.set(1)
    cell.set(2)
    unsubscribe()
    cell.set(3)

    assert seen == [1, 2]
    assert cell.value == 3


def test_failing_listener_does_not_block_others(caplog) -> None:
    channel: EventChannel[str] = EventChannel(name="errors")
    seen: list[str] = []

    def broken(_: str) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)

    with caplog.at_level(logging.ERROR):
        channel.publish("hola")

    assert seen == ["hola"]
    assert "errors" in caplog.text


def test_watch_delivers_current_then_updates_in_order() -> None:
    cell = StateCell("a")

    async def scenario() -> list[str]:
        received: list[str] = []
        with cell.watch() as updates:
            cell.set("b")
            cell.set("c")
            for _ in range(3):
                received.append(await updates.get())
        return received

    assert asyncio.run(scenario()) == ["a", "b", "c"]


def test_closed_subscription_ends_iteration() -> None:
    channel: EventChannel[int] = EventChannel()

    async def scenario() -> list[int]:
        subscription = channel.watch()
        channel.publish(1)
        subscription.close()
        channel.publish(2)
        return [item async for item in subscription]

    assert asyncio.run(scenario()) == [1]


def test_publish_from_another_thread_reaches_loop() -> None:
    cell = StateCell(0)

    async def scenario() -> int:
        with cell.watch(include_current=False) as updates:
            worker = threading.Thread(target=cell.set, args=(42,))
            worker.start()
            worker.join()
            return await asyncio.wait_for(updates.get(), timeout=1.0)

    assert asyncio.run(scenario()) == 42


def test_stalled_subscription_keeps_newest_items(caplog) -> None:
    channel: EventChannel[int] = EventChannel(name="lecturas")

    async def scenario() -> tuple[list[int], int]:
        subscription = channel.watch(maxsize=3)
        with caplog.at_level(logging.WARNING):
            for value in range(10):
                channel.publish(value)
        dropped = subscription.dropped
        assert subscription.pending() == 3
        subscription.close()
        return [item async for item in subscription], dropped

    items, dropped = asyncio.run(scenario())

    # Closing also evicts the oldest pending item to make room for the end marker.
    assert items == [8, 9]
    assert dropped == 7
    assert "lecturas" in caplog.text
