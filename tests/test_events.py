"""Unit tests for core.events."""

from trading_core.core.events import Channel, EventBus


def test_delivery_order_and_unsubscribe():
    channel = Channel("demo")
    seen = []
    unsubscribe = channel.subscribe(lambda p: seen.append(("a", p)))
    channel.subscribe(lambda p: seen.append(("b", p)))
    channel.publish(1)
    unsubscribe()
    unsubscribe()
    channel.publish(2)
    assert seen == [("a", 1), ("b", 1), ("b", 2)]
    assert len(channel) == 1


def test_failing_subscriber_does_not_block_others():
    channel = Channel("demo")
    seen = []

    def boom(_):
        raise RuntimeError("observer bug")

    channel.subscribe(boom)
    channel.subscribe(seen.append)
    channel.publish("x")
    assert seen == ["x"]


def test_bus_channels():
    bus = EventBus()
    names = [bus.status_change.name, bus.signal.name, bus.log.name,
             bus.position_opened.name, bus.position_closed.name, bus.strategy_updated.name]
    assert names == ["statusChange", "signal", "log", "positionOpened", "positionClosed", "strategyUpdated"]
