import asyncio

import pytest

from app.errors import BroadcastUnavailable
from app.websocket import BroadcastChannel


class FakeWebSocket:

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)

    async def close(self):
        pass


def test_subscriber_receives_published_event():
    async def scenario():
        channel = BroadcastChannel()
        sub = channel.subscribe("gps_update")
        delivered = await channel.publish("gps_update", {"latitude": 1.0})
        message = await asyncio.wait_for(sub.__anext__(), timeout=1)
        return delivered, message

    delivered, message = asyncio.run(scenario())

    assert delivered == 1
    assert message == {"type": "gps_update", "data": {"latitude": 1.0}}


def test_topic_filtering_and_wildcard():
    async def scenario():
        channel = BroadcastChannel()
        alerts = channel.subscribe("alert")
        everything = channel.subscribe("*")
        await channel.publish("gps_update", {"n": 1})
        await channel.publish("alert", {"n": 2})
        return alerts.queue.qsize(), everything.queue.qsize(), alerts.queue.get_nowait()

    alert_count, all_count, first_alert = asyncio.run(scenario())

    assert alert_count == 1
    assert all_count == 2
    assert first_alert["data"] == {"n": 2}


def test_no_replay_for_late_subscribers():
    async def scenario():
        channel = BroadcastChannel()
        await channel.publish("gps_update", {"n": 1})
        late = channel.subscribe("gps_update")
        return late.queue.empty()

    assert asyncio.run(scenario()) is True


def test_publish_without_subscribers_is_not_an_error():
    async def scenario():
        return await BroadcastChannel().publish("alert", {})

    assert asyncio.run(scenario()) == 0


def test_failed_websocket_is_dropped():
    async def scenario():
        channel = BroadcastChannel()
        good, bad = FakeWebSocket(), FakeWebSocket(fail=True)
        await channel.connect(good)
        await channel.connect(bad)
        delivered = await channel.publish("gps_update", {"n": 1})
        return channel, good, delivered

    channel, good, delivered = asyncio.run(scenario())

    assert delivered == 1
    assert good.sent == [{"type": "gps_update", "data": {"n": 1}}]
    assert channel.active_connections == [good]


def test_closed_channel_rejects_publish_and_ends_subscriptions():
    async def scenario():
        channel = BroadcastChannel()
        sub = channel.subscribe()
        await channel.publish("alert", {"n": 1})
        await channel.close()
        received = [m async for m in sub]
        with pytest.raises(BroadcastUnavailable):
            await channel.publish("alert", {"n": 2})
        with pytest.raises(BroadcastUnavailable):
            channel.subscribe()
        return received

    received = asyncio.run(scenario())

    assert received == [{"type": "alert", "data": {"n": 1}}]


def test_subscription_context_manager_unsubscribes():
    async def scenario():
        channel = BroadcastChannel()
        async with channel.subscribe("alert"):
            pass
        return await channel.publish("alert", {})

    assert asyncio.run(scenario()) == 0
