import asyncio

import httpx

from app.config import Settings
from app.websocket import BroadcastChannel
from dashboard.track_view import (
    ALERT_HISTORY_SIZE,
    BANNER_DEGRADED,
    STATUS_ALERT,
    STATUS_LIVE,
    STATUS_STALE,
    STATUS_WAITING,
    TrackingView,
)

HOME = (-2.148252, 30.542430)


def _view(handler):
    client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
    return TrackingView(client=client, default_position=HOME)


def _fix(lat, lon, ts, is_alert=0):
    return {"latitude": lat, "longitude": lon, "timestamp": ts, "is_alert": is_alert}


def test_initial_state_waits_at_default_position():
    view = TrackingView(client=httpx.AsyncClient(), default_position=HOME)

    assert view.position == HOME
    assert view.status == STATUS_WAITING
    assert view.is_real_time is False


def test_from_settings_uses_zone_center_and_poll_interval():
    config = Settings(SAFE_ZONE_CENTER_LAT=1.5, SAFE_ZONE_CENTER_LON=2.5, POLL_INTERVAL_SECONDS=3)

    view = TrackingView.from_settings(config, client=httpx.AsyncClient())

    assert view.position == (1.5, 2.5)
    assert view.poll_interval == 3


def test_poll_moves_marker():
    view = _view(lambda request: httpx.Response(200, json=_fix(-2.15, 30.55, "2025-03-01T10:00:00+00:00")))

    ok = asyncio.run(view.poll_once())

    assert ok is True
    assert view.position == (-2.15, 30.55)
    assert view.is_real_time is True
    assert view.status == STATUS_LIVE
    assert view.banner is None


def test_poll_failure_keeps_last_position():
    responses = iter([
        httpx.Response(200, json=_fix(-2.15, 30.55, "2025-03-01T10:00:00+00:00")),
        httpx.Response(500, json={"error": "Server error while fetching GPS data"}),
    ])
    view = _view(lambda request: next(responses))

    async def scenario():
        await view.poll_once()
        return await view.poll_once()

    ok = asyncio.run(scenario())

    assert ok is False
    assert view.position == (-2.15, 30.55)
    assert view.is_real_time is False
    assert view.status == STATUS_STALE
    assert view.banner == BANNER_DEGRADED


def test_poll_network_error_is_degraded():
    def handler(request):
        raise httpx.ConnectError("refused")

    view = _view(handler)

    assert asyncio.run(view.poll_once()) is False
    assert view.position == HOME
    assert view.banner == BANNER_DEGRADED


def test_empty_log_does_not_move_marker():
    view = _view(lambda request: httpx.Response(404, json=_fix(0, 0, "2025-03-01T10:00:00+00:00")))

    assert asyncio.run(view.poll_once()) is True
    assert view.position == HOME
    assert view.is_real_time is True


def test_newer_timestamp_wins_between_sources():
    view = _view(lambda request: httpx.Response(200, json=_fix(1.0, 1.0, "2025-03-01T10:00:00Z")))

    view.handle_message({"type": "gps_update", "data": _fix(2.0, 2.0, "2025-03-01T10:00:05Z")})
    asyncio.run(view.poll_once())

    assert view.position == (2.0, 2.0)

    assert view.apply_fix(_fix(3.0, 3.0, "2025-03-01T10:00:06Z")) is True
    assert view.position == (3.0, 3.0)


def test_alert_message_and_acknowledge():
    view = TrackingView(client=httpx.AsyncClient(), default_position=HOME)

    view.handle_message({"type": "alert", "data": {
        "latitude": -2.2, "longitude": 30.6, "timestamp": "2025-03-01T10:00:00Z",
        "deviceId": "briefcase-01", "message": "Device moved out of safe zone",
    }})

    assert view.alert_mode is True
    assert view.status == STATUS_ALERT
    assert view.alert_history[0]["latitude"] == -2.2
    assert view.alert_history[0]["message"].startswith("ALERT: Device moved out of safe zone at")

    view.acknowledge_alert()

    assert view.alert_mode is False
    assert len(view.alert_history) == 1


def test_alert_history_keeps_most_recent():
    view = TrackingView(client=httpx.AsyncClient(), default_position=HOME)

    for minute in range(ALERT_HISTORY_SIZE + 5):
        view.apply_alert({"latitude": 0, "longitude": minute, "timestamp": f"2025-03-01T10:{minute:02d}:00Z"})

    assert len(view.alert_history) == ALERT_HISTORY_SIZE
    assert view.alert_history[0]["longitude"] == ALERT_HISTORY_SIZE + 4


def test_follow_channel_subscription():
    view = TrackingView(client=httpx.AsyncClient(), default_position=HOME)

    async def scenario():
        channel = BroadcastChannel()
        subscription = channel.subscribe()
        await channel.publish("gps_update", _fix(0.0, 0.02, "2025-03-01T10:00:00Z", is_alert=1))
        await channel.publish("alert", {"latitude": 0.0, "longitude": 0.02, "timestamp": "2025-03-01T10:00:00Z"})
        await channel.close()
        await view.follow(subscription)

    asyncio.run(scenario())

    assert view.position == (0.0, 0.02)
    assert view.alert_mode is True
    assert len(view.alert_history) == 1


def test_run_polls_until_stopped():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_fix(-2.15, 30.55, "2025-03-01T10:00:00Z"))

    view = _view(handler)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(view.run(interval=0.01, stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        await view.aclose()

    asyncio.run(scenario())

    assert len(calls) >= 2
    assert view.position == (-2.15, 30.55)
