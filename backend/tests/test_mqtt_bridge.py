import asyncio
import json
from unittest.mock import patch

import pytest
from sqlalchemy import text

from app.config import Settings
from app.database import engine
from app.websocket import BroadcastChannel
from mqtt_bridge import MQTTBridge, device_id_from_topic

GGA_AT_HOME = "$GNGGA,000000,0208.895,S,03032.546,E,4,10,0.8,1500.0,M,,M,,"


@pytest.fixture
def bridge():
    return MQTTBridge(BroadcastChannel(), config=Settings(MQTT_MIN_FIX_QUALITY=1))


def test_device_id_from_topic():
    assert device_id_from_topic("briefcase/+/gps", "briefcase/case-7/gps") == "case-7"
    assert device_id_from_topic("briefcase/gps", "briefcase/gps") is None
    assert device_id_from_topic("briefcase/#", "briefcase/case-7/gps") is None


class TestDecodePayload:

    def test_json_report_gets_device_from_topic(self, bridge):
        report = bridge.decode_payload("briefcase/case-7/gps", json.dumps({"latitude": 1.0, "longitude": 2.0}))

        assert report == {"latitude": 1.0, "longitude": 2.0, "device_id": "case-7"}

    def test_explicit_device_id_is_kept(self, bridge):
        raw = json.dumps({"latitude": 1.0, "longitude": 2.0, "device_id": "spare"})

        assert bridge.decode_payload("briefcase/case-7/gps", raw)["device_id"] == "spare"

    def test_gga_sentence(self, bridge):
        report = bridge.decode_payload("briefcase/case-7/gps", GGA_AT_HOME)

        assert report["latitude"] == pytest.approx(-2.14825, abs=1e-5)
        assert report["longitude"] == pytest.approx(30.54243, abs=1e-5)
        assert report["device_id"] == "case-7"

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "$GPGGA,123519,,,,,0,00,,,M,,M,,"])
    def test_garbage_is_ignored(self, bridge, raw):
        assert bridge.decode_payload("briefcase/case-7/gps", raw) is None


class TestPipeline:

    def _run(self, raw, topic="briefcase/case-7/gps", config=None):
        async def scenario():
            channel = BroadcastChannel()
            subscription = channel.subscribe()
            bridge = MQTTBridge(channel, config=config or Settings())
            result = await bridge.process_pipeline(topic, raw)
            events = []
            while not subscription.queue.empty():
                events.append(subscription.queue.get_nowait())
            return result, events

        return asyncio.run(scenario())

    def test_fix_inside_zone_is_stored_and_broadcast(self, db_tables):
        result, events = self._run(json.dumps({"latitude": -2.148252, "longitude": 30.542430}))

        assert result is not None
        assert result.is_alert is False
        assert [e["type"] for e in events] == ["gps_update"]

    def test_gga_fix_outside_zone_alerts(self, db_tables):
        result, events = self._run("$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47")

        assert result.is_alert is True
        assert result.alert_id is not None
        assert [e["type"] for e in events] == ["alert", "gps_update"]
        assert events[0]["data"]["deviceId"] == "case-7"

    def test_invalid_report_is_dropped(self, db_tables):
        result, events = self._run(json.dumps({"latitude": 123.0, "longitude": 0.0}))

        assert result is None
        assert events == []

    def test_missing_coordinates_is_dropped(self, db_tables):
        result, events = self._run(json.dumps({"latitude": 1.0}))

        assert result is None
        assert events == []

    def test_string_coordinates_are_dropped(self, db_tables):
        result, events = self._run(json.dumps({"latitude": "-2.148252", "longitude": 30.542430}))

        assert result is None
        assert events == []

    def test_alert_store_failure_still_broadcasts_fix(self, db_tables):
        async def drop_alerts():
            async with engine.begin() as conn:
                await conn.execute(text("DROP TABLE alerts"))

        asyncio.run(drop_alerts())

        result, events = self._run(json.dumps({"latitude": 48.1173, "longitude": 11.5167}))

        assert result is None
        assert [e["type"] for e in events] == ["gps_update"]
        assert events[0]["data"]["is_alert"] == 1

    def test_slow_ingestion_times_out(self, db_tables):
        async def stall(*args, **kwargs):
            await asyncio.sleep(5)

        with patch("app.crud.get_safe_zone", new=stall):
            result, events = self._run(
                json.dumps({"latitude": 1.0, "longitude": 2.0}),
                config=Settings(INGEST_TIMEOUT_SECONDS=0.05),
            )

        assert result is None
        assert events == []
