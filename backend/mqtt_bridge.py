# ==============================================================================
# == backend/mqtt_bridge.py - MQTT telemetry to ingestion pipeline           ==
# ==============================================================================

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from app import tracking
from app.config import Settings, settings as default_settings
from app.database import SessionLocal
from app.errors import TrackingError, ValidationError
from app.websocket import BroadcastChannel

from processors.gnss_processor import GGADecoder, is_gga_sentence

logger = logging.getLogger(__name__)


def device_id_from_topic(pattern: str, topic: str) -> Optional[str]:
    """Pick the device id out of the first '+' level of the subscription pattern."""
    pattern_parts = pattern.split('/')
    topic_parts = topic.split('/')
    for i, part in enumerate(pattern_parts):
        if part == '+' and i < len(topic_parts):
            return topic_parts[i] or None
        if part == '#':
            break
    return None


class MQTTBridge:
    def __init__(self, channel: BroadcastChannel, config: Settings = default_settings,
                 session_factory=SessionLocal):
        logger.info("Initializing MQTT Bridge Instance...")

        self.channel = channel
        self.config = config
        self.session_factory = session_factory
        self.decoder = GGADecoder(min_fix_quality=config.MQTT_MIN_FIX_QUALITY)

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if config.MQTT_USER:
            self.client.username_pw_set(config.MQTT_USER, config.MQTT_PASSWORD)

        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect

        self.loop = None

    def on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            logger.info("✅ MQTT Connected to Broker.")
            client.subscribe(self.config.MQTT_GPS_TOPIC)
            logger.info(f"   ✓ Subscribed: {self.config.MQTT_GPS_TOPIC}")
        else:
            logger.error(f"❌ MQTT Connection failed: rc={rc}")

    def on_disconnect(self, client, userdata, flags, rc, properties=None):
        if rc != 0:
            logger.warning(f"⚠️ Unexpected MQTT disconnect: rc={rc}. Reconnecting...")

    def on_message(self, client, userdata, msg):
        """Runs on the paho network thread; hands the payload to the API event loop."""
        try:
            try:
                payload_str = msg.payload.decode('utf-8')
            except UnicodeDecodeError:
                logger.debug(f"Ignored binary payload on {msg.topic}")
                return

            if self.loop and self.loop.is_running():
                asyncio.run_coroutine_threadsafe(
                    self.process_pipeline(msg.topic, payload_str),
                    self.loop
                )
        except Exception as e:
            logger.error(f"Error in on_message: {e}")

    def start(self):
        """Called from the FastAPI lifespan."""
        logger.info("🚀 Starting MQTT Bridge inside FastAPI...")

        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("❌ No running event loop found! Bridge cannot start.")
            return

        try:
            self.client.connect(self.config.MQTT_BROKER, self.config.MQTT_PORT, 60)
            self.client.loop_start()
            logger.info("✅ MQTT Bridge started successfully.")
        except Exception as e:
            logger.error(f"❌ Failed to start MQTT Bridge: {e}")

    def stop(self):
        logger.info("🛑 Stopping MQTT Bridge...")
        self.client.loop_stop()
        self.client.disconnect()

    def decode_payload(self, topic: str, raw_payload: str) -> Optional[Dict[str, Any]]:
        raw_payload = raw_payload.strip()
        if is_gga_sentence(raw_payload):
            report = self.decoder.decode(raw_payload)
            if report is None:
                return None
        else:
            try:
                report = json.loads(raw_payload)
            except json.JSONDecodeError:
                logger.warning(f"Ignored non-JSON payload on {topic}")
                return None
            if not isinstance(report, dict):
                logger.warning(f"Ignored non-object payload on {topic}")
                return None

        device_id = device_id_from_topic(self.config.MQTT_GPS_TOPIC, topic)
        if device_id and not report.get("device_id"):
            report["device_id"] = device_id
        return report

    async def process_pipeline(self, topic: str, raw_payload: str):
        raw_report = self.decode_payload(topic, raw_payload)
        if raw_report is None:
            return None

        try:
            report = tracking.parse_report(raw_report)
            async with asyncio.timeout(self.config.INGEST_TIMEOUT_SECONDS):
                async with self.session_factory() as db:
                    return await tracking.ingest(db, self.channel, report, self.config)
        except ValidationError as e:
            logger.warning(f"Rejected report on {topic}: {e.message}")
        except TrackingError as e:
            logger.error(f"❌ Ingestion error on {topic}: {e.message}")
        except TimeoutError:
            logger.error(f"❌ Ingestion on {topic} exceeded {self.config.INGEST_TIMEOUT_SECONDS}s")
        except Exception as e:
            logger.error(f"❌ Pipeline error on {topic}: {e}", exc_info=True)
        return None
