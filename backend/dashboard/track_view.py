# backend/dashboard/track_view.py
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncIterable, Deque, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

STATUS_WAITING = "Waiting for GPS signal..."
STATUS_LIVE = "Live GPS Tracking"
STATUS_ALERT = "ALERT: Device out of safe zone!"
STATUS_STALE = "Using last known position"
BANNER_DEGRADED = "Failed to get live location. Data may be outdated."

ALERT_HISTORY_SIZE = 10


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class TrackingView:
    """
    Dashboard-side tracking state.

    Two sources feed it: pushed `gps_update`/`alert` messages and a
    periodic poll of the latest fix. Whichever carries the newer timestamp
    wins; on poll failure the last position stays on screen and
    `is_real_time` drops to False.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        default_position: Tuple[float, float] = (-2.148252, 30.542430),
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

        self.position: Tuple[float, float] = default_position
        self.last_update_time: Optional[datetime] = None
        self.alert_mode = False
        self.is_real_time = False
        self.status = STATUS_WAITING
        self.banner: Optional[str] = None
        self.alert_history: Deque[Dict[str, Any]] = deque(maxlen=ALERT_HISTORY_SIZE)
        self.poll_interval = 10.0

    @classmethod
    def from_settings(cls, config, client: Optional[httpx.AsyncClient] = None) -> "TrackingView":
        view = cls(
            base_url=config.DASHBOARD_API_URL,
            default_position=(config.SAFE_ZONE_CENTER_LAT, config.SAFE_ZONE_CENTER_LON),
            client=client,
            timeout=config.DEVICE_TIMEOUT_SECONDS,
        )
        view.poll_interval = config.POLL_INTERVAL_SECONDS
        return view

    # --- state transitions ---
    def _is_newer(self, ts: datetime) -> bool:
        return self.last_update_time is None or ts >= self.last_update_time

    def apply_fix(self, data: Dict[str, Any]) -> bool:
        """Apply a fix from either source; returns False when it was older than the shown one."""
        ts = parse_timestamp(data.get("timestamp"))
        if not self._is_newer(ts):
            logger.debug(f"Ignored stale fix from {ts.isoformat()}")
            return False

        self.position = (float(data["latitude"]), float(data["longitude"]))
        self.last_update_time = ts
        self.alert_mode = bool(data.get("is_alert"))
        self.status = STATUS_ALERT if self.alert_mode else STATUS_LIVE
        return True

    def apply_alert(self, data: Dict[str, Any]):
        ts = parse_timestamp(data.get("timestamp"))
        self.alert_mode = True
        self.status = STATUS_ALERT
        self.alert_history.appendleft({
            "timestamp": ts,
            "message": f"ALERT: Device moved out of safe zone at {ts.strftime('%I:%M:%S %p')}",
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
        })

    def handle_message(self, message: Dict[str, Any]):
        msg_type = message.get("type")
        data = message.get("data") or {}
        if msg_type == "gps_update":
            self.apply_fix(data)
        elif msg_type == "alert":
            self.apply_alert(data)

    def acknowledge_alert(self):
        # Local only, the AlertEvent stays on the server
        self.alert_mode = False
        self.status = STATUS_LIVE

    # --- sources ---
    async def poll_once(self) -> bool:
        try:
            response = await self.client.get("/api/gps/location")
            if response.status_code == 404:
                # Empty log: zero-default payload, nothing to show yet
                self.is_real_time = True
                self.banner = None
                return True
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch GPS location: {e}")
            self.is_real_time = False
            self.status = STATUS_STALE
            self.banner = BANNER_DEGRADED
            return False

        self.apply_fix(data)
        self.is_real_time = True
        self.banner = None
        return True

    async def follow(self, stream: AsyncIterable[Dict[str, Any]]):
        async for message in stream:
            self.handle_message(message)

    async def run(self, interval: Optional[float] = None, stop: Optional[asyncio.Event] = None):
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval or self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def aclose(self):
        await self.client.aclose()
