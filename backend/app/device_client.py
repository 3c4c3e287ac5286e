# backend/app/device_client.py
import logging
from typing import Optional

import httpx
from fastapi import Request

from .errors import DeviceError, DeviceTimeoutError

logger = logging.getLogger(__name__)


class DeviceClient:
    """Outbound commands to the briefcase ESP32. No retries."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.current_angle = 0

    async def set_servo_angle(self, angle: int) -> int:
        url = f"{self.base_url}/servo/angle"
        try:
            response = await self.client.get(url, params={"angle": angle}, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Servo command timed out after {self.timeout}s: {e!r}")
            raise DeviceTimeoutError("Briefcase device did not respond in time") from e
        except httpx.TransportError as e:
            logger.error(f"Servo command failed, device unreachable: {e!r}")
            raise DeviceTimeoutError("Briefcase device is unreachable") from e

        if response.is_error:
            logger.error(f"Servo command rejected: HTTP {response.status_code} {response.text[:200]}")
            raise DeviceError(f"Briefcase device answered HTTP {response.status_code}")

        self.current_angle = angle
        logger.info(f"Servo angle set to {angle}")
        return angle

    async def aclose(self):
        await self.client.aclose()


def get_device_client(request: Request) -> DeviceClient:
    return request.app.state.device_client
