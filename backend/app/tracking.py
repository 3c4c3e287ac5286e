# backend/app/tracking.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .config import Settings, settings as default_settings
from .errors import BroadcastUnavailable, PersistenceError, ValidationError
from .geofence import classify, policy_from_values, violation_message
from .models import data as model_data
from .websocket import BroadcastChannel

logger = logging.getLogger(__name__)

GPS_UPDATE = "gps_update"
ALERT = "alert"
DEVICE_ALERT_MESSAGE = "Device reported out of safe zone"


@dataclass
class IngestResult:
    fix_id: int
    is_alert: bool
    in_drift_band: bool
    distance_m: float
    alert_id: Optional[int] = None
    broadcast_ok: bool = True


def to_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None or ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc)


def isoformat(ts: Optional[datetime]) -> str:
    if ts is None:
        ts = datetime.now(timezone.utc)
    # SQLite hands back naive datetimes; everything is stored as UTC
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def fix_payload(fix: model_data.Fix) -> Dict[str, Any]:
    return {
        "latitude": fix.latitude,
        "longitude": fix.longitude,
        "timestamp": isoformat(fix.created_at),
        "is_alert": int(bool(fix.is_alert)),
    }


def alert_payload(alert: model_data.AlertEvent) -> Dict[str, Any]:
    return {
        "deviceId": alert.device_id,
        "latitude": alert.latitude,
        "longitude": alert.longitude,
        "timestamp": isoformat(alert.created_at),
        "message": alert.message,
    }


def parse_report(raw: Dict[str, Any]) -> schemas.LocationReport:
    """Validate a raw device report (MQTT path; HTTP is validated by FastAPI)."""
    if not isinstance(raw, dict):
        raise ValidationError("Location report must be a JSON object")
    if raw.get("latitude") is None or raw.get("longitude") is None:
        raise ValidationError("Latitude and longitude are required")
    try:
        return schemas.LocationReport.model_validate(raw)
    except pydantic.ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid location report: {fields}") from e


async def _publish(channel: BroadcastChannel, topic: str, payload: Dict[str, Any]) -> bool:
    try:
        await channel.publish(topic, payload)
        return True
    except BroadcastUnavailable as e:
        logger.error(f"Broadcast of '{topic}' failed: {e.message}")
    except Exception as e:
        logger.error(f"Broadcast of '{topic}' failed: {e}", exc_info=True)
    return False


# ============================================================================
# ALERT EMITTER
# ============================================================================
async def raise_alert(
    db: AsyncSession,
    channel: BroadcastChannel,
    *,
    device_id: str,
    latitude: float,
    longitude: float,
    timestamp: Optional[datetime],
    message: str,
    fix_id: Optional[int] = None,
) -> model_data.AlertEvent:
    # PersistenceError propagates and nothing is published
    alert = await crud.append_alert(
        db,
        device_id=device_id,
        latitude=latitude,
        longitude=longitude,
        message=message,
        created_at=timestamp,
        fix_id=fix_id,
    )
    logger.warning(f"🚨 [{device_id}] {message} at ({latitude:.6f}, {longitude:.6f})")

    await _publish(channel, ALERT, alert_payload(alert))
    return alert


# ============================================================================
# INGESTION
# ============================================================================
async def ingest(
    db: AsyncSession,
    channel: BroadcastChannel,
    report: schemas.LocationReport,
    config: Settings = default_settings,
) -> IngestResult:
    device_id = report.device_id or config.DEFAULT_DEVICE_ID

    # 1. Classify against the current policy
    zone = await crud.get_safe_zone(db)
    policy = policy_from_values(
        zone.center_latitude, zone.center_longitude,
        zone.safe_zone_radius, zone.gps_drift_threshold,
    )
    result = classify(report.latitude, report.longitude, policy)

    if report.is_alert and result.inside:
        logger.info(f"[{device_id}] Device flagged an alert but fix is inside the safe zone")

    # 2. Persist; a failure here fails the whole call
    fix = await crud.append_fix(
        db,
        device_id=device_id,
        latitude=report.latitude,
        longitude=report.longitude,
        is_alert=result.outside,
        in_drift_band=result.in_drift_band,
        device_flagged=report.is_alert,
        distance_m=round(result.distance_m, 2),
        captured_at=to_utc(report.timestamp),
    )
    # Plain copies: a failed alert commit rolls back and expires `fix`
    fix_id, fix_time, update = fix.id, fix.created_at, fix_payload(fix)
    outcome = IngestResult(
        fix_id=fix_id,
        is_alert=result.outside,
        in_drift_band=result.in_drift_band,
        distance_m=result.distance_m,
    )

    if result.in_drift_band:
        logger.info(f"[{device_id}] Fix {fix_id} within drift tolerance ({result.distance_m:.0f} m)")

    # 3. Alert on violation; the stored fix is never rolled back
    alert_error = None
    if result.outside:
        try:
            alert = await raise_alert(
                db, channel,
                device_id=device_id,
                latitude=report.latitude,
                longitude=report.longitude,
                timestamp=fix_time,
                message=violation_message(result, policy),
                fix_id=fix_id,
            )
            outcome.alert_id = alert.id
        except PersistenceError as e:
            logger.error(f"[{device_id}] Fix {fix_id} stored but alert failed: {e.message}")
            alert_error = e

    # 4. Live update, best effort
    outcome.broadcast_ok = await _publish(channel, GPS_UPDATE, update)

    if alert_error is not None:
        raise alert_error
    return outcome


async def ingest_device_alert(
    db: AsyncSession,
    channel: BroadcastChannel,
    report: schemas.DeviceAlertReport,
    config: Settings = default_settings,
) -> model_data.AlertEvent:
    """Device-side alert: always an alerting fix plus an AlertEvent."""
    device_id = report.device_id or config.DEFAULT_DEVICE_ID

    fix = await crud.append_fix(
        db,
        device_id=device_id,
        latitude=report.latitude,
        longitude=report.longitude,
        is_alert=True,
        device_flagged=True,
        captured_at=to_utc(report.timestamp),
    )
    return await raise_alert(
        db, channel,
        device_id=device_id,
        latitude=report.latitude,
        longitude=report.longitude,
        timestamp=to_utc(report.timestamp) or fix.created_at,
        message=report.message or DEVICE_ALERT_MESSAGE,
        fix_id=fix.id,
    )
