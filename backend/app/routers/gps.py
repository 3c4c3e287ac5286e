# ==============================================================================
# == backend/app/routers/gps.py - GPS tracking & safe zone endpoints         ==
# ==============================================================================

import asyncio
import hmac
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, schemas, tracking
from ..config import Settings, get_settings
from ..database import get_db
from ..errors import NotFoundError, RequestTimeoutError, UnauthorizedDevice
from ..geofence import policy_from_values
from ..websocket import BroadcastChannel, get_channel
from processors.gnss_processor import summarize_track

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/gps",
    tags=["GPS Tracking"]
)


# ============================================================================
# HELPERS
# ============================================================================
def verify_device_key(
    x_device_key: Optional[str] = Header(None),
    config: Settings = Depends(get_settings),
):
    secret = config.DEVICE_SHARED_SECRET
    if not secret:
        return
    if not x_device_key or not hmac.compare_digest(x_device_key, secret):
        raise UnauthorizedDevice("Missing or invalid device key")


def _log_entry(fix) -> schemas.FixLogEntry:
    return schemas.FixLogEntry(
        id=fix.id,
        device_id=fix.device_id,
        in_drift_band=bool(fix.in_drift_band),
        distance_m=fix.distance_m,
        **tracking.fix_payload(fix),
    )


# ============================================================================
# LOCATION
# ============================================================================
@router.post("/location", status_code=status.HTTP_201_CREATED, response_model=schemas.LocationCreated)
async def insert_location(
    report: schemas.LocationReport,
    db: AsyncSession = Depends(get_db),
    channel: BroadcastChannel = Depends(get_channel),
    config: Settings = Depends(get_settings),
    _: None = Depends(verify_device_key),
):
    try:
        async with asyncio.timeout(config.INGEST_TIMEOUT_SECONDS):
            result = await tracking.ingest(db, channel, report, config)
    except TimeoutError as e:
        if isinstance(e, RequestTimeoutError):
            raise
        logger.error(f"GPS ingestion exceeded {config.INGEST_TIMEOUT_SECONDS}s")
        raise RequestTimeoutError("GPS ingestion timed out") from e

    return {
        "message": "GPS data inserted successfully",
        "fix_id": result.fix_id,
        "is_alert": int(result.is_alert),
    }


@router.get("/location", response_model=schemas.FixResponse)
async def get_latest_location(db: AsyncSession = Depends(get_db)):
    fix = await crud.latest_fix(db)
    if fix is None:
        # Zero default kept for dashboard compatibility
        raise NotFoundError("No GPS data available", default={
            "latitude": 0,
            "longitude": 0,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "is_alert": 0,
        })
    return tracking.fix_payload(fix)


@router.get("/history", response_model=List[schemas.FixLogEntry])
async def get_location_history(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Fix log, newest first."""
    return [_log_entry(f) for f in await crud.list_fixes(db, limit)]


@router.get("/track", response_model=schemas.TrackResponse)
async def get_track(
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    fixes = list(reversed(await crud.list_fixes(db, limit)))  # chronological
    zone = await crud.get_safe_zone(db)
    summary = summarize_track(
        [f.latitude for f in fixes],
        [f.longitude for f in fixes],
        zone.center_latitude,
        zone.center_longitude,
    )
    return {
        "points": [_log_entry(f) for f in fixes],
        "alert_count": sum(1 for f in fixes if f.is_alert),
        **summary,
    }


# ============================================================================
# ALERTS
# ============================================================================
@router.post("/alert", status_code=status.HTTP_201_CREATED, response_model=schemas.AlertCreated)
async def handle_alert(
    report: schemas.DeviceAlertReport,
    db: AsyncSession = Depends(get_db),
    channel: BroadcastChannel = Depends(get_channel),
    config: Settings = Depends(get_settings),
    _: None = Depends(verify_device_key),
):
    alert = await tracking.ingest_device_alert(db, channel, report, config)
    return {"message": "Alert processed", "fix_id": alert.fix_id, "alert_id": alert.id}


@router.get("/alerts", response_model=List[schemas.AlertResponse])
async def get_alerts(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    return [
        {"id": a.id, "fix_id": a.fix_id, **tracking.alert_payload(a)}
        for a in await crud.list_alerts(db, limit)
    ]


# ============================================================================
# SAFE ZONE SETTINGS
# ============================================================================
@router.get("/settings", response_model=schemas.SafeZoneResponse)
async def get_safe_zone_settings(db: AsyncSession = Depends(get_db)):
    return await crud.get_safe_zone(db)


@router.post("/settings")
async def update_safe_zone_settings(
    update: schemas.SafeZoneUpdate,
    db: AsyncSession = Depends(get_db),
):
    current = await crud.get_safe_zone(db)
    # Raises InvalidPolicy (400) before anything is written
    policy_from_values(
        update.center_latitude if update.center_latitude is not None else current.center_latitude,
        update.center_longitude if update.center_longitude is not None else current.center_longitude,
        update.safe_zone_radius,
        update.gps_drift_threshold,
    )

    await crud.upsert_safe_zone(
        db,
        safe_zone_radius=update.safe_zone_radius,
        gps_drift_threshold=update.gps_drift_threshold,
        center_latitude=update.center_latitude,
        center_longitude=update.center_longitude,
    )
    logger.info(
        f"Safe zone updated: radius={update.safe_zone_radius} threshold={update.gps_drift_threshold}"
    )
    return {"success": True}
