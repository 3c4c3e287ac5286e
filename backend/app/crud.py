# backend/app/crud.py
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .errors import PersistenceError
from .models import config as model_config
from .models import data as model_data

logger = logging.getLogger(__name__)


# ============================================================================
# LOCATION STORE
# ============================================================================
async def append_fix(
    db: AsyncSession,
    *,
    device_id: str,
    latitude: float,
    longitude: float,
    is_alert: bool,
    in_drift_band: bool = False,
    device_flagged: bool = False,
    distance_m: Optional[float] = None,
    captured_at: Optional[datetime] = None,
) -> model_data.Fix:
    fix = model_data.Fix(
        device_id=device_id,
        latitude=latitude,
        longitude=longitude,
        is_alert=is_alert,
        in_drift_band=in_drift_band,
        device_flagged=device_flagged,
        distance_m=distance_m,
        created_at=captured_at or datetime.now(timezone.utc),
    )
    try:
        db.add(fix)
        await db.commit()
        await db.refresh(fix)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to store GPS fix: {e}")
        raise PersistenceError("Server error while saving GPS data") from e
    return fix


async def latest_fix(db: AsyncSession) -> Optional[model_data.Fix]:
    try:
        result = await db.execute(
            select(model_data.Fix).order_by(model_data.Fix.id.desc()).limit(1)
        )
    except SQLAlchemyError as e:
        raise PersistenceError("Server error while fetching GPS data") from e
    return result.scalar_one_or_none()


async def list_fixes(db: AsyncSession, limit: int = 100) -> List[model_data.Fix]:
    """Most recent fixes first."""
    try:
        result = await db.execute(
            select(model_data.Fix).order_by(model_data.Fix.id.desc()).limit(limit)
        )
    except SQLAlchemyError as e:
        raise PersistenceError("Server error while fetching GPS history") from e
    return list(result.scalars().all())


async def count_fixes(db: AsyncSession) -> int:
    try:
        result = await db.execute(select(func.count(model_data.Fix.id)))
    except SQLAlchemyError as e:
        raise PersistenceError("Server error while counting GPS data") from e
    return int(result.scalar_one())


# ============================================================================
# ALERT LOG
# ============================================================================
async def append_alert(
    db: AsyncSession,
    *,
    device_id: str,
    latitude: float,
    longitude: float,
    message: str,
    created_at: Optional[datetime] = None,
    fix_id: Optional[int] = None,
) -> model_data.AlertEvent:
    alert = model_data.AlertEvent(
        device_id=device_id,
        latitude=latitude,
        longitude=longitude,
        message=message,
        created_at=created_at or datetime.now(timezone.utc),
        fix_id=fix_id,
    )
    try:
        db.add(alert)
        await db.commit()
        await db.refresh(alert)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to store alert: {e}")
        raise PersistenceError("Failed to process alert") from e
    return alert


async def list_alerts(db: AsyncSession, limit: int = 100) -> List[model_data.AlertEvent]:
    try:
        result = await db.execute(
            select(model_data.AlertEvent).order_by(model_data.AlertEvent.id.desc()).limit(limit)
        )
    except SQLAlchemyError as e:
        raise PersistenceError("Server error while fetching alerts") from e
    return list(result.scalars().all())


async def count_alerts(db: AsyncSession) -> int:
    try:
        result = await db.execute(select(func.count(model_data.AlertEvent.id)))
    except SQLAlchemyError as e:
        raise PersistenceError("Server error while counting alerts") from e
    return int(result.scalar_one())


# ============================================================================
# SAFE ZONE SETTINGS (keyed singleton)
# ============================================================================
async def _select_safe_zone(db: AsyncSession) -> Optional[model_config.SafeZoneSettings]:
    result = await db.execute(
        select(model_config.SafeZoneSettings)
        .where(model_config.SafeZoneSettings.key == model_config.SAFE_ZONE_KEY)
    )
    return result.scalar_one_or_none()


async def get_safe_zone(db: AsyncSession) -> model_config.SafeZoneSettings:
    """Return the safe-zone row, creating it from the configured defaults on first read."""
    try:
        existing = await _select_safe_zone(db)
        if existing:
            return existing

        row = model_config.SafeZoneSettings(
            key=model_config.SAFE_ZONE_KEY,
            center_latitude=settings.SAFE_ZONE_CENTER_LAT,
            center_longitude=settings.SAFE_ZONE_CENTER_LON,
            safe_zone_radius=settings.SAFE_ZONE_RADIUS_DEFAULT,
            gps_drift_threshold=settings.GPS_DRIFT_THRESHOLD_DEFAULT,
        )
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent first read inserted the row already
            await db.rollback()
            return await _select_safe_zone(db)
        await db.refresh(row)
        logger.info("Safe zone settings initialised with defaults")
        return row
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError("Failed to fetch settings") from e


async def upsert_safe_zone(
    db: AsyncSession,
    *,
    safe_zone_radius: float,
    gps_drift_threshold: float,
    center_latitude: Optional[float] = None,
    center_longitude: Optional[float] = None,
) -> model_config.SafeZoneSettings:
    row = await get_safe_zone(db)
    try:
        row.safe_zone_radius = safe_zone_radius
        row.gps_drift_threshold = gps_drift_threshold
        if center_latitude is not None:
            row.center_latitude = center_latitude
        if center_longitude is not None:
            row.center_longitude = center_longitude
        row.updated_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(row)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error updating safe zone settings: {e}")
        raise PersistenceError("Failed to update settings") from e
    return row
