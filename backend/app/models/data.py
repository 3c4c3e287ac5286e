#backend/app/models/data.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Fix(Base):
    """
    Append-only GPS log. The latest fix is the one with the highest id,
    whatever `created_at` the device reported.
    """
    __tablename__ = "gps_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(64), index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    # Outside radius + drift threshold
    is_alert = Column(Boolean, default=False, nullable=False)
    # Between radius and radius + drift threshold (informational only)
    in_drift_band = Column(Boolean, default=False, nullable=False)
    # The device's own is_alert hint, kept as reported
    device_flagged = Column(Boolean, default=False, nullable=False)
    distance_m = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class AlertEvent(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(64), index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    message = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True, nullable=False)

    # Back-reference by value only; the fix is not owned by the alert
    fix_id = Column(Integer, nullable=True)
