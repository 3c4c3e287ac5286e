from sqlalchemy import Column, Integer, String, Float, DateTime
from app.database import Base
from app.models.data import _utcnow

SAFE_ZONE_KEY = "safe_zone"


class SafeZoneSettings(Base):
    """Single geo-fence configuration row, upserted by `key`."""
    __tablename__ = "safe_zone_settings"

    id = Column(Integer, primary_key=True)
    key = Column(String(50), unique=True, index=True, nullable=False, default=SAFE_ZONE_KEY)
    center_latitude = Column(Float, nullable=False)
    center_longitude = Column(Float, nullable=False)
    safe_zone_radius = Column(Float, nullable=False)
    gps_drift_threshold = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
