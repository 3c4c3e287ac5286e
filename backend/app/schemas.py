#backend/app/schemas.py
from datetime import datetime
from pydantic import BaseModel, Field, StrictInt
from typing import Optional, List


class LocationReport(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, strict=True)
    longitude: float = Field(..., ge=-180, le=180, strict=True)
    is_alert: bool = False
    timestamp: Optional[datetime] = None
    device_id: Optional[str] = Field(None, max_length=64)

    class Config:
        allow_inf_nan = False


class DeviceAlertReport(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, strict=True)
    longitude: float = Field(..., ge=-180, le=180, strict=True)
    timestamp: Optional[datetime] = None
    device_id: Optional[str] = Field(None, alias="deviceId", max_length=64)
    message: Optional[str] = Field(None, max_length=255)

    class Config:
        allow_inf_nan = False
        populate_by_name = True


class LocationCreated(BaseModel):
    message: str
    fix_id: int
    is_alert: int


class AlertCreated(BaseModel):
    message: str
    fix_id: int
    alert_id: int


class FixResponse(BaseModel):
    latitude: float
    longitude: float
    timestamp: str
    is_alert: int


class FixLogEntry(FixResponse):
    id: int
    device_id: str
    in_drift_band: bool
    distance_m: Optional[float] = None


class AlertResponse(BaseModel):
    id: int
    deviceId: str
    latitude: float
    longitude: float
    message: str
    timestamp: str
    fix_id: Optional[int] = None


class SafeZoneResponse(BaseModel):
    safe_zone_radius: float
    gps_drift_threshold: float
    center_latitude: float
    center_longitude: float

    class Config:
        from_attributes = True


class SafeZoneUpdate(BaseModel):
    safe_zone_radius: float
    gps_drift_threshold: float
    center_latitude: Optional[float] = Field(None, ge=-90, le=90)
    center_longitude: Optional[float] = Field(None, ge=-180, le=180)

    class Config:
        allow_inf_nan = False


class TrackResponse(BaseModel):
    points: List[FixLogEntry]
    total_distance_m: float
    max_distance_from_center_m: float
    alert_count: int


class ServoCommand(BaseModel):
    angle: StrictInt = Field(..., ge=0, le=180)
    userID: StrictInt


class ServoResponse(BaseModel):
    success: bool
    message: str
    angle: int
