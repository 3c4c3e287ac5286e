# backend/app/geofence.py
import logging
import math
from dataclasses import dataclass

from processors.gnss_processor import haversine_m, METERS_PER_DEGREE
from .errors import InvalidPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafeZonePolicy:
    center_latitude: float
    center_longitude: float
    radius_degrees: float
    drift_threshold_degrees: float = 0.0

    def validate(self):
        for name in ("center_latitude", "center_longitude", "radius_degrees", "drift_threshold_degrees"):
            if not math.isfinite(getattr(self, name)):
                raise InvalidPolicy(f"{name} must be a finite number")
        if self.radius_degrees <= 0:
            raise InvalidPolicy("safe_zone_radius must be greater than 0")
        if self.drift_threshold_degrees < 0:
            raise InvalidPolicy("gps_drift_threshold must not be negative")
        return self

    @property
    def alert_radius_degrees(self) -> float:
        # The drift threshold widens the zone before an alert fires
        return self.radius_degrees + self.drift_threshold_degrees

    @property
    def radius_m(self) -> float:
        return self.radius_degrees * METERS_PER_DEGREE

    @property
    def alert_radius_m(self) -> float:
        return self.alert_radius_degrees * METERS_PER_DEGREE


@dataclass(frozen=True)
class Classification:
    inside: bool
    in_drift_band: bool
    distance_degrees: float
    distance_m: float

    @property
    def outside(self) -> bool:
        return not self.inside


def planar_distance_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return math.hypot(lat2 - lat1, lon2 - lon1)


def classify(latitude: float, longitude: float, policy: SafeZonePolicy) -> Classification:
    """
    Classify a fix against the safe zone.

    Distance is planar in degrees so it compares directly with the
    radius/threshold stored in degrees; `distance_m` is the great-circle
    distance and is only informational.
    """
    policy.validate()

    distance = planar_distance_degrees(
        policy.center_latitude, policy.center_longitude, latitude, longitude
    )
    inside = distance <= policy.alert_radius_degrees
    in_drift_band = policy.radius_degrees < distance <= policy.alert_radius_degrees

    return Classification(
        inside=inside,
        in_drift_band=in_drift_band,
        distance_degrees=distance,
        distance_m=haversine_m(policy.center_latitude, policy.center_longitude, latitude, longitude),
    )


def policy_from_values(center_latitude, center_longitude, radius, threshold) -> SafeZonePolicy:
    try:
        return SafeZonePolicy(
            center_latitude=float(center_latitude),
            center_longitude=float(center_longitude),
            radius_degrees=float(radius),
            drift_threshold_degrees=float(threshold),
        ).validate()
    except (TypeError, ValueError) as e:
        raise InvalidPolicy(f"Invalid safe zone values: {e}")


def violation_message(classification: Classification, policy: SafeZonePolicy) -> str:
    return (
        f"Device moved out of safe zone: {classification.distance_m:.0f} m from center "
        f"(limit {policy.alert_radius_m:.0f} m)"
    )
