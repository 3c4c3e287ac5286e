# backend/processors/gnss_processor.py
import numpy as np
import math
import logging
from typing import Optional, Dict, Any, Sequence

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0
# Degrees -> meters at the equator, same factor the dashboard uses for the zone circle
METERS_PER_DEGREE = 111320.0

GGA_TALKERS = ("$GPGGA", "$GNGGA")


def haversine_m(lat1, lon1, lat2, lon2) -> float:
    lat1_rad, lon1_rad, lat2_rad, lon2_rad = map(math.radians, [lat1, lon1, lat2, lon2])
    dlon = lon2_rad - lon1_rad
    dlat = lat2_rad - lat1_rad
    a_val = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a_val), math.sqrt(1 - a_val))
    return EARTH_RADIUS_M * c


def haversine_m_vec(lat1, lon1, lat2, lon2) -> np.ndarray:
    """Element-wise haversine over numpy arrays (broadcasting allowed)."""
    lat1, lon1, lat2, lon2 = map(np.radians, [lat1, lon1, lat2, lon2])
    a_val = np.sin((lat2 - lat1) / 2)**2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2)**2
    return 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a_val), np.sqrt(1 - a_val))


def is_gga_sentence(raw: str) -> bool:
    return raw.startswith(GGA_TALKERS)


class GGADecoder:
    """
    Turns NMEA GGA sentences into location reports.

    Sentences below `min_fix_quality` (0 = no fix) are rejected, as are
    sentences with an empty position or a bad checksum.
    """

    def __init__(self, min_fix_quality: int = 1):
        self.min_fix_quality = min_fix_quality
        self.stats = {
            'total_decoded': 0,
            'low_quality_rejected': 0,
            'malformed_rejected': 0,
        }

    def decode(self, sentence: str) -> Optional[Dict[str, Any]]:
        sentence = sentence.strip()
        if not is_gga_sentence(sentence) or not self._checksum_ok(sentence):
            self.stats['malformed_rejected'] += 1
            return None

        point = self._parse_gga(sentence)
        if not point:
            self.stats['malformed_rejected'] += 1
            return None

        if point['fix_quality'] < self.min_fix_quality:
            self.stats['low_quality_rejected'] += 1
            logger.debug(f"Low quality fix ({point['fix_quality']} < {self.min_fix_quality})")
            return None

        self.stats['total_decoded'] += 1
        return {
            'latitude': point['lat'],
            'longitude': point['lon'],
            'fix_quality': point['fix_quality'],
            'num_sats': point['num_sats'],
            'hdop': point['hdop'],
        }

    def _checksum_ok(self, sentence: str) -> bool:
        if '*' not in sentence:
            # Checksum is optional in GGA
            return True
        body, _, checksum = sentence[1:].partition('*')
        try:
            expected = int(checksum[:2], 16)
        except ValueError:
            return False
        calc = 0
        for ch in body:
            calc ^= ord(ch)
        return calc == expected

    def _parse_gga(self, sentence: str):
        try:
            parts = sentence.split('*')[0].split(',')
            if len(parts) < 10: return None

            lat_str, lon_str = parts[2], parts[4]
            lat_dir, lon_dir = parts[3], parts[5]

            if not lat_str or not lon_str: return None

            lat = float(lat_str[:2]) + float(lat_str[2:]) / 60.0
            if lat_dir == 'S': lat = -lat

            lon = float(lon_str[:3]) + float(lon_str[3:]) / 60.0
            if lon_dir == 'W': lon = -lon

            return {
                'lat': lat,
                'lon': lon,
                'fix_quality': int(parts[6]) if parts[6] else 0,
                'num_sats': int(parts[7]) if parts[7] else 0,
                'hdop': float(parts[8]) if parts[8] else 99.9
            }
        except (ValueError, IndexError):
            return None


def summarize_track(
    lats: Sequence[float],
    lons: Sequence[float],
    center_lat: float,
    center_lon: float,
) -> Dict[str, float]:
    if len(lats) == 0:
        return {"total_distance_m": 0.0, "max_distance_from_center_m": 0.0}

    lat_arr = np.asarray(lats, dtype=float)
    lon_arr = np.asarray(lons, dtype=float)

    legs = haversine_m_vec(lat_arr[:-1], lon_arr[:-1], lat_arr[1:], lon_arr[1:])
    from_center = haversine_m_vec(center_lat, center_lon, lat_arr, lon_arr)

    return {
        "total_distance_m": round(float(legs.sum()), 2),
        "max_distance_from_center_m": round(float(from_center.max()), 2),
    }
