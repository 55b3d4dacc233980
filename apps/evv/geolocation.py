"""
Geolocation verification - geofence distance and spoofing indicators.
Pure functions: nothing here touches the database.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .constants import (
    SUSPICION_IMPLAUSIBLE_ACCURACY,
    SUSPICION_IMPOSSIBLE_TRAVEL,
    SUSPICION_MOCK_LOCATION,
)

# Earth radius in meters
EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationFix:
    """A previous position of the same caregiver, used for travel checks."""

    point: GeoPoint
    timestamp: datetime


@dataclass(frozen=True)
class SpoofingThresholds:
    implausible_accuracy_meters: float = 3.0
    perfect_match_meters: float = 1.0
    max_travel_speed_kmh: float = 120.0
    shift_window_hours: float = 12.0


@dataclass(frozen=True)
class GeolocationAssessment:
    distance_meters: float
    radius_meters: float
    is_within_geofence: bool
    is_within_tolerance: bool
    suspicion_flags: List[str] = field(default_factory=list)


def haversine_distance(a: GeoPoint, b: GeoPoint) -> float:
    """
    Calculate distance between two points using Haversine formula.
    Returns distance in meters.
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_M * c


def validate_coordinate(point: GeoPoint) -> bool:
    try:
        latitude = float(point.latitude)
        longitude = float(point.longitude)
    except (TypeError, ValueError):
        return False
    if math.isnan(latitude) or math.isnan(longitude):
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def travel_speed_kmh(a: GeoPoint, b: GeoPoint, seconds: float) -> float:
    """Average speed needed to cover a→b in ``seconds``; infinite for zero time."""
    distance = haversine_distance(a, b)
    if seconds <= 0:
        return math.inf if distance > 0 else 0.0
    return (distance / 1000.0) / (seconds / 3600.0)


def assess_location(
    reported: GeoPoint,
    accuracy: Optional[float],
    expected: GeoPoint,
    radius: float,
    tolerance: float,
    thresholds: SpoofingThresholds = SpoofingThresholds(),
    mock_location: bool = False,
    previous_fix: Optional[LocationFix] = None,
    timestamp: Optional[datetime] = None,
) -> GeolocationAssessment:
    """
    Compare a reported fix against the service address.

    The tolerance band widens the fence by the reported accuracy, capped at the
    jurisdiction's GPS tolerance, so a noisy but honest fix can still match.
    """
    distance = haversine_distance(reported, expected)
    accuracy_allowance = min(accuracy, tolerance) if accuracy else 0.0

    flags = []
    if (
        accuracy is not None
        and accuracy <= thresholds.implausible_accuracy_meters
        and distance <= thresholds.perfect_match_meters
    ):
        flags.append(SUSPICION_IMPLAUSIBLE_ACCURACY)

    if previous_fix is not None and timestamp is not None:
        elapsed = abs((timestamp - previous_fix.timestamp).total_seconds())
        if elapsed <= thresholds.shift_window_hours * 3600:
            speed = travel_speed_kmh(previous_fix.point, reported, elapsed)
            if speed > thresholds.max_travel_speed_kmh:
                flags.append(SUSPICION_IMPOSSIBLE_TRAVEL)

    if mock_location:
        flags.append(SUSPICION_MOCK_LOCATION)

    return GeolocationAssessment(
        distance_meters=distance,
        radius_meters=radius,
        is_within_geofence=distance <= radius,
        is_within_tolerance=distance <= radius + accuracy_allowance,
        suspicion_flags=flags,
    )
