from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from spotcheck.models import Zone

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class GeofenceEvaluation:
    is_within_zone: bool
    distance_to_zone_m: float | None
    nearest_zone_id: int | None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Float noise can push a marginally above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def evaluate_geofence(lat: float, lon: float, zones: Iterable[Zone]) -> GeofenceEvaluation:
    """Check a fix against the employee's zones.

    Zones are visited in ascending id order. The first zone containing the point
    is reported; otherwise the closest zone is.
    """
    ordered = sorted(zones, key=lambda zone: zone.id)
    if not ordered:
        return GeofenceEvaluation(is_within_zone=False, distance_to_zone_m=None, nearest_zone_id=None)

    nearest_distance: float | None = None
    nearest_zone_id: int | None = None
    for zone in ordered:
        distance_value = distance_m(zone.center_lat, zone.center_lon, lat, lon)
        if distance_value <= zone.radius_m:
            return GeofenceEvaluation(
                is_within_zone=True,
                distance_to_zone_m=distance_value,
                nearest_zone_id=zone.id,
            )
        if nearest_distance is None or distance_value < nearest_distance:
            nearest_distance = distance_value
            nearest_zone_id = zone.id

    return GeofenceEvaluation(
        is_within_zone=False,
        distance_to_zone_m=nearest_distance,
        nearest_zone_id=nearest_zone_id,
    )
