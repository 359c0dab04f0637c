"""Geofence validation for Electronic Visit Verification.

Pure functions: no I/O, no session. The caller decides what to do with a
client that has no registered coordinates or has geofencing disabled.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from careshift.common.constants import EARTH_RADIUS_METERS, EVVStatus
from careshift.common.exceptions import InvalidLocation


@dataclass(frozen=True)
class ReportedLocation:
    latitude: float
    longitude: float
    accuracy_meters: Optional[float] = None


@dataclass(frozen=True)
class ClientGeofence:
    latitude: float
    longitude: float
    radius_meters: float


@dataclass(frozen=True)
class GeofenceResult:
    status: EVVStatus
    is_within_geofence: bool
    distance_meters: int
    radius_meters: float
    message: str


def _check_coordinate(
    errors: dict[str, list[str]], field: str, value: float, limit: float,
) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        errors.setdefault(field, []).append("Must be a number.")
    elif not math.isfinite(value):
        errors.setdefault(field, []).append("Must be a finite number.")
    elif not -limit <= value <= limit:
        errors.setdefault(field, []).append(f"Must be between -{limit:g} and {limit:g}.")


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> int:
    """Haversine great-circle distance in whole meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_METERS * c)


def validate_location(
    reported: ReportedLocation, client: ClientGeofence,
) -> GeofenceResult:
    """Compare a reported position against the client's geofence.

    Raises:
        InvalidLocation: coordinates out of range or not finite, negative
            accuracy, or a non-positive radius.
    """
    errors: dict[str, list[str]] = {}
    _check_coordinate(errors, "latitude", reported.latitude, 90)
    _check_coordinate(errors, "longitude", reported.longitude, 180)
    _check_coordinate(errors, "client_latitude", client.latitude, 90)
    _check_coordinate(errors, "client_longitude", client.longitude, 180)

    accuracy = reported.accuracy_meters
    if accuracy is not None and (not math.isfinite(accuracy) or accuracy < 0):
        errors.setdefault("accuracy", []).append("Must be a non-negative number.")
    radius = client.radius_meters
    if not math.isfinite(radius) or radius <= 0:
        errors.setdefault("geofence_radius", []).append("Must be a positive number.")
    if errors:
        raise InvalidLocation(errors)

    distance = calculate_distance(
        reported.latitude, reported.longitude, client.latitude, client.longitude,
    )
    within = distance <= radius

    if within:
        status = EVVStatus.compliant
        message = f"Location verified ({distance}m from client, limit {radius:g}m)."
    else:
        status = EVVStatus.out_of_range
        message = f"Outside geofence: {distance}m from client (limit {radius:g}m)."

    return GeofenceResult(
        status=status,
        is_within_geofence=within,
        distance_meters=distance,
        radius_meters=radius,
        message=message,
    )
