"""Geofence validation for scan locations.

Compares a scanner-reported coordinate against the session anchor using
the haversine great-circle distance. Pure functions; no database access.

Mode rules:
- off, or no anchor configured: always within bounds, never blocks
- warn: outside the radius (or no location) produces a warning only
- enforce: outside the radius blocks; a missing location blocks when
  block_missing_location is set, otherwise it warns
"""

import math
from dataclasses import dataclass

# =============================================================================
# Constants
# =============================================================================

EARTH_RADIUS_M = 6_371_000.0

GEOFENCE_OFF = "off"
GEOFENCE_WARN = "warn"
GEOFENCE_ENFORCE = "enforce"

_VALID_MODES = frozenset({GEOFENCE_OFF, GEOFENCE_WARN, GEOFENCE_ENFORCE})

MISSING_LOCATION_WARNING = "Location not provided"
LOCATION_REQUIRED_WARNING = "Location permission required"


@dataclass(frozen=True)
class Coordinates:
    """A WGS84 latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class GeofenceResult:
    """Outcome of a geofence check.

    Attributes:
        distance_m: Distance from the anchor, or None when not computed.
        within_bounds: True if the scanner is inside the radius (or the
            check did not apply).
        should_block: True if the scan must be rejected.
        warning: Human-readable explanation when outside bounds or when
            the location was missing.
    """

    distance_m: float | None
    within_bounds: bool
    should_block: bool
    warning: str | None = None


# =============================================================================
# Distance
# =============================================================================


def haversine_distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two coordinates in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


# =============================================================================
# Validation
# =============================================================================


def validate_location(
    *,
    anchor: Coordinates | None,
    radius_m: float,
    mode: str,
    reported: Coordinates | None,
    block_missing_location: bool = True,
) -> GeofenceResult:
    """Check a reported location against a session geofence.

    Args:
        anchor: Session anchor, or None if the session has no geofence.
        radius_m: Allowed distance from the anchor in meters.
        mode: One of off, warn, enforce.
        reported: Scanner-reported location, or None if not supplied.
        block_missing_location: In enforce mode, reject scans without a
            location instead of warning.

    Returns:
        GeofenceResult describing distance, bounds and whether to block.

    Raises:
        ValueError: If mode is unknown or radius_m is not positive.
    """
    if mode not in _VALID_MODES:
        raise ValueError(f"Unknown geofence mode: {mode!r}")
    if radius_m <= 0:
        raise ValueError("Geofence radius must be positive")

    if mode == GEOFENCE_OFF or anchor is None:
        return GeofenceResult(distance_m=None, within_bounds=True, should_block=False)

    if reported is None:
        if mode == GEOFENCE_ENFORCE and block_missing_location:
            return GeofenceResult(
                distance_m=None,
                within_bounds=False,
                should_block=True,
                warning=LOCATION_REQUIRED_WARNING,
            )
        return GeofenceResult(
            distance_m=None,
            within_bounds=False,
            should_block=False,
            warning=MISSING_LOCATION_WARNING,
        )

    distance = haversine_distance(anchor, reported)
    if distance <= radius_m:
        return GeofenceResult(distance_m=distance, within_bounds=True, should_block=False)

    warning = f"{round(distance)}m from session location (limit: {radius_m:g}m)"
    return GeofenceResult(
        distance_m=distance,
        within_bounds=False,
        should_block=mode == GEOFENCE_ENFORCE,
        warning=warning,
    )
