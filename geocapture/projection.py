# geocapture/projection.py
from __future__ import annotations

import math
from typing import Iterable, Sequence

from pyproj import CRS, Transformer

from geocapture.exceptions import ConversionError

Coord = tuple[float, float]

# Web Mercator is undefined at the poles; web map libraries clamp to this band.
MAX_MERCATOR_LAT = 85.05112878
WORLD_HALF_EXTENT = 20037508.342789244


def is_geographic(lon: float, lat: float) -> bool:
    """Check lon/lat are finite and inside [-180, 180] x [-90, 90]."""
    try:
        lon, lat = float(lon), float(lat)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


class Projector:
    """Converts between geographic lon/lat and the map's projected CRS."""

    def __init__(self, geographic_epsg: int = 4326, projected_epsg: int = 3857):
        self.geographic_crs = CRS.from_epsg(geographic_epsg)
        self.projected_crs = CRS.from_epsg(projected_epsg)
        self._forward = Transformer.from_crs(self.geographic_crs, self.projected_crs, always_xy=True)
        self._inverse = Transformer.from_crs(self.projected_crs, self.geographic_crs, always_xy=True)
        self._mercator = projected_epsg == 3857

    def to_projected(self, lon: float, lat: float) -> Coord:
        if not is_geographic(lon, lat):
            raise ConversionError(f"Coordinate out of range: lon={lon}, lat={lat}")
        lat = float(lat)
        if self._mercator:
            lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
        x, y = self._forward.transform(float(lon), lat)
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ConversionError(f"Projection failed for lon={lon}, lat={lat}")
        return float(x), float(y)

    def to_geographic(self, x: float, y: float) -> Coord:
        try:
            x, y = float(x), float(y)
        except (TypeError, ValueError):
            raise ConversionError(f"Projected coordinate is not numeric: {x!r}, {y!r}")
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ConversionError(f"Projected coordinate is not finite: {x}, {y}")
        limit = WORLD_HALF_EXTENT + 1e-3
        if self._mercator and (abs(x) > limit or abs(y) > limit):
            raise ConversionError(f"Projected coordinate outside world extent: {x}, {y}")

        lon, lat = self._inverse.transform(x, y)
        if not is_geographic(lon, lat):
            raise ConversionError(f"Inverse projection out of range: lon={lon}, lat={lat}")
        return float(lon), float(lat)

    def ring_to_projected(self, ring: Iterable[Sequence[float]]) -> list[Coord]:
        return [self.to_projected(c[0], c[1]) for c in ring]

    def ring_to_geographic(self, ring: Iterable[Sequence[float]]) -> list[Coord]:
        return [self.to_geographic(c[0], c[1]) for c in ring]
