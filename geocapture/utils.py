from __future__ import annotations

from typing import Optional, Union
import json
from datetime import datetime, timezone

import pandas as pd
from shapely.geometry import shape
from shapely.errors import GeometryTypeError


def to_aware_utc(v: Optional[Union[str, datetime]]) -> datetime:
    """Convert input to an aware UTC datetime."""
    if v is None or v == "":
        return datetime.now(timezone.utc)
    if isinstance(v, datetime):
        return v.astimezone(timezone.utc) if v.tzinfo else v.replace(tzinfo=timezone.utc)
    ts = pd.to_datetime(v, errors="coerce", utc=True)
    if pd.isna(ts):
        return datetime.now(timezone.utc)
    return ts.to_pydatetime()


def parse_geometry_text(value: Optional[str]) -> Optional[dict]:
    """Parse a GeoJSON geometry embedded as JSON text (CSV cell); blank -> None."""
    if value is None or not str(value).strip():
        return None
    geom = json.loads(value)
    if not isinstance(geom, dict):
        raise ValueError("Geometry must be a GeoJSON object")
    return geom


def representative_point(geom: Optional[dict]) -> Optional[tuple[float, float]]:
    """(lon, lat) of a GeoJSON geometry: the point itself or the area centroid."""
    if not geom or not isinstance(geom, dict):
        return None
    try:
        g = shape(geom)
    except (GeometryTypeError, ValueError, KeyError, TypeError, IndexError):
        return None
    if g.is_empty:
        return None
    c = g.centroid
    if c.is_empty:
        return None
    return (float(c.x), float(c.y))
