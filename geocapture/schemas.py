# geocapture/schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal, List, Tuple
from datetime import datetime

LonLat = Tuple[float, float]


def _check_lonlat(c) -> None:
    lon, lat = c
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude must be between -180 and 180 degrees, got {lon}")
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude must be between -90 and 90 degrees, got {lat}")


def distinct_vertex_count(ring) -> int:
    return len({(float(c[0]), float(c[1])) for c in ring})


class PointGeometry(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: LonLat  # [longitude, latitude]

    @field_validator("coordinates")
    @classmethod
    def _in_range(cls, v):
        _check_lonlat(v)
        return v


class PolygonGeometry(BaseModel):
    """Outer ring only; closed, with at least 3 distinct vertices."""

    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[LonLat]]

    @field_validator("coordinates")
    @classmethod
    def _closed_outer_ring(cls, v):
        if len(v) != 1:
            raise ValueError("Polygon must have exactly one (outer) ring")
        ring = v[0]
        for c in ring:
            _check_lonlat(c)
        if distinct_vertex_count(ring) < 3:
            raise ValueError("Polygon ring needs at least 3 distinct vertices")
        if ring[0] != ring[-1]:
            raise ValueError("Polygon ring must be closed (first == last)")
        return v


# ---------- widget API ----------

class WidgetCreate(BaseModel):
    variant: str = "farm"
    form_id: Optional[str] = None
    initial_point: Optional[PointGeometry] = None
    initial_polygon: Optional[PolygonGeometry] = None


class ProjectedClick(BaseModel):
    x: float
    y: float


class ProjectedRing(BaseModel):
    ring: List[Tuple[float, float]]


class RotateIn(BaseModel):
    rotation: float


class LocateIn(BaseModel):
    lon: Optional[float] = None
    lat: Optional[float] = None
    accuracy_m: Optional[float] = None
    error: Optional[str] = None


class BaseLayerIn(BaseModel):
    base_layer: str = Field(..., pattern="^(street|satellite)$")


# ---------- form geometry store ----------

class FormGeometryBase(BaseModel):
    form_id: str
    variant: str
    point: Optional[PointGeometry] = None
    polygon: Optional[PolygonGeometry] = None
    source: str = Field("widget", pattern="^(widget|csv|geojson)$")
    last_updated: datetime


class FormGeometryOut(FormGeometryBase):
    centroid: Optional[PointGeometry] = None

    class Config:
        from_attributes = True
