# geocapture/map_surface.py
"""
Headless drawing surface the widget renders against.

Everything in here lives in projected coordinates and holds shapely geometry.
The widget owns one MapSurface and is the only code that reads it.
"""
from __future__ import annotations

import math
from typing import Optional

from shapely.geometry import Point, Polygon
from shapely.geometry.base import BaseGeometry

Coord = tuple[float, float]

# Metres per pixel at zoom 0 for 256px Web Mercator tiles
ZOOM0_RESOLUTION = 156543.03392804097


class VectorSource:
    """Holds at most one feature geometry."""

    def __init__(self):
        self._feature: Optional[BaseGeometry] = None

    @property
    def feature(self) -> Optional[BaseGeometry]:
        return self._feature

    def add(self, geom: BaseGeometry) -> None:
        self._feature = geom

    def clear(self) -> None:
        self._feature = None

    def is_empty(self) -> bool:
        return self._feature is None


class MapView:
    def __init__(self, center: Coord, zoom: float, viewport: tuple[int, int] = (800, 500)):
        self.center = center
        self.zoom = float(zoom)
        self.rotation = 0.0
        self.viewport = viewport
        self.last_animation: Optional[dict] = None

    def center_on(self, xy: Coord, zoom: Optional[float] = None) -> None:
        self.center = (float(xy[0]), float(xy[1]))
        if zoom is not None:
            self.zoom = float(zoom)

    def fit(self, extent: tuple[float, float, float, float], padding: int = 100, max_zoom: float = 18) -> None:
        """Center on an extent and pick the largest zoom that shows all of it."""
        minx, miny, maxx, maxy = extent
        self.center = ((minx + maxx) / 2.0, (miny + maxy) / 2.0)

        width_px = max(1, self.viewport[0] - 2 * padding)
        height_px = max(1, self.viewport[1] - 2 * padding)
        resolution = max((maxx - minx) / width_px, (maxy - miny) / height_px)
        if resolution <= 0:
            self.zoom = float(max_zoom)
            return
        self.zoom = min(float(max_zoom), math.log2(ZOOM0_RESOLUTION / resolution))

    def animate_rotation(self, rotation: float, duration_ms: int = 250) -> None:
        # headless: the animation lands immediately
        self.last_animation = {"rotation": rotation, "duration_ms": duration_ms}
        self.rotation = float(rotation)


class MapSurface:
    def __init__(self, view: MapView, base_layer: str = "street"):
        self.view = view
        self.point_source = VectorSource()
        self.polygon_source = VectorSource()
        self.draw_type: Optional[str] = None  # None | "Point" | "Polygon"
        self.sketch: list[Coord] = []  # open path while drawing a polygon
        self.modify_enabled = False
        self.base_layer = base_layer

    # -- draw interaction --

    def start_draw(self, draw_type: str) -> None:
        self.draw_type = draw_type
        self.sketch = []
        self.modify_enabled = False

    def stop_draw(self) -> None:
        self.draw_type = None
        self.sketch = []

    # -- features --

    def set_point(self, xy: Coord) -> None:
        self.point_source.clear()
        self.point_source.add(Point(xy))

    def set_polygon(self, ring: list[Coord]) -> None:
        self.polygon_source.clear()
        self.polygon_source.add(Polygon(ring))

    def point_xy(self) -> Optional[Coord]:
        geom = self.point_source.feature
        if geom is None:
            return None
        return (geom.x, geom.y)

    def polygon_ring(self) -> Optional[list[Coord]]:
        geom = self.polygon_source.feature
        if geom is None:
            return None
        return [(x, y) for x, y in geom.exterior.coords]

    def polygon_extent(self) -> Optional[tuple[float, float, float, float]]:
        geom = self.polygon_source.feature
        return None if geom is None else geom.bounds
