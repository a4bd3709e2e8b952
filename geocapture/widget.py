# geocapture/widget.py
"""
Geometry capture widget.

One marker (Point) and one boundary (Polygon) drawn on a projected map
surface, mirrored to the enclosing form as plain GeoJSON-shaped dicts in
geographic lon/lat. Every change is pushed through ``on_geometry_change``
with both current values, in the order the gestures happened.

Per geometry the widget is ``empty``, ``drawing`` or ``placed``; only user
gestures move it between states. Gestures that make no sense in the current
state (completing a two-vertex ring, dragging a missing marker, ...) are
no-ops and return False.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ValidationError

from geocapture.exceptions import ConversionError, GeolocationError
from geocapture.geolocation import Locator
from geocapture.map_surface import MapSurface, MapView
from geocapture.preferences import BaseLayerPreference
from geocapture.projection import Projector
from geocapture.schemas import PointGeometry, PolygonGeometry, distinct_vertex_count
from geocapture.variants import WidgetVariant

logger = structlog.get_logger(__name__)

Coord = tuple[float, float]
GeometryChange = Callable[[Optional[dict], Optional[dict]], None]
GeometryInput = Union[dict, BaseModel, None]

POINT_ZOOM = 15
FIT_PADDING = 100
FIT_MAX_ZOOM = 18
RESET_ROTATION_MS = 250


class GeometryState(str, Enum):
    EMPTY = "empty"
    DRAWING = "drawing"
    PLACED = "placed"


@dataclass
class LocateResult:
    ok: bool
    message: Optional[str] = None


@dataclass
class _Placed:
    """A placed geometry in both coordinate systems."""

    geojson: dict
    projected: Union[Coord, list[Coord]]


def _as_dict(value: GeometryInput) -> Optional[dict]:
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def _point_dict(lonlat: Coord) -> dict:
    return PointGeometry(coordinates=lonlat).model_dump()


def _polygon_dict(ring: Sequence[Coord]) -> dict:
    return PolygonGeometry(coordinates=[list(ring)]).model_dump()


def _to_json_shape(geom: Optional[dict]) -> Optional[dict]:
    """Tuples -> lists, and a private copy for the caller."""
    if geom is None:
        return None
    if geom["type"] == "Point":
        return {"type": "Point", "coordinates": [float(v) for v in geom["coordinates"]]}
    return {
        "type": "Polygon",
        "coordinates": [[[float(c[0]), float(c[1])] for c in ring] for ring in geom["coordinates"]],
    }


def _open_ring(ring: list) -> list:
    if len(ring) > 1 and tuple(ring[0]) == tuple(ring[-1]):
        return ring[:-1]
    return ring


class GeometryCaptureWidget:
    def __init__(
        self,
        variant: WidgetVariant,
        on_geometry_change: GeometryChange,
        *,
        initial_point: GeometryInput = None,
        initial_polygon: GeometryInput = None,
        preference: Optional[BaseLayerPreference] = None,
        projector: Optional[Projector] = None,
        viewport: tuple[int, int] = (800, 500),
    ):
        self.variant = variant
        self._on_change = on_geometry_change
        self._projector = projector or Projector()
        self._preference = preference or BaseLayerPreference()

        view = MapView(
            center=self._projector.to_projected(*variant.default_center),
            zoom=variant.default_zoom,
            viewport=viewport,
        )
        self._map = MapSurface(view, base_layer=self._preference.current)

        self._point: Optional[_Placed] = None
        self._polygon: Optional[_Placed] = None
        self._point_state = GeometryState.EMPTY
        self._polygon_state = GeometryState.EMPTY
        # geometry hidden by an in-progress drawing, restored on cancel
        self._stash: Optional[_Placed] = None
        self._sketch_lonlat: list[Coord] = []

        self._load_initial(_as_dict(initial_point), _as_dict(initial_polygon))

    # ---------- mount ----------

    def _load_initial(self, point: Optional[dict], polygon: Optional[dict]) -> None:
        if point is not None:
            geo = PointGeometry.model_validate(point)
            xy = self._projector.to_projected(*geo.coordinates)
            self._point = _Placed(geo.model_dump(), xy)
            self._map.set_point(xy)
            self._point_state = GeometryState.PLACED

        if polygon is not None:
            geo = PolygonGeometry.model_validate(polygon)
            ring = self._projector.ring_to_projected(geo.coordinates[0])
            self._polygon = _Placed(geo.model_dump(), ring)
            self._map.set_polygon(ring)
            self._polygon_state = GeometryState.PLACED

        # polygon extent wins over the point when both are present
        view = self._map.view
        if self._polygon is not None:
            view.fit(self._map.polygon_extent(), padding=FIT_PADDING, max_zoom=FIT_MAX_ZOOM)
        elif self._point is not None:
            view.center_on(self._point.projected, POINT_ZOOM)

        self._map.modify_enabled = self._point is not None or self._polygon is not None
        logger.info(
            "widget_mounted",
            variant=self.variant.key,
            has_point=self._point is not None,
            has_polygon=self._polygon is not None,
        )

    # ---------- read side ----------

    @property
    def point(self) -> Optional[dict]:
        return _to_json_shape(self._point.geojson) if self._point else None

    @property
    def polygon(self) -> Optional[dict]:
        return _to_json_shape(self._polygon.geojson) if self._polygon else None

    @property
    def point_state(self) -> GeometryState:
        return self._point_state

    @property
    def polygon_state(self) -> GeometryState:
        return self._polygon_state

    @property
    def drawing_mode(self) -> Optional[str]:
        return self._map.draw_type

    @property
    def drawing_vertices(self) -> list[list[float]]:
        return [[lon, lat] for lon, lat in self._sketch_lonlat]

    @property
    def base_layer(self) -> str:
        return self._preference.current

    @property
    def view(self) -> MapView:
        return self._map.view

    def snapshot(self) -> dict:
        view = self._map.view
        try:
            center = list(self._projector.to_geographic(*view.center))
        except ConversionError:
            center = None
        return {
            "variant": self.variant.key,
            "fields": {"point": self.variant.point_field, "polygon": self.variant.polygon_field},
            "mode": self._map.draw_type.lower() if self._map.draw_type else "idle",
            "point_state": self._point_state.value,
            "polygon_state": self._polygon_state.value,
            "point": self.point,
            "polygon": self.polygon,
            "drawing_vertices": self.drawing_vertices,
            "can_complete": self._can_complete(),
            "modify_enabled": self._map.modify_enabled,
            "view": {
                "center": center,
                "center_projected": list(view.center),
                "zoom": view.zoom,
                "rotation": view.rotation,
            },
            "base_layer": self._preference.as_dict(),
        }

    # ---------- emission ----------

    def _emit(self) -> bool:
        point, polygon = self.point, self.polygon
        logger.debug(
            "geometry_changed",
            variant=self.variant.key,
            point=point is not None,
            polygon=polygon is not None,
        )
        self._on_change(point, polygon)
        return True

    def _finish_drawing(self) -> None:
        self._map.stop_draw()
        self._stash = None
        self._sketch_lonlat = []
        self._map.modify_enabled = True

    # ---------- drawing ----------

    def start_point_placement(self) -> None:
        self.cancel_drawing()
        self._stash = self._point
        self._point = None
        self._map.point_source.clear()
        self._point_state = GeometryState.DRAWING
        self._map.start_draw("Point")

    def start_polygon_drawing(self) -> None:
        self.cancel_drawing()
        self._stash = self._polygon
        self._polygon = None
        self._map.polygon_source.clear()
        self._polygon_state = GeometryState.DRAWING
        self._map.start_draw("Polygon")
        self._sketch_lonlat = []

    def cancel_drawing(self) -> bool:
        draw_type = self._map.draw_type
        if draw_type is None:
            return False

        previous, self._stash = self._stash, None
        if draw_type == "Point":
            self._point = previous
            if previous is not None:
                self._map.set_point(previous.projected)
            self._point_state = GeometryState.PLACED if previous else GeometryState.EMPTY
        else:
            self._polygon = previous
            if previous is not None:
                self._map.set_polygon(previous.projected)
            self._polygon_state = GeometryState.PLACED if previous else GeometryState.EMPTY

        self._map.stop_draw()
        self._sketch_lonlat = []
        self._map.modify_enabled = self._point is not None or self._polygon is not None
        return True

    def click(self, x: float, y: float) -> bool:
        """A click on the map surface at projected (x, y). True if it emitted."""
        draw_type = self._map.draw_type
        if draw_type is None:
            return False

        try:
            lonlat = self._projector.to_geographic(x, y)
        except ConversionError as e:
            logger.warning("click_not_convertible", variant=self.variant.key, x=x, y=y, error=str(e))
            return False

        if draw_type == "Polygon":
            self._map.sketch.append((float(x), float(y)))
            self._sketch_lonlat.append(lonlat)
            return False

        self._point = _Placed(_point_dict(lonlat), (float(x), float(y)))
        self._map.set_point(self._point.projected)
        self._point_state = GeometryState.PLACED
        self._finish_drawing()
        return self._emit()

    def _can_complete(self) -> bool:
        return self._map.draw_type == "Polygon" and distinct_vertex_count(_open_ring(self._sketch_lonlat)) >= 3

    def complete_polygon(self) -> bool:
        if not self._can_complete():
            return False

        lonlat = _open_ring(self._sketch_lonlat)
        xy = _open_ring(self._map.sketch)
        try:
            geojson = _polygon_dict(lonlat + [lonlat[0]])
        except ValidationError as e:
            logger.warning("polygon_rejected", variant=self.variant.key, error=str(e))
            return False

        self._polygon = _Placed(geojson, xy + [xy[0]])
        self._map.set_polygon(self._polygon.projected)
        self._polygon_state = GeometryState.PLACED
        self._finish_drawing()
        return self._emit()

    # ---------- modification ----------

    def drag_point(self, x: float, y: float) -> bool:
        """Marker drag ended at projected (x, y)."""
        if self._map.draw_type is not None or self._point is None:
            return False
        try:
            lonlat = self._projector.to_geographic(x, y)
        except ConversionError as e:
            logger.warning("drag_not_convertible", variant=self.variant.key, x=x, y=y, error=str(e))
            return False

        self._point = _Placed(_point_dict(lonlat), (float(x), float(y)))
        self._map.set_point(self._point.projected)
        return self._emit()

    def modify_polygon(self, ring: Sequence[Sequence[float]]) -> bool:
        """Vertex edit ended; ``ring`` is the full projected outer ring."""
        if self._map.draw_type is not None or self._polygon is None:
            return False

        xy = _open_ring([(float(c[0]), float(c[1])) for c in ring])
        try:
            lonlat = self._projector.ring_to_geographic(xy)
        except ConversionError as e:
            logger.warning("modify_not_convertible", variant=self.variant.key, error=str(e))
            return False
        if distinct_vertex_count(lonlat) < 3:
            return False

        try:
            geojson = _polygon_dict(lonlat + [lonlat[0]])
        except ValidationError as e:
            logger.warning("polygon_rejected", variant=self.variant.key, error=str(e))
            return False

        self._polygon = _Placed(geojson, xy + [xy[0]])
        self._map.set_polygon(self._polygon.projected)
        return self._emit()

    def clear_point(self) -> bool:
        if self._map.draw_type == "Point":
            self.cancel_drawing()
        self._map.point_source.clear()
        self._point = None
        self._point_state = GeometryState.EMPTY
        self._map.modify_enabled = self._map.draw_type is None and self._polygon is not None
        return self._emit()

    def clear_polygon(self) -> bool:
        if self._map.draw_type == "Polygon":
            self.cancel_drawing()
        self._map.polygon_source.clear()
        self._polygon = None
        self._polygon_state = GeometryState.EMPTY
        self._map.modify_enabled = self._map.draw_type is None and self._point is not None
        return self._emit()

    def clear_all(self) -> bool:
        self._map.stop_draw()
        self._map.point_source.clear()
        self._map.polygon_source.clear()
        self._map.modify_enabled = False
        self._point = self._polygon = self._stash = None
        self._sketch_lonlat = []
        self._point_state = self._polygon_state = GeometryState.EMPTY
        return self._emit()

    # ---------- cosmetic ----------

    def rotate(self, rotation: float) -> None:
        self._map.view.rotation = float(rotation)

    def reset_orientation(self) -> None:
        self._map.view.animate_rotation(0.0, duration_ms=RESET_ROTATION_MS)

    def toggle_base_layer(self) -> str:
        self._map.base_layer = self._preference.toggle()
        return self._map.base_layer

    def center_on_current_location(self, locate: Locator) -> LocateResult:
        try:
            position = locate()
            xy = self._projector.to_projected(position.lon, position.lat)
        except GeolocationError as e:
            logger.info("geolocation_failed", variant=self.variant.key, code=e.code)
            return LocateResult(ok=False, message=e.message)
        except ConversionError:
            return LocateResult(ok=False, message="Reported location is not a valid coordinate.")

        self._map.view.center_on(xy, POINT_ZOOM)
        return LocateResult(ok=True)
