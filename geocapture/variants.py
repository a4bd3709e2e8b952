# geocapture/variants.py
from __future__ import annotations

from dataclasses import dataclass

from geocapture.exceptions import UnknownVariantError


@dataclass(frozen=True)
class WidgetVariant:
    """What a widget instance is drawing for: labels, form fields, default view."""

    key: str
    label: str
    point_field: str
    polygon_field: str
    default_center: tuple[float, float]  # (lon, lat)
    default_zoom: float

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "point_field": self.point_field,
            "polygon_field": self.polygon_field,
            "default_center": list(self.default_center),
            "default_zoom": self.default_zoom,
        }


VARIANTS: dict[str, WidgetVariant] = {
    v.key: v
    for v in (
        WidgetVariant("farm", "Farm location", "locationPoint", "farmBoundary", (84.25, 28.5), 7),
        WidgetVariant("processing_center", "Processing center location", "locationPoint", "areaPolygon", (84.0, 28.3), 7),
        WidgetVariant("historical_site", "Historical site location", "locationPoint", "siteBoundary", (84.124, 28.3949), 7),
        WidgetVariant("local_area", "Local area", "pointGeometry", "polygonGeometry", (84.0, 28.3), 6),
    )
}


def get_variant(key: str) -> WidgetVariant:
    try:
        return VARIANTS[key]
    except KeyError:
        raise UnknownVariantError(f"Unknown widget variant: {key}")
