# geocapture/preferences.py
from __future__ import annotations

from typing import Literal

BaseLayer = Literal["street", "satellite"]

TILE_URLS: dict[str, str] = {
    "street": "https://mt1.google.com/vt/lyrs=m&x={x}&y={y}&z={z}",
    "satellite": "https://mt1.google.com/vt/lyrs=y,h&x={x}&y={y}&z={z}",
}
MAX_TILE_ZOOM = 19


class BaseLayerPreference:
    """Street vs. satellite imagery, shared by every widget it is handed to."""

    def __init__(self, initial: BaseLayer = "street"):
        if initial not in TILE_URLS:
            raise ValueError(f"Unknown base layer: {initial}")
        self._current: str = initial

    @property
    def current(self) -> str:
        return self._current

    @property
    def is_street_view(self) -> bool:
        return self._current == "street"

    @property
    def tile_url(self) -> str:
        return TILE_URLS[self._current]

    def set(self, value: BaseLayer) -> str:
        if value not in TILE_URLS:
            raise ValueError(f"Unknown base layer: {value}")
        self._current = value
        return self._current

    def toggle(self) -> str:
        return self.set("satellite" if self.is_street_view else "street")

    def as_dict(self) -> dict:
        return {"base_layer": self._current, "tile_url": self.tile_url, "max_zoom": MAX_TILE_ZOOM}
