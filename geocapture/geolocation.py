# geocapture/geolocation.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from geocapture.exceptions import GeolocationError

PERMISSION_DENIED = "PERMISSION_DENIED"
POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
TIMEOUT = "TIMEOUT"
UNSUPPORTED = "UNSUPPORTED"

MESSAGES = {
    PERMISSION_DENIED: "Location permission was denied.",
    POSITION_UNAVAILABLE: "Current location is unavailable.",
    TIMEOUT: "Timed out while getting the current location.",
    UNSUPPORTED: "Geolocation is not supported in this environment.",
}


@dataclass(frozen=True)
class Position:
    lon: float
    lat: float
    accuracy_m: Optional[float] = None


Locator = Callable[[], Position]


def reported_position(
    lon: Optional[float] = None,
    lat: Optional[float] = None,
    *,
    accuracy_m: Optional[float] = None,
    error: Optional[str] = None,
) -> Locator:
    """Build a locator from what the client's location API reported."""

    def locate() -> Position:
        if error:
            code = error.upper()
            raise GeolocationError(code, MESSAGES.get(code, MESSAGES[POSITION_UNAVAILABLE]))
        if lon is None or lat is None:
            raise GeolocationError(UNSUPPORTED, MESSAGES[UNSUPPORTED])
        return Position(lon=float(lon), lat=float(lat), accuracy_m=accuracy_m)

    return locate
