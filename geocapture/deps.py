# geocapture/deps.py
from datetime import timedelta

from geocapture.capture_service import CaptureService
from geocapture.config import settings
from geocapture.import_service import GeometryImportService
from geocapture.preferences import BaseLayerPreference
from geocapture.projection import Projector

_capture_service = CaptureService(
    preference=BaseLayerPreference(settings.DEFAULT_BASE_LAYER),
    projector=Projector(projected_epsg=settings.PROJECTED_EPSG),
    viewport=(settings.VIEWPORT_WIDTH, settings.VIEWPORT_HEIGHT),
    idle_ttl=timedelta(minutes=settings.SESSION_IDLE_TTL_MINUTES),
    max_sessions=settings.MAX_SESSIONS,
)
_import_service = GeometryImportService()


def get_capture_service() -> CaptureService:
    return _capture_service


def get_import_service() -> GeometryImportService:
    return _import_service
