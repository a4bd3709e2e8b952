import logging
from typing import Any, Callable, List, Optional

import structlog
from fastapi import FastAPI, Depends, UploadFile, File, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from geocapture.db import Base, engine, get_db
from geocapture import crud, schemas
from geocapture.capture_service import CaptureService
from geocapture.config import settings
from geocapture.deps import get_capture_service, get_import_service
from geocapture.exceptions import ConversionError, SessionNotFoundError, UnknownVariantError
from geocapture.geolocation import reported_position
from geocapture.geometry_sources import CsvSource, GeoJSONSource
from geocapture.import_service import GeometryImportService
from geocapture.variants import VARIANTS
from geocapture.widget import GeometryCaptureWidget

# Configure structured logging
logging.basicConfig(format="%(message)s", level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.LOG_FORMAT == "json" else structlog.dev.ConsoleRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = FastAPI(title="Geometry Capture API (SQLite)")

# Create tables at startup
@app.on_event("startup")
def _init_db():
    settings.validate()
    Base.metadata.create_all(bind=engine)

@app.get("/health")
def health():
    return {"ok": True}

@app.get("/variants")
def list_variants():
    return [v.as_dict() for v in VARIANTS.values()]

# ---------- base layer preference ----------

@app.get("/preferences/base-layer")
def get_base_layer(svc: CaptureService = Depends(get_capture_service)):
    return svc.preference.as_dict()

@app.post("/preferences/base-layer")
def set_base_layer(payload: schemas.BaseLayerIn, svc: CaptureService = Depends(get_capture_service)):
    svc.preference.set(payload.base_layer)
    return svc.preference.as_dict()

@app.post("/preferences/base-layer/toggle")
def toggle_base_layer(svc: CaptureService = Depends(get_capture_service)):
    svc.preference.toggle()
    return svc.preference.as_dict()

# ---------- widget sessions ----------

def _gesture(
    svc: CaptureService,
    db: Session,
    session_id: str,
    gesture: Callable[[GeometryCaptureWidget], Any],
) -> dict:
    # Gesture routes stay `async def` so they all run on the event loop thread,
    # one at a time; a plain `def` would move them onto the threadpool and
    # let two gestures on one widget interleave and reorder its emissions.
    try:
        session, result, emitted = svc.perform(db, session_id, gesture)
    except SessionNotFoundError:
        raise HTTPException(404, "Widget session not found")
    # only the geolocation gesture carries a user-facing message
    message = getattr(result, "message", None)
    return {**session.describe(), "emitted": emitted, "message": message}

@app.post("/widgets", status_code=201)
async def mount_widget(
    payload: schemas.WidgetCreate,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    try:
        session = svc.mount(db, payload)
    except UnknownVariantError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (ValidationError, ConversionError) as e:
        raise HTTPException(status_code=422, detail=f"Stored geometry is not usable: {e}")
    return {**session.describe(), "emitted": False, "message": None}

@app.get("/widgets/{session_id}")
async def get_widget(session_id: str, svc: CaptureService = Depends(get_capture_service)):
    try:
        return svc.get(session_id).describe()
    except SessionNotFoundError:
        raise HTTPException(404, "Widget session not found")

@app.delete("/widgets/{session_id}")
async def unmount_widget(session_id: str, svc: CaptureService = Depends(get_capture_service)):
    try:
        svc.unmount(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Widget session not found")
    return {"ok": True}

@app.post("/widgets/{session_id}/point/start")
async def start_point(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.start_point_placement())

@app.post("/widgets/{session_id}/polygon/start")
async def start_polygon(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.start_polygon_drawing())

@app.post("/widgets/{session_id}/polygon/complete")
async def complete_polygon(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.complete_polygon())

@app.post("/widgets/{session_id}/cancel")
async def cancel_drawing(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.cancel_drawing())

@app.post("/widgets/{session_id}/click")
async def click(
    session_id: str,
    payload: schemas.ProjectedClick,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    return _gesture(svc, db, session_id, lambda w: w.click(payload.x, payload.y))

@app.post("/widgets/{session_id}/point/drag")
async def drag_point(
    session_id: str,
    payload: schemas.ProjectedClick,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    return _gesture(svc, db, session_id, lambda w: w.drag_point(payload.x, payload.y))

@app.post("/widgets/{session_id}/polygon/modify")
async def modify_polygon(
    session_id: str,
    payload: schemas.ProjectedRing,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    return _gesture(svc, db, session_id, lambda w: w.modify_polygon(payload.ring))

@app.post("/widgets/{session_id}/point/clear")
async def clear_point(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.clear_point())

@app.post("/widgets/{session_id}/polygon/clear")
async def clear_polygon(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.clear_polygon())

@app.post("/widgets/{session_id}/clear")
async def clear_all(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.clear_all())

@app.post("/widgets/{session_id}/view/rotate")
async def rotate_view(
    session_id: str,
    payload: schemas.RotateIn,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    return _gesture(svc, db, session_id, lambda w: w.rotate(payload.rotation))

@app.post("/widgets/{session_id}/view/reset-rotation")
async def reset_rotation(session_id: str, db: Session = Depends(get_db), svc: CaptureService = Depends(get_capture_service)):
    return _gesture(svc, db, session_id, lambda w: w.reset_orientation())

@app.post("/widgets/{session_id}/locate")
async def locate(
    session_id: str,
    payload: schemas.LocateIn,
    db: Session = Depends(get_db),
    svc: CaptureService = Depends(get_capture_service),
):
    locator = reported_position(payload.lon, payload.lat, accuracy_m=payload.accuracy_m, error=payload.error)
    return _gesture(svc, db, session_id, lambda w: w.center_on_current_location(locator))

# ---------- form geometry ----------

@app.get("/forms", response_model=List[schemas.FormGeometryOut])
def list_forms(variant: Optional[str] = None, db: Session = Depends(get_db)):
    return crud.list_form_geometries(db, variant)

@app.get("/forms/{form_id}", response_model=schemas.FormGeometryOut)
def get_form(form_id: str, db: Session = Depends(get_db)):
    obj = crud.get_form_geometry(db, form_id)
    if not obj:
        raise HTTPException(404, "Form geometry not found")
    return obj

@app.delete("/forms/{form_id}")
def delete_form(form_id: str, db: Session = Depends(get_db)):
    if not crud.delete_form_geometry(db, form_id):
        raise HTTPException(404, "Form geometry not found")
    return {"ok": True}

# ---------- imports ----------

@app.post("/import/csv")
async def import_csv(
    file: UploadFile = File(...),
    variant: str = "farm",
    db: Session = Depends(get_db),
    svc: GeometryImportService = Depends(get_import_service),
):
    try:
        content = (await file.read()).decode("utf-8")
        return svc.ingest(CsvSource(content, default_variant=variant), db)
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV must be UTF-8 encoded: {e}")
    except ValueError as e:
        logger.warning("geometry_import_failed", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))

@app.post("/import/geojson")
async def import_geojson(
    geojson: dict,
    variant: str = "farm",
    db: Session = Depends(get_db),
    svc: GeometryImportService = Depends(get_import_service),
):
    try:
        return svc.ingest(GeoJSONSource(geojson, default_variant=variant), db)
    except ValueError as e:
        logger.warning("geometry_import_failed", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))
