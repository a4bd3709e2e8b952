from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from geocapture import models
from geocapture.utils import to_aware_utc

# ---------- tiny, single-purpose helpers ----------

def _aware(ts: Optional[datetime]) -> datetime:
    return to_aware_utc(ts)

def _is_newer(existing_ts: datetime, incoming_ts: datetime) -> bool:
    return incoming_ts >= existing_ts

def _geometry_dict(value) -> Optional[dict]:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        value = value.model_dump()
    return _listify(value)

def _listify(geom: dict) -> dict:
    # JSON columns round-trip lists; keep what we store identical to what we read
    def conv(c):
        if isinstance(c, (list, tuple)):
            return [conv(v) for v in c]
        return float(c)
    return {"type": geom["type"], "coordinates": conv(geom["coordinates"])}

def _insert_new(db: Session, payload, *, point, polygon) -> models.FormGeometry:
    obj = models.FormGeometry(
        form_id=payload.form_id,
        variant=payload.variant,
        point=point,
        polygon=polygon,
        source=payload.source,
        last_updated=_aware(payload.last_updated),
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

# ---------- widget emissions ----------

def save_form_geometry(
    db: Session,
    *,
    form_id: str,
    variant: str,
    point: Optional[dict],
    polygon: Optional[dict],
    updated_at: datetime,
) -> models.FormGeometry:
    """
    Mirror one widget emission into the form's geometry fields.
    Emissions always win; None clears the field.
    """
    obj = db.get(models.FormGeometry, form_id)
    if obj is None:
        obj = models.FormGeometry(form_id=form_id)
        db.add(obj)

    obj.variant = variant
    obj.point = _geometry_dict(point)
    obj.polygon = _geometry_dict(polygon)
    obj.source = "widget"
    obj.last_updated = _aware(updated_at)
    db.commit()
    db.refresh(obj)
    return obj

# ---------- imports ----------

def upsert_imported_geometry(db: Session, payload) -> tuple[models.FormGeometry, bool]:
    """
    Insert or merge geometry coming from an export of stored entities.
    Fields are only overwritten by a non-empty value that is not older than
    what is stored. Returns (obj, changed).
    """
    point = _geometry_dict(payload.point)
    polygon = _geometry_dict(payload.polygon)

    obj = db.get(models.FormGeometry, payload.form_id)
    if not obj:
        return _insert_new(db, payload, point=point, polygon=polygon), True

    existing_ts = _aware(obj.last_updated)
    incoming_ts = _aware(payload.last_updated)
    if not _is_newer(existing_ts, incoming_ts):
        return obj, False

    changed = False
    if point is not None and point != obj.point:
        obj.point = point
        changed = True
    if polygon is not None and polygon != obj.polygon:
        obj.polygon = polygon
        changed = True

    obj.variant = payload.variant
    obj.source = payload.source
    obj.last_updated = incoming_ts
    db.commit()
    db.refresh(obj)
    return obj, changed

# ---------- reads ----------

def get_form_geometry(db: Session, form_id: str) -> Optional[models.FormGeometry]:
    return db.get(models.FormGeometry, form_id)

def list_form_geometries(db: Session, variant: Optional[str] = None) -> list[models.FormGeometry]:
    q = db.query(models.FormGeometry)
    if variant:
        q = q.filter(models.FormGeometry.variant == variant)
    return q.order_by(models.FormGeometry.form_id.asc()).all()

def delete_form_geometry(db: Session, form_id: str) -> bool:
    obj = db.get(models.FormGeometry, form_id)
    if not obj:
        return False
    db.delete(obj)
    db.commit()
    return True
