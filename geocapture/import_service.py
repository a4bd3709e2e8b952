# geocapture/import_service.py
from __future__ import annotations
from typing import Callable, Dict, Any
from datetime import datetime, timezone

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from geocapture import crud, schemas
from geocapture.utils import to_aware_utc
from geocapture.variants import VARIANTS

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
Upsert = Callable[..., tuple]

class GeometryImportService:
    """Seeds stored form geometry from exported entity records."""

    def __init__(self, *, clock: Clock | None = None, upsert: Upsert | None = None):
        # DI
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._upsert = upsert or crud.upsert_imported_geometry

    @staticmethod
    def _reason(err: ValidationError) -> str:
        first = err.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        return f"{where}: {first.get('msg')}" if where else str(first.get("msg"))

    def ingest(self, source, db: Session) -> Dict[str, Any]:
        count = 0
        rejected: list[dict] = []
        import_ts = self._clock()

        for r in source.records():
            if "error" in r:
                rejected.append({"form_id": r["form_id"], "reason": r["error"]})
                continue
            if r["variant"] not in VARIANTS:
                rejected.append({"form_id": r["form_id"], "reason": f"Unknown widget variant: {r['variant']}"})
                continue
            try:
                payload = schemas.FormGeometryBase(
                    form_id=r["form_id"],
                    variant=r["variant"],
                    point=r.get("point"),
                    polygon=r.get("polygon"),
                    source=r["source"],
                    last_updated=to_aware_utc(r["last_updated"]) if r.get("last_updated") else import_ts,
                )
            except ValidationError as e:
                rejected.append({"form_id": r["form_id"], "reason": self._reason(e)})
                continue

            self._upsert(db, payload)
            count += 1

        logger.info("geometry_import_finished", imported=count, rejected=len(rejected))
        return {"imported": count, "rejected": rejected}
