# geocapture/models.py
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.orm import validates
from datetime import timezone
from .db import Base
from .utils import representative_point


class FormGeometry(Base):
    """The two geometry fields of an enclosing form, mirrored from its widget."""

    __tablename__ = "form_geometries"

    form_id = Column(String, primary_key=True, index=True)
    variant = Column(String, nullable=False, index=True)

    # plain GeoJSON dicts; library geometry never reaches the store
    point = Column(JSON, nullable=True)
    polygon = Column(JSON, nullable=True)

    source = Column(String, nullable=False)                    # "widget" | "csv" | "geojson"
    last_updated = Column(DateTime(timezone=True), nullable=False, index=True)

    @validates("last_updated")
    def _tz(self, _, v):
        # ensure aware timestamps
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @property
    def centroid(self):
        # polygon centroid wins over the point
        rep = representative_point(self.polygon) or representative_point(self.point)
        if rep is None:
            return None
        return {"type": "Point", "coordinates": [rep[0], rep[1]]}
