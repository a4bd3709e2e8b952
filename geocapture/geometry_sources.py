# geocapture/geometry_sources.py
from __future__ import annotations
from typing import Iterable, Protocol, Any, Dict, Optional
import csv, io

from geocapture.utils import parse_geometry_text

class GeometrySource(Protocol):
    def records(self) -> Iterable[Dict[str, Any]]:
        """Yield normalized dicts with keys:
        form_id, variant, point, polygon, last_updated, source
        A record that could not be read carries only form_id and error.
        Problems with the document as a whole raise ValueError before any record.
        """
        ...

def _bad_record(form_id: Optional[str], err: Exception) -> Dict[str, Any]:
    return {"form_id": form_id, "error": str(err)}

class CsvSource(GeometrySource):
    def __init__(self, content: str, default_variant: str = "farm"):
        self._content = content
        self._default_variant = default_variant

    def records(self) -> Iterable[Dict[str, Any]]:
        reader = csv.DictReader(io.StringIO(self._content))
        if not reader.fieldnames or "form_id" not in reader.fieldnames:
            raise ValueError("CSV must include a 'form_id' column")

        for line_no, row in enumerate(reader, start=2):
            form_id = row.get("form_id")
            if not form_id:
                yield _bad_record(None, ValueError(f"line {line_no}: missing form_id"))
                continue
            try:
                point = parse_geometry_text(row.get("point"))
                polygon = parse_geometry_text(row.get("polygon"))
            except ValueError as e:
                yield _bad_record(str(form_id), e)
                continue
            yield {
                "form_id": str(form_id),
                "variant": row.get("variant") or self._default_variant,
                "point": point,
                "polygon": polygon,
                "last_updated": row.get("last_updated") or None,
                "source": "csv",
            }

class GeoJSONSource(GeometrySource):
    def __init__(self, geojson: dict, default_variant: str = "farm"):
        self._geojson = geojson
        self._default_variant = default_variant

    @staticmethod
    def _slot(geom: Optional[dict]) -> Optional[str]:
        if not geom:
            return None
        gtype = geom.get("type") if isinstance(geom, dict) else None
        if gtype == "Point":
            return "point"
        if gtype == "Polygon":
            return "polygon"
        raise ValueError(f"Unsupported geometry type: {gtype}")

    def records(self) -> Iterable[Dict[str, Any]]:
        gtype = self._geojson.get("type")
        if gtype == "FeatureCollection":
            features = self._geojson.get("features", []) or []
        elif gtype == "Feature":
            features = [self._geojson]
        else:
            raise ValueError("Body must be GeoJSON Feature or FeatureCollection")

        for feat in features:
            props = (feat.get("properties") if isinstance(feat, dict) else None) or {}
            if "form_id" not in props:
                yield _bad_record(None, ValueError("Feature properties must include 'form_id'"))
                continue
            form_id = str(props["form_id"])
            geom = feat.get("geometry")
            try:
                slot = self._slot(geom)
            except ValueError as e:
                yield _bad_record(form_id, e)
                continue

            rec = {
                "form_id": form_id,
                "variant": props.get("variant") or self._default_variant,
                "point": None,
                "polygon": None,
                "last_updated": props.get("last_updated"),
                "source": "geojson",
            }
            if slot:
                rec[slot] = geom
            yield rec
