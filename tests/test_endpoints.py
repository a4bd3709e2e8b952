from __future__ import annotations

import inspect
import json
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from geocapture import models
from geocapture.capture_service import CaptureService
from geocapture.db import Base, get_db
from geocapture.deps import get_capture_service, get_import_service
from geocapture.import_service import GeometryImportService
from geocapture.main import app
from geocapture.projection import Projector


UTC = timezone.utc
PROJ = Projector()

TRIANGLE = {
    "type": "Polygon",
    "coordinates": [[[84.2, 28.5], [84.3, 28.5], [84.25, 28.6], [84.2, 28.5]]],
}


class ClockStub:
    """Mutable clock so tests can control mirrored timestamps."""

    def __init__(self, initial: datetime | None = None):
        self._now = initial or datetime(2025, 1, 1, tzinfo=UTC)

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **delta_kwargs) -> None:
        self._now += timedelta(**delta_kwargs)

    def __call__(self) -> datetime:
        return self._now


@pytest.fixture
def api_client():
    """FastAPI TestClient wired to an isolated in-memory SQLite DB and fresh services."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    clock = ClockStub()
    ids = iter(f"s{i}" for i in range(1, 1000))
    capture_service = CaptureService(clock=clock, id_factory=lambda: next(ids))
    import_service = GeometryImportService(clock=clock)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_capture_service] = lambda: capture_service
    app.dependency_overrides[get_import_service] = lambda: import_service

    with TestClient(app) as client:
        yield client, TestingSessionLocal, clock

    app.dependency_overrides.clear()


def get_form(sessionmaker_factory: Callable[[], Session], form_id: str) -> models.FormGeometry | None:
    with sessionmaker_factory() as session:
        return session.get(models.FormGeometry, form_id)


def csv_geom(value: dict) -> str:
    """Embed GeoJSON inside a CSV field with doubled quotes."""
    return json.dumps(value).replace('"', '""')


def click(client: TestClient, sid: str, lon: float, lat: float):
    x, y = PROJ.to_projected(lon, lat)
    return client.post(f"/widgets/{sid}/click", json={"x": x, "y": y})


# ---------- misc ----------

def test_health_and_variants(api_client):
    client, _, _ = api_client

    assert client.get("/health").json() == {"ok": True}
    variants = {v["key"]: v for v in client.get("/variants").json()}
    assert set(variants) == {"farm", "processing_center", "historical_site", "local_area"}
    assert variants["local_area"]["point_field"] == "pointGeometry"


def test_base_layer_preference_shared_across_widgets(api_client):
    client, _, _ = api_client
    a = client.post("/widgets", json={"variant": "farm"}).json()["session_id"]
    b = client.post("/widgets", json={"variant": "local_area"}).json()["session_id"]

    resp = client.post("/preferences/base-layer/toggle")

    assert resp.json()["base_layer"] == "satellite"
    assert client.get(f"/widgets/{a}").json()["base_layer"]["base_layer"] == "satellite"
    assert client.get(f"/widgets/{b}").json()["base_layer"]["base_layer"] == "satellite"

    assert client.post("/preferences/base-layer", json={"base_layer": "street"}).json()["base_layer"] == "street"
    assert client.post("/preferences/base-layer", json={"base_layer": "terrain"}).status_code == 422


# ---------- widget sessions ----------

def test_mount_unknown_variant_returns_422(api_client):
    client, _, _ = api_client

    resp = client.post("/widgets", json={"variant": "orchard"})

    assert resp.status_code == 422


def test_mount_rejects_open_polygon(api_client):
    client, _, _ = api_client
    open_ring = {"type": "Polygon", "coordinates": [[[84.2, 28.5], [84.3, 28.5], [84.25, 28.6]]]}

    resp = client.post("/widgets", json={"initial_polygon": open_ring})

    assert resp.status_code == 422


def test_unknown_session_returns_404(api_client):
    client, _, _ = api_client

    assert client.get("/widgets/nope").status_code == 404
    assert client.post("/widgets/nope/clear").status_code == 404
    assert client.delete("/widgets/nope").status_code == 404


def test_point_then_polygon_flow_mirrors_to_form(api_client):
    client, sessionmaker_factory, clock = api_client
    clock.set(datetime(2025, 11, 6, 10, 0, tzinfo=UTC))

    resp = client.post("/widgets", json={"variant": "farm", "form_id": "F1"})
    assert resp.status_code == 201, resp.json()
    body = resp.json()
    sid = body["session_id"]
    assert body["point"] is None and body["polygon"] is None
    assert body["fields"] == {"point": "locationPoint", "polygon": "farmBoundary"}
    assert get_form(sessionmaker_factory, "F1") is None

    assert client.post(f"/widgets/{sid}/point/start").json()["mode"] == "point"
    resp = click(client, sid, 84.25, 28.50)
    assert resp.status_code == 200, resp.json()
    body = resp.json()
    assert body["emitted"] is True
    assert body["point_state"] == "placed"
    assert body["point"]["coordinates"] == pytest.approx([84.25, 28.50], abs=1e-6)

    client.post(f"/widgets/{sid}/polygon/start")
    for lon, lat in [(84.20, 28.50), (84.30, 28.50)]:
        assert click(client, sid, lon, lat).json()["emitted"] is False
    assert client.post(f"/widgets/{sid}/polygon/complete").json()["emitted"] is False
    click(client, sid, 84.25, 28.60)
    clock.advance(minutes=5)
    body = client.post(f"/widgets/{sid}/polygon/complete").json()

    assert body["emitted"] is True
    assert body["emission_count"] == 2
    ring = body["polygon"]["coordinates"][0]
    assert ring[0] == ring[-1]
    assert len(ring) == 4

    stored = get_form(sessionmaker_factory, "F1")
    assert stored.source == "widget"
    assert stored.variant == "farm"
    assert stored.point["coordinates"] == pytest.approx([84.25, 28.50], abs=1e-6)
    assert stored.polygon == body["polygon"]
    assert stored.last_updated.replace(tzinfo=UTC) == datetime(2025, 11, 6, 10, 5, tzinfo=UTC)


def test_clear_mirrors_empty_values(api_client):
    client, sessionmaker_factory, _ = api_client
    sid = client.post("/widgets", json={"form_id": "F2", "initial_polygon": TRIANGLE}).json()["session_id"]

    body = client.post(f"/widgets/{sid}/clear").json()

    assert body["emitted"] is True
    assert body["point"] is None and body["polygon"] is None
    stored = get_form(sessionmaker_factory, "F2")
    assert stored.point is None and stored.polygon is None


def test_clear_one_geometry_keeps_the_other(api_client):
    client, sessionmaker_factory, _ = api_client
    point = {"type": "Point", "coordinates": [84.25, 28.55]}
    sid = client.post(
        "/widgets", json={"form_id": "F7", "initial_point": point, "initial_polygon": TRIANGLE}
    ).json()["session_id"]

    body = client.post(f"/widgets/{sid}/polygon/clear").json()

    assert body["emitted"] is True
    assert body["polygon"] is None and body["polygon_state"] == "empty"
    assert body["point"] == point
    stored = get_form(sessionmaker_factory, "F7")
    assert stored.point == point and stored.polygon is None

    body = client.post(f"/widgets/{sid}/point/clear").json()

    assert body["point"] is None and body["polygon"] is None
    assert body["emission_count"] == 2
    assert get_form(sessionmaker_factory, "F7").point is None


def test_idle_session_expires(api_client):
    client, _, clock = api_client
    sid = client.post("/widgets", json={}).json()["session_id"]

    clock.advance(minutes=30)
    assert client.get(f"/widgets/{sid}").status_code == 200
    clock.advance(minutes=59)
    assert client.post(f"/widgets/{sid}/view/reset-rotation").status_code == 200

    clock.advance(minutes=61)
    assert client.get(f"/widgets/{sid}").status_code == 404


def test_mount_loads_stored_geometry(api_client):
    client, _, _ = api_client
    first = client.post("/widgets", json={"form_id": "F3", "initial_polygon": TRIANGLE}).json()["session_id"]
    client.post(f"/widgets/{first}/point/start")
    click(client, first, 84.25, 28.55)
    client.delete(f"/widgets/{first}")

    body = client.post("/widgets", json={"form_id": "F3"}).json()

    assert body["polygon"] == TRIANGLE
    assert body["point"]["coordinates"] == pytest.approx([84.25, 28.55], abs=1e-6)
    assert body["polygon_state"] == "placed"
    assert body["view"]["zoom"] <= 18


def test_draft_form_id_when_none_given(api_client):
    client, _, _ = api_client

    body = client.post("/widgets", json={}).json()

    assert body["form_id"] == f"draft-{body['session_id']}"


def test_cancel_restores_and_does_not_mirror(api_client):
    client, sessionmaker_factory, _ = api_client
    sid = client.post("/widgets", json={"form_id": "F4", "initial_polygon": TRIANGLE}).json()["session_id"]
    client.post(f"/widgets/{sid}/polygon/start")
    click(client, sid, 84.0, 28.0)

    body = client.post(f"/widgets/{sid}/cancel").json()

    assert body["emitted"] is False
    assert body["polygon"] == TRIANGLE
    assert body["mode"] == "idle"
    assert get_form(sessionmaker_factory, "F4") is None


def test_drag_and_modify(api_client):
    client, sessionmaker_factory, _ = api_client
    sid = client.post(
        "/widgets",
        json={"form_id": "F5", "initial_point": {"type": "Point", "coordinates": [84.25, 28.55]}, "initial_polygon": TRIANGLE},
    ).json()["session_id"]

    x, y = PROJ.to_projected(84.26, 28.56)
    body = client.post(f"/widgets/{sid}/point/drag", json={"x": x, "y": y}).json()
    assert body["emitted"] is True
    assert body["polygon"] == TRIANGLE

    ring = [PROJ.to_projected(lon, lat) for lon, lat in [(84.2, 28.5), (84.4, 28.5), (84.25, 28.7), (84.2, 28.5)]]
    body = client.post(f"/widgets/{sid}/polygon/modify", json={"ring": ring}).json()
    assert body["emitted"] is True
    assert body["point"]["coordinates"] == pytest.approx([84.26, 28.56], abs=1e-6)
    assert body["emission_count"] == 2
    assert get_form(sessionmaker_factory, "F5").polygon == body["polygon"]


def test_rotation_and_reset(api_client):
    client, _, _ = api_client
    sid = client.post("/widgets", json={}).json()["session_id"]

    assert client.post(f"/widgets/{sid}/view/rotate", json={"rotation": 0.7}).json()["view"]["rotation"] == 0.7
    body = client.post(f"/widgets/{sid}/view/reset-rotation").json()

    assert body["view"]["rotation"] == 0.0
    assert body["emitted"] is False


def test_locate_success_and_failure(api_client):
    client, _, _ = api_client
    sid = client.post("/widgets", json={}).json()["session_id"]

    body = client.post(f"/widgets/{sid}/locate", json={"lon": 85.32, "lat": 27.71}).json()
    assert body["message"] is None
    assert body["view"]["zoom"] == 15
    assert body["view"]["center"] == pytest.approx([85.32, 27.71], abs=1e-6)

    body = client.post(f"/widgets/{sid}/locate", json={"error": "timeout"}).json()
    assert "Timed out" in body["message"]
    assert body["view"]["center"] == pytest.approx([85.32, 27.71], abs=1e-6)


# ---------- form geometry ----------

def test_get_form_returns_404_when_missing(api_client):
    client, _, _ = api_client

    assert client.get("/forms/missing").status_code == 404
    assert client.delete("/forms/missing").status_code == 404


def test_forms_list_and_delete(api_client):
    client, _, _ = api_client
    sid = client.post("/widgets", json={"form_id": "F6", "variant": "historical_site"}).json()["session_id"]
    client.post(f"/widgets/{sid}/point/start")
    click(client, sid, 84.124, 28.3949)

    resp = client.get("/forms", params={"variant": "historical_site"})
    assert resp.status_code == 200, resp.json()
    [form] = resp.json()
    assert form["form_id"] == "F6"
    assert form["centroid"]["coordinates"] == pytest.approx([84.124, 28.3949], abs=1e-6)
    assert client.get("/forms", params={"variant": "farm"}).json() == []

    assert client.delete("/forms/F6").json() == {"ok": True}
    assert client.get("/forms/F6").status_code == 404


# ---------- imports ----------

def test_import_csv_creates_forms(api_client):
    client, sessionmaker_factory, clock = api_client
    clock.set(datetime(2025, 11, 6, 10, 0, tzinfo=UTC))
    csv_content = (
        "form_id,variant,point,polygon,last_updated\n"
        f'C1,farm,"{csv_geom({"type": "Point", "coordinates": [84.25, 28.5]})}",,2025-11-01T00:00:00Z\n'
        f'C2,local_area,,"{csv_geom(TRIANGLE)}",\n'
        "C3,orchard,,,\n"
    )

    resp = client.post(
        "/import/csv",
        files={"file": ("forms.csv", csv_content.encode("utf-8"), "text/csv")},
    )

    assert resp.status_code == 200, resp.json()
    body = resp.json()
    assert body["imported"] == 2
    assert [r["form_id"] for r in body["rejected"]] == ["C3"]
    c1 = get_form(sessionmaker_factory, "C1")
    assert c1.source == "csv"
    assert c1.point == {"type": "Point", "coordinates": [84.25, 28.5]}
    c2 = get_form(sessionmaker_factory, "C2")
    assert c2.polygon == TRIANGLE
    assert c2.last_updated.replace(tzinfo=UTC) == datetime(2025, 11, 6, 10, 0, tzinfo=UTC)


def test_import_csv_rejects_out_of_range_point(api_client):
    client, sessionmaker_factory, _ = api_client
    csv_content = (
        "form_id,variant,point,polygon,last_updated\n"
        f'C4,farm,"{csv_geom({"type": "Point", "coordinates": [200, 28.5]})}",,\n'
    )

    resp = client.post("/import/csv", files={"file": ("forms.csv", csv_content.encode("utf-8"), "text/csv")})

    assert resp.status_code == 200, resp.json()
    assert resp.json()["imported"] == 0
    assert resp.json()["rejected"][0]["form_id"] == "C4"
    assert get_form(sessionmaker_factory, "C4") is None


def test_import_csv_rejects_invalid_utf8(api_client):
    client, _, _ = api_client

    resp = client.post("/import/csv", files={"file": ("bad.csv", b"\x80\x81\x82", "text/csv")})

    assert resp.status_code == 400
    assert "UTF-8" in resp.json()["detail"]


def test_import_csv_bad_cell_is_rejected_without_stopping_the_file(api_client):
    client, sessionmaker_factory, _ = api_client
    csv_content = (
        "form_id,variant,point,polygon,last_updated\n"
        f'C1,farm,"{csv_geom({"type": "Point", "coordinates": [84.25, 28.5]})}",,\n'
        'C5,farm,"{not-json}",,\n'
        ",farm,,,\n"
        f'C6,farm,"{csv_geom({"type": "Point", "coordinates": [84.0, 28.0]})}",,\n'
    )

    resp = client.post("/import/csv", files={"file": ("forms.csv", csv_content.encode("utf-8"), "text/csv")})

    assert resp.status_code == 200, resp.json()
    body = resp.json()
    assert body["imported"] == 2
    assert [r["form_id"] for r in body["rejected"]] == ["C5", None]
    assert "form_id" in body["rejected"][1]["reason"]
    assert get_form(sessionmaker_factory, "C1") is not None
    assert get_form(sessionmaker_factory, "C5") is None
    assert get_form(sessionmaker_factory, "C6") is not None


def test_import_csv_without_form_id_column_returns_422(api_client):
    client, sessionmaker_factory, _ = api_client
    csv_content = "id,point\nC7,\n"

    resp = client.post("/import/csv", files={"file": ("forms.csv", csv_content.encode("utf-8"), "text/csv")})

    assert resp.status_code == 422
    assert "form_id" in resp.json()["detail"]
    assert get_form(sessionmaker_factory, "C7") is None


def test_import_geojson_feature_collection(api_client):
    client, sessionmaker_factory, _ = api_client
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"form_id": "G1"}, "geometry": TRIANGLE},
            {
                "type": "Feature",
                "properties": {"form_id": "G1", "last_updated": "2030-01-01T00:00:00Z"},
                "geometry": {"type": "Point", "coordinates": [84.25, 28.55]},
            },
        ],
    }

    resp = client.post("/import/geojson", params={"variant": "processing_center"}, json=fc)

    assert resp.status_code == 200, resp.json()
    assert resp.json() == {"imported": 2, "rejected": []}
    g1 = get_form(sessionmaker_factory, "G1")
    assert g1.variant == "processing_center"
    assert g1.polygon == TRIANGLE
    assert g1.point == {"type": "Point", "coordinates": [84.25, 28.55]}
    assert g1.source == "geojson"


def test_import_geojson_bad_features_are_rejected_individually(api_client):
    client, sessionmaker_factory, _ = api_client
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"form_id": "OK1"}, "geometry": {"type": "Point", "coordinates": [84.0, 28.0]}},
            {
                "type": "Feature",
                "properties": {"form_id": "BAD"},
                "geometry": {"type": "LineString", "coordinates": [[84.0, 28.0], [84.1, 28.1]]},
            },
            {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [84.0, 28.0]}},
            {"type": "Feature", "properties": {"form_id": "OK2"}, "geometry": TRIANGLE},
        ],
    }

    resp = client.post("/import/geojson", json=fc)

    assert resp.status_code == 200, resp.json()
    body = resp.json()
    assert body["imported"] == 2
    assert [r["form_id"] for r in body["rejected"]] == ["BAD", None]
    assert "LineString" in body["rejected"][0]["reason"]
    assert "form_id" in body["rejected"][1]["reason"]
    assert get_form(sessionmaker_factory, "OK1") is not None
    assert get_form(sessionmaker_factory, "OK2").polygon == TRIANGLE
    assert get_form(sessionmaker_factory, "BAD") is None


def test_import_geojson_rejects_non_feature_body(api_client):
    client, _, _ = api_client

    resp = client.post("/import/geojson", json={"type": "Point", "coordinates": [84.0, 28.0]})

    assert resp.status_code == 422
    assert "Feature" in resp.json()["detail"]


def test_widget_routes_run_on_the_event_loop():
    widget_routes = [r for r in app.routes if getattr(r, "path", "").startswith("/widgets")]

    assert widget_routes
    for route in widget_routes:
        assert inspect.iscoroutinefunction(route.endpoint), route.path
