# geocapture/capture_service.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from datetime import datetime, timedelta, timezone
import uuid

import structlog
from sqlalchemy.orm import Session

from geocapture import crud, schemas
from geocapture.exceptions import SessionNotFoundError
from geocapture.preferences import BaseLayerPreference
from geocapture.projection import Projector
from geocapture.variants import get_variant
from geocapture.widget import GeometryCaptureWidget

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


@dataclass
class WidgetSession:
    session_id: str
    form_id: str
    widget: GeometryCaptureWidget
    # emissions not yet mirrored into the form store, oldest first
    pending: list[tuple[Optional[dict], Optional[dict]]] = field(default_factory=list)
    emission_count: int = 0
    last_seen: Optional[datetime] = None

    def describe(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "form_id": self.form_id,
            "emission_count": self.emission_count,
            **self.widget.snapshot(),
        }


class CaptureService:
    """Live widgets keyed by session id; emissions go to the form store."""

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        preference: BaseLayerPreference | None = None,
        id_factory: IdFactory | None = None,
        projector: Projector | None = None,
        viewport: tuple[int, int] = (800, 500),
        idle_ttl: timedelta | None = timedelta(hours=1),
        max_sessions: int | None = 1000,
    ):
        # DI
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.preference = preference or BaseLayerPreference()
        self._projector = projector or Projector()
        self._viewport = viewport
        self._idle_ttl = idle_ttl
        self._max_sessions = max_sessions
        # insertion order doubles as least-recently-used order
        self._sessions: dict[str, WidgetSession] = {}

    # ---------- housekeeping ----------

    def _touch(self, session: WidgetSession) -> None:
        session.last_seen = self._clock()
        self._sessions.pop(session.session_id, None)
        self._sessions[session.session_id] = session

    def _expire(self) -> None:
        """Drop sessions idle for longer than the TTL."""
        if self._idle_ttl is None:
            return
        cutoff = self._clock() - self._idle_ttl
        for sid in [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]:
            del self._sessions[sid]
            logger.info("widget_session_expired", session_id=sid)

    def _evict(self) -> None:
        """Make room for one more session: expired ones first, then the least recently used."""
        self._expire()
        if self._max_sessions is not None:
            while self._sessions and len(self._sessions) >= self._max_sessions:
                sid = next(iter(self._sessions))
                del self._sessions[sid]
                logger.info("widget_session_evicted", session_id=sid)

    # ---------- lifecycle ----------

    def mount(self, db: Session, payload: schemas.WidgetCreate) -> WidgetSession:
        variant = get_variant(payload.variant)
        session_id = self._id_factory()
        form_id = payload.form_id or f"draft-{session_id}"

        initial_point, initial_polygon = payload.initial_point, payload.initial_polygon
        if payload.form_id and initial_point is None and initial_polygon is None:
            stored = crud.get_form_geometry(db, payload.form_id)
            if stored is not None:
                initial_point, initial_polygon = stored.point, stored.polygon

        pending: list = []
        widget = GeometryCaptureWidget(
            variant,
            lambda point, polygon: pending.append((point, polygon)),
            initial_point=initial_point,
            initial_polygon=initial_polygon,
            preference=self.preference,
            projector=self._projector,
            viewport=self._viewport,
        )
        self._evict()
        session = WidgetSession(session_id=session_id, form_id=form_id, widget=widget, pending=pending)
        self._touch(session)
        logger.info("widget_session_mounted", session_id=session_id, form_id=form_id, variant=variant.key)
        return session

    def get(self, session_id: str) -> WidgetSession:
        self._expire()
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Widget session not found: {session_id}")
        self._touch(session)
        return session

    def unmount(self, session_id: str) -> None:
        self.get(session_id)
        del self._sessions[session_id]
        logger.info("widget_session_unmounted", session_id=session_id)

    # ---------- gestures ----------

    def perform(
        self,
        db: Session,
        session_id: str,
        gesture: Callable[[GeometryCaptureWidget], Any],
    ) -> tuple[WidgetSession, Any, bool]:
        """Run one gesture, then mirror its emissions in order. Returns (session, result, emitted)."""
        session = self.get(session_id)
        result = gesture(session.widget)
        emitted = self._flush(db, session)
        return session, result, emitted

    def _flush(self, db: Session, session: WidgetSession) -> bool:
        if not session.pending:
            return False
        while session.pending:
            point, polygon = session.pending.pop(0)
            crud.save_form_geometry(
                db,
                form_id=session.form_id,
                variant=session.widget.variant.key,
                point=point,
                polygon=polygon,
                updated_at=self._clock(),
            )
            session.emission_count += 1
        logger.info("form_geometry_mirrored", session_id=session.session_id, form_id=session.form_id)
        return True
