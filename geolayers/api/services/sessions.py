"""
Per-client map sessions.

A session owns one layer store and the map it is drawn on. The store
notifies the renderer after every change, and the renderer notifies the
viewport controller once a scene has been drawn.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from geolayers.api.schemas.geo_schemas import Feature, Layer
from geolayers.api.services import parsers
from geolayers.api.services.layer_store import LayerStore
from geolayers.api.services.render import MapRenderer, InteractionState
from geolayers.api.services.settings_service import get_or_create_map_settings
from geolayers.api.services.viewport import MapHandle, ViewportController
from geolayers.config import settings
from geolayers.database import get_db

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


class GeoSession:
    """Layer store, camera, renderer and interaction state of one map"""

    def __init__(self, session_id: str = DEFAULT_SESSION_ID, center_lat: Optional[float] = None,
                 center_lng: Optional[float] = None, zoom: Optional[int] = None,
                 map_style: str = "openstreetmap"):
        self.id = session_id
        self.map_style = map_style
        self.store = LayerStore()
        self.map = MapHandle(
            center_lat if center_lat is not None else settings.default_center_lat,
            center_lng if center_lng is not None else settings.default_center_lng,
            zoom if zoom is not None else settings.default_zoom,
            width=settings.map_width,
            height=settings.map_height,
        )
        self.renderer = MapRenderer()
        self.viewport = ViewportController(self.store, self.map)
        self.interaction = InteractionState()

        self._unsubscribe = self.store.subscribe(self.renderer.on_layers_changed)
        self.renderer.add_render_listener(self.viewport.on_rendered)

    def import_file(self, filename: str, content: bytes) -> Layer:
        """Parses an uploaded file into a new layer on top and zooms to it once drawn"""
        fmt = parsers.format_from_filename(filename)
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise parsers.GeoParseError("Arquivo não está codificado em UTF-8")

        features = parsers.parse(text, fmt)
        if not features:
            raise parsers.GeoParseError("Nenhum dado georreferenciado encontrado no arquivo.")

        layer = self.store.add_imported_layer(features, filename)
        self.viewport.request_auto_zoom(layer.id)
        # The store has already redrawn synchronously, so the last scene answers the request
        self.viewport.on_rendered(self.renderer.scene)
        logger.info(f"Session {self.id}: imported {len(features)} features from {filename}")
        return layer

    def find_feature(self, layer_id: str, feature_id: str) -> Optional[Feature]:
        layer = self.store.get(layer_id)
        if layer is None:
            return None
        return next((f for f in layer.features if f.id == feature_id), None)

    def close(self):
        self._unsubscribe()
        self.store.clear()


class SessionRegistry:
    """
    Sessions by id, created on first use.

    Sessions idle for longer than ``idle_ttl`` seconds are closed, and
    once ``max_sessions`` are open the least recently used one is closed
    to make room for a new one.
    """

    def __init__(self, max_sessions: Optional[int] = None, idle_ttl: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.max_sessions = max(1, max_sessions if max_sessions is not None else settings.max_sessions)
        self.idle_ttl = idle_ttl if idle_ttl is not None else settings.session_ttl
        self._clock = clock
        # Least recently used first
        self._sessions: "OrderedDict[str, Tuple[GeoSession, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[GeoSession]:
        entry = self._sessions.get(session_id)
        return entry[0] if entry else None

    def _expired(self, now: float) -> List[Tuple[str, GeoSession]]:
        if self.idle_ttl <= 0:
            return []
        stale = [sid for sid, (_, last_used) in self._sessions.items() if now - last_used > self.idle_ttl]
        return [(sid, self._sessions.pop(sid)[0]) for sid in stale]

    def get_or_create(self, session_id: str, db: Optional[Session] = None) -> GeoSession:
        with self._lock:
            now = self._clock()
            evicted = self._expired(now)

            entry = self._sessions.get(session_id)
            if entry is not None:
                session = entry[0]
                self._sessions[session_id] = (session, now)
                self._sessions.move_to_end(session_id)
            else:
                if db is not None:
                    saved = get_or_create_map_settings(db)
                    session = GeoSession(
                        session_id, saved.center_lat, saved.center_lng, saved.zoom, saved.map_style,
                    )
                else:
                    session = GeoSession(session_id)

                while len(self._sessions) >= self.max_sessions:
                    oldest_id, (oldest, _) = self._sessions.popitem(last=False)
                    evicted.append((oldest_id, oldest))
                self._sessions[session_id] = (session, now)
                logger.info(f"Map session opened: {session_id}")

        for evicted_id, evicted_session in evicted:
            evicted_session.close()
            logger.info(f"Map session evicted: {evicted_id}")
        return session

    def close(self, session_id: str) -> bool:
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        entry[0].close()
        logger.info(f"Map session closed: {session_id}")
        return True

    def clear(self):
        with self._lock:
            entries, self._sessions = list(self._sessions.values()), OrderedDict()
        for session, _ in entries:
            session.close()


registry = SessionRegistry()


def get_geo_session(x_session_id: str = Header(DEFAULT_SESSION_ID),
                    db: Session = Depends(get_db)) -> GeoSession:
    """Map session of the calling client, keyed by the X-Session-Id header"""
    return registry.get_or_create(x_session_id or DEFAULT_SESSION_ID, db)
