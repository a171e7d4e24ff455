"""
Camera control: bounding boxes over features and fitting them on the map.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Tuple

from geolayers.api.schemas.geo_schemas import (
    Feature, PointGeometry, PolygonGeometry, MultiPolygonGeometry,
)

logger = logging.getLogger(__name__)

TILE_SIZE = 256
MIN_ZOOM = 0
MAX_MAP_ZOOM = 19

LAYER_FIT_PADDING = 50
LAYER_MAX_ZOOM = 12
FEATURE_FIT_PADDING = 30
FEATURE_MAX_ZOOM = 15

# Half side, in degrees, of the box synthesized around a single point
POINT_EXTENT = 0.005

# Web Mercator stops at ~85.0511 degrees
MAX_LATITUDE = 85.0511287798


def iter_positions(feature: Feature) -> Iterator[Tuple[float, float]]:
    """Yields every (lng, lat) of a feature: all vertices of all rings of all parts"""
    geometry = feature.geometry
    if isinstance(geometry, PointGeometry):
        yield geometry.coordinates
    elif isinstance(geometry, PolygonGeometry):
        for ring in geometry.coordinates:
            yield from ring
    elif isinstance(geometry, MultiPolygonGeometry):
        for polygon in geometry.coordinates:
            for ring in polygon:
                yield from ring
    else:
        raise TypeError(f"Unsupported geometry: {type(geometry).__name__}")


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_positions(cls, positions: Iterable[Tuple[float, float]]) -> Optional["Bounds"]:
        """Smallest box around the finite positions, None when there are none"""
        south = west = math.inf
        north = east = -math.inf
        found = False
        for lng, lat in positions:
            if not (math.isfinite(lng) and math.isfinite(lat)):
                continue
            found = True
            south, north = min(south, lat), max(north, lat)
            west, east = min(west, lng), max(east, lng)
        return cls(south, west, north, east) if found else None

    @classmethod
    def around(cls, lng: float, lat: float, extent: float = POINT_EXTENT) -> "Bounds":
        return cls(lat - extent, lng - extent, lat + extent, lng + extent)

    @property
    def center(self) -> Tuple[float, float]:
        """(lat, lng) of the box center, taken in projected space"""
        x = (_project_x(self.west) + _project_x(self.east)) / 2
        y = (_project_y(self.south) + _project_y(self.north)) / 2
        return _unproject_y(y), x * 360.0 - 180.0

    @property
    def is_point(self) -> bool:
        return self.south == self.north and self.west == self.east


def _project_x(lng: float) -> float:
    return (lng + 180.0) / 360.0


def _project_y(lat: float) -> float:
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    sin = math.sin(math.radians(lat))
    return 0.5 - math.log((1 + sin) / (1 - sin)) / (4 * math.pi)


def _unproject_y(y: float) -> float:
    return math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y))))


def bounds_zoom(bounds: Bounds, width: int, height: int, padding: int,
                max_zoom: int = MAX_MAP_ZOOM) -> int:
    """Largest integer zoom at which the box fits the padded viewport"""
    if bounds.is_point:
        return max_zoom

    # Size of the box in pixels at zoom 0
    dx = abs(_project_x(bounds.east) - _project_x(bounds.west)) * TILE_SIZE
    dy = abs(_project_y(bounds.south) - _project_y(bounds.north)) * TILE_SIZE

    avail_x = max(1, width - 2 * padding)
    avail_y = max(1, height - 2 * padding)

    scales = []
    if dx > 0:
        scales.append(avail_x / dx)
    if dy > 0:
        scales.append(avail_y / dy)
    if not scales:
        return max_zoom
    zoom = math.floor(math.log2(min(scales)))
    return int(max(MIN_ZOOM, min(max_zoom, zoom)))


class MapHandle:
    """
    Camera of one map instance.

    Created once per map and handed to whoever needs to move the camera,
    instead of being looked up from the rendered page.
    """

    def __init__(self, center_lat: float, center_lng: float, zoom: int,
                 width: int = 1024, height: int = 768):
        self.center_lat = center_lat
        self.center_lng = center_lng
        self.zoom = zoom
        self.width = width
        self.height = height
        self.bounds: Optional[Bounds] = None

    @property
    def center(self) -> Tuple[float, float]:
        return self.center_lat, self.center_lng

    def set_view(self, center_lat: float, center_lng: float, zoom: int):
        self.center_lat = center_lat
        self.center_lng = center_lng
        self.zoom = zoom
        self.bounds = None

    def fit_bounds(self, bounds: Bounds, padding: int, max_zoom: int):
        self.center_lat, self.center_lng = bounds.center
        self.zoom = bounds_zoom(bounds, self.width, self.height, padding, max_zoom)
        self.bounds = bounds
        logger.debug(f"Camera fitted to {bounds}: center={self.center}, zoom={self.zoom}")

    def to_dict(self):
        return {
            "center_lat": self.center_lat,
            "center_lng": self.center_lng,
            "zoom": self.zoom,
            "bounds": None if self.bounds is None else {
                "south": self.bounds.south,
                "west": self.bounds.west,
                "north": self.bounds.north,
                "east": self.bounds.east,
            },
        }


class ViewportController:
    """Zooms the map handle to layers and features of a layer store"""

    def __init__(self, store, map_handle: MapHandle):
        self.store = store
        self.map = map_handle
        self.pending_layer_id: Optional[str] = None

    def zoom_to_layer(self, layer_id: str) -> bool:
        layer = self.store.get(layer_id)
        if layer is None or not layer.features:
            return False

        bounds = Bounds.from_positions(
            position for feature in layer.features for position in iter_positions(feature)
        )
        if bounds is None:
            logger.warning(f"No valid coordinates found for layer {layer.name}")
            return False

        self.map.fit_bounds(bounds, LAYER_FIT_PADDING, LAYER_MAX_ZOOM)
        logger.info(f"Map centered on layer {layer.name}")
        return True

    def zoom_to_feature(self, feature: Feature) -> bool:
        if isinstance(feature.geometry, PointGeometry):
            lng, lat = feature.geometry.coordinates
            bounds = Bounds.around(lng, lat) if math.isfinite(lng) and math.isfinite(lat) else None
        else:
            bounds = Bounds.from_positions(iter_positions(feature))

        if bounds is None:
            return False

        self.map.fit_bounds(bounds, FEATURE_FIT_PADDING, FEATURE_MAX_ZOOM)
        return True

    def request_auto_zoom(self, layer_id: str):
        """Zooms to the layer once the renderer reports it has been drawn"""
        self.pending_layer_id = layer_id

    def on_rendered(self, scene):
        if self.pending_layer_id is None:
            return
        if self.pending_layer_id not in scene.layer_ids:
            # The layer may be hidden or gone; keep waiting only while it exists
            if self.store.get(self.pending_layer_id) is None:
                self.pending_layer_id = None
            return

        layer_id, self.pending_layer_id = self.pending_layer_id, None
        logger.info(f"Auto-zooming to newly imported layer {layer_id}")
        self.zoom_to_layer(layer_id)
