"""
Projection of the layer list into map primitives, and the map's click state.

Layers are held top-first, so drawing walks the list backwards: the first
layer is painted last and ends up visually on top.
"""
import html
import logging
import math
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import folium

from geolayers.api.schemas.geo_schemas import (
    Feature, Layer, PointGeometry, PolygonGeometry, MultiPolygonGeometry,
)
from geolayers.api.schemas.render_schemas import (
    ClickResult, ContextMenu, MapScene, MarkerPrimitive, PopupContent, ShapePrimitive,
)

logger = logging.getLogger(__name__)

POPUP_PROPERTY_LIMIT = 3
FILL_OPACITY_FACTOR = 0.4
STROKE_OPACITY = 1.0
STROKE_WEIGHT = 2

TILE_STYLES = {
    "openstreetmap": (
        "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
        '&copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors',
    ),
    "satellite": (
        "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
        '&copy; <a href="https://www.esri.com/">Esri</a>',
    ),
    "terrain": (
        "https://{s}.tile.opentopomap.org/{z}/{x}/{y}.png",
        '&copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors',
    ),
}


def iter_visible(layers: Sequence[Layer]) -> Iterator[Tuple[Layer, Feature]]:
    """(layer, feature) pairs of visible layers in paint order"""
    for layer in reversed(layers):
        if not layer.visible:
            continue
        for feature in layer.features:
            yield layer, feature


def visible_features(layers: Sequence[Layer], search: Optional[str] = None) -> List[Feature]:
    """Features of all visible layers, in paint order, optionally filtered by name"""
    term = (search or "").strip().lower()
    return [
        feature for _, feature in iter_visible(layers)
        if not term or term in feature.name.lower()
    ]


def popup_for(feature: Feature) -> PopupContent:
    properties = list(feature.properties.items())[:POPUP_PROPERTY_LIMIT]
    return PopupContent(
        title=feature.name,
        geometry_type=feature.geometry.type,
        properties=[(str(key), str(value)) for key, value in properties],
    )


def _latlng_ring(ring: Iterable[Tuple[float, float]]) -> List[Tuple[float, float]]:
    latlngs = []
    for lng, lat in ring:
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise ValueError(f"non-finite position [{lng}, {lat}]")
        latlngs.append((lat, lng))
    return latlngs


def _shape_parts(feature: Feature) -> List[List[Tuple[float, float]]]:
    # Only the outer ring of each part is drawn; holes are not cut out of the fill
    geometry = feature.geometry
    if isinstance(geometry, PolygonGeometry):
        return [_latlng_ring(geometry.coordinates[0])]
    if isinstance(geometry, MultiPolygonGeometry):
        return [_latlng_ring(polygon[0]) for polygon in geometry.coordinates]
    raise TypeError(f"Not a shape geometry: {geometry.type}")


def build_primitive(layer: Layer, feature: Feature):
    """Map primitive for one feature styled by its layer"""
    geometry = feature.geometry
    if isinstance(geometry, PointGeometry):
        (position,) = _latlng_ring([geometry.coordinates])
        return MarkerPrimitive(
            feature_id=feature.id,
            layer_id=layer.id,
            position=position,
            color=layer.color,
            popup=popup_for(feature),
        )
    if isinstance(geometry, (PolygonGeometry, MultiPolygonGeometry)):
        return ShapePrimitive(
            feature_id=feature.id,
            layer_id=layer.id,
            parts=_shape_parts(feature),
            color=layer.color,
            weight=STROKE_WEIGHT,
            # Border stays fully visible whatever the layer opacity
            stroke_opacity=STROKE_OPACITY,
            fill_color=layer.color,
            fill_opacity=layer.opacity * FILL_OPACITY_FACTOR,
            popup=popup_for(feature),
        )
    raise TypeError(f"Unsupported geometry: {type(geometry).__name__}")


class MapRenderer:
    """Redraws the whole scene on every layer change and reports when done"""

    def __init__(self):
        self.scene = MapScene()
        self._listeners: List[Callable[[MapScene], None]] = []

    def add_render_listener(self, listener: Callable[[MapScene], None]):
        self._listeners.append(listener)

    def render(self, layers: Sequence[Layer]) -> MapScene:
        primitives = []
        layer_ids = []
        skipped = 0

        for layer in reversed(layers):
            if not layer.visible:
                continue
            layer_ids.append(layer.id)
            for feature in layer.features:
                try:
                    primitives.append(build_primitive(layer, feature))
                except ValueError as e:
                    skipped += 1
                    logger.warning(f"Feature {feature.name!r} of layer {layer.name!r} not drawn: {e}")

        self.scene = MapScene(primitives=primitives, layer_ids=layer_ids, skipped=skipped)
        logger.debug(f"Scene rendered: {len(primitives)} primitives from {len(layer_ids)} layers")

        for listener in list(self._listeners):
            listener(self.scene)
        return self.scene

    def on_layers_changed(self, layers: Sequence[Layer]):
        self.render(layers)


def _popup_html(popup: PopupContent) -> str:
    rows = "".join(
        f"<div><strong>{html.escape(key)}:</strong> {html.escape(value)}</div>"
        for key, value in popup.properties
    )
    return (
        f"<h4>{html.escape(popup.title)}</h4>"
        f"<p>Tipo: {html.escape(popup.geometry_type)}</p>"
        f"{rows}"
    )


def to_folium(scene: MapScene, camera, map_style: str = "openstreetmap") -> folium.Map:
    """Draws a scene on a folium map positioned by the camera"""
    tiles, attribution = TILE_STYLES.get(map_style, TILE_STYLES["openstreetmap"])

    m = folium.Map(location=list(camera.center), zoom_start=camera.zoom, tiles=None)
    folium.TileLayer(tiles=tiles, attr=attribution, name=map_style).add_to(m)

    for primitive in scene.primitives:
        if isinstance(primitive, MarkerPrimitive):
            folium.Marker(
                location=list(primitive.position),
                popup=folium.Popup(_popup_html(primitive.popup), max_width=300),
                tooltip=primitive.popup.title,
            ).add_to(m)
        else:
            for ring in primitive.parts:
                folium.Polygon(
                    locations=[list(p) for p in ring],
                    color=primitive.color,
                    weight=primitive.weight,
                    opacity=primitive.stroke_opacity,
                    fill=True,
                    fill_color=primitive.fill_color,
                    fill_opacity=primitive.fill_opacity,
                    popup=folium.Popup(_popup_html(primitive.popup), max_width=300),
                    tooltip=primitive.popup.title,
                ).add_to(m)

    return m


class InteractionState:
    """Popup, context menu and selected feature of one map"""

    def __init__(self):
        self.context_menu: Optional[ContextMenu] = None
        self.selected: Optional[Feature] = None

    def click(self, feature: Optional[Feature], button: str = "left",
              x: float = 0, y: float = 0) -> ClickResult:
        if button == "right" and feature is not None:
            # Opening a menu replaces the one already open
            self.context_menu = ContextMenu(layer_id=feature.layer_id or "", feature_id=feature.id, x=x, y=y)
            return ClickResult(context_menu=self.context_menu)

        # Any other click lands outside the menu
        self.dismiss()
        if feature is None:
            return ClickResult()
        return ClickResult(popup=popup_for(feature))

    def dismiss(self):
        self.context_menu = None

    def show_info(self, feature: Feature):
        self.selected = feature
        self.dismiss()
