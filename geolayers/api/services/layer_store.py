"""
In-memory store of the map layers of one session.

The store is the only writer of the layer list. Position 0 of the list is
the layer drawn on top. Every operation addressing a layer id that does
not exist is a silent no-op.
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from geolayers.api.schemas.geo_schemas import Feature, Layer, LayerSource, SystemLayerDef

logger = logging.getLogger(__name__)

# Predefined layer colors (similar to QGIS)
PALETTE = (
    "#3B82F6",  # Blue
    "#10B981",  # Green
    "#8B5CF6",  # Purple
    "#F59E0B",  # Orange
    "#EF4444",  # Red
    "#06B6D4",  # Cyan
    "#84CC16",  # Lime
    "#F97316",  # Orange-600
    "#EC4899",  # Pink
    "#6366F1",  # Indigo
    "#14B8A6",  # Teal
    "#A855F7",  # Violet
    "#22C55E",  # Green-500
    "#F43F5E",  # Rose
    "#0EA5E9",  # Sky
    "#8B5A2B",  # Brown
    "#6B7280",  # Gray
    "#DC2626",  # Red-600
    "#059669",  # Emerald
    "#7C3AED",  # Violet-600
)

LayerListener = Callable[[Tuple[Layer, ...]], None]

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


class LayerDeletionRefused(Exception):
    """Raised when deleting a layer the user is not allowed to remove"""

    def __init__(self, layer: Layer):
        self.layer = layer
        super().__init__(f"Camadas do sistema não podem ser removidas: {layer.name}")


def layer_name_from_filename(filename: str) -> str:
    return _EXTENSION_RE.sub("", filename or "") or "Camada importada"


def _unique_ids(features: Iterable[Feature], layer_id: str) -> List[Feature]:
    """Copies features into a layer, suffixing repeated ids"""
    used = set()
    result = []
    for feature in features:
        feature_id = feature.id
        suffix = 1
        while feature_id in used:
            suffix += 1
            feature_id = f"{feature.id}-{suffix}"
        used.add(feature_id)
        result.append(feature.model_copy(update={"id": feature_id, "layer_id": layer_id}))
    return result


class LayerStore:
    """Ordered, styled layers of one map session"""

    def __init__(self, palette: Tuple[str, ...] = PALETTE):
        self._palette = palette
        self._layers: List[Layer] = []
        self._listeners: List[LayerListener] = []

    # -- reading

    def snapshot(self) -> Tuple[Layer, ...]:
        return tuple(self._layers)

    def get(self, layer_id: str) -> Optional[Layer]:
        return next((layer for layer in self._layers if layer.id == layer_id), None)

    def index_of(self, layer_id: str) -> int:
        return next((i for i, layer in enumerate(self._layers) if layer.id == layer_id), -1)

    def __len__(self):
        return len(self._layers)

    # -- change notification

    def subscribe(self, listener: LayerListener) -> Callable[[], None]:
        """Registers a listener called with the new snapshot after every change"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    def _replace(self, index: int, **changes) -> Layer:
        layer = self._layers[index].model_copy(update=changes)
        self._layers[index] = layer
        self._changed()
        return layer

    # -- colors

    def next_color(self) -> str:
        used = {layer.color for layer in self._layers}
        for color in self._palette:
            if color not in used:
                return color
        return self._palette[len(self._layers) % len(self._palette)]

    # -- mutations

    def add_imported_layer(self, features: List[Feature], source_file_name: str) -> Layer:
        """Creates a layer from parsed file features and puts it on top"""
        layer_id = f"layer-{uuid.uuid4().hex[:12]}"
        layer = Layer(
            id=layer_id,
            name=layer_name_from_filename(source_file_name),
            features=_unique_ids(features, layer_id),
            color=self.next_color(),
            source=LayerSource.IMPORTED,
            uploaded_at=datetime.now(timezone.utc),
        )
        self._layers.insert(0, layer)
        logger.info(f"Layer created: {layer.name} ({layer.feature_count} features, {layer.color})")
        self._changed()
        return layer

    def replace_system_layers(self, layer_defs: Iterable[SystemLayerDef]) -> List[Layer]:
        """
        Recomputes the system layers from their definitions.

        A definition replaces the features and name of the system layer
        with the same id, keeping its position and the user's styling.
        New definitions are added at the bottom; system layers without a
        definition are removed. Imported layers are never touched.
        """
        defs = {d.id: d for d in layer_defs}
        updated = []

        for layer in self._layers:
            if layer.source != LayerSource.SYSTEM:
                updated.append(layer)
                continue
            layer_def = defs.pop(layer.id, None)
            if layer_def is None:
                logger.info(f"System layer removed: {layer.name}")
                continue
            updated.append(layer.model_copy(update={
                "name": layer_def.name,
                "features": _unique_ids(layer_def.features, layer.id),
            }))

        self._layers = updated
        for layer_def in defs.values():
            self._layers.append(Layer(
                id=layer_def.id,
                name=layer_def.name,
                features=_unique_ids(layer_def.features, layer_def.id),
                color=layer_def.color or self.next_color(),
                source=LayerSource.SYSTEM,
            ))

        self._changed()
        return [layer for layer in self._layers if layer.source == LayerSource.SYSTEM]

    def toggle_visibility(self, layer_id: str) -> Optional[Layer]:
        index = self.index_of(layer_id)
        if index == -1:
            return None
        return self._replace(index, visible=not self._layers[index].visible)

    def set_color(self, layer_id: str, color: str) -> Optional[Layer]:
        index = self.index_of(layer_id)
        if index == -1:
            return None
        return self._replace(index, color=color)

    def set_opacity(self, layer_id: str, value: float) -> Optional[Layer]:
        index = self.index_of(layer_id)
        if index == -1:
            return None
        return self._replace(index, opacity=min(1.0, max(0.0, float(value))))

    def delete_layer(self, layer_id: str) -> bool:
        """Removes an imported layer. Returns False when the id is unknown."""
        index = self.index_of(layer_id)
        if index == -1:
            return False

        layer = self._layers[index]
        if layer.source != LayerSource.IMPORTED:
            logger.warning(f"Refused to delete system layer {layer.id}")
            raise LayerDeletionRefused(layer)

        del self._layers[index]
        logger.info(f"Layer deleted: {layer.name}")
        self._changed()
        return True

    def reorder(self, dragged_id: str, target_id: str) -> bool:
        """Moves the dragged layer to the target's position, shifting the others"""
        if dragged_id == target_id:
            return False

        dragged_index = self.index_of(dragged_id)
        target_index = self.index_of(target_id)
        if dragged_index == -1 or target_index == -1:
            return False

        layer = self._layers.pop(dragged_index)
        self._layers.insert(target_index, layer)
        logger.debug(f"Layers reordered: {[l.name for l in self._layers]}")
        self._changed()
        return True

    def clear(self):
        self._layers = []
        self._changed()
