from pydantic import BaseModel, Field
from typing import Annotated, List, Optional, Tuple, Union, Literal

# [latitude, longitude], the order map libraries expect
LatLng = Tuple[float, float]


class PopupContent(BaseModel):
    """Info popup of a feature: name, type and the first few properties"""
    title: str
    geometry_type: str
    properties: List[Tuple[str, str]] = Field(default_factory=list)


class MarkerPrimitive(BaseModel):
    kind: Literal["marker"] = "marker"
    feature_id: str
    layer_id: str
    position: LatLng
    color: str
    popup: PopupContent


class ShapePrimitive(BaseModel):
    kind: Literal["shape"] = "shape"
    feature_id: str
    layer_id: str
    # Outer ring of each polygon part
    parts: List[List[LatLng]]
    color: str
    weight: int
    stroke_opacity: float
    fill_color: str
    fill_opacity: float
    popup: PopupContent


Primitive = Annotated[Union[MarkerPrimitive, ShapePrimitive], Field(discriminator="kind")]


class MapScene(BaseModel):
    """Drawable primitives of all visible layers in paint order (last drawn on top)"""
    primitives: List[Primitive] = Field(default_factory=list)
    layer_ids: List[str] = Field(default_factory=list)
    skipped: int = 0


class ContextMenu(BaseModel):
    layer_id: str
    feature_id: str
    x: float
    y: float
    actions: List[str] = Field(default_factory=lambda: ["zoom_to_feature", "show_feature_info"])


class ClickRequest(BaseModel):
    layer_id: Optional[str] = None
    feature_id: Optional[str] = None
    button: Literal["left", "right"] = "left"
    x: float = 0
    y: float = 0


class ClickResult(BaseModel):
    popup: Optional[PopupContent] = None
    context_menu: Optional[ContextMenu] = None
