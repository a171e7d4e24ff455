from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Any, Optional, Literal
from datetime import datetime

from geolayers.api.schemas.geo_schemas import Feature, LayerSource

MapStyle = Literal["openstreetmap", "satellite", "terrain"]

# Saved map settings
class MapSettingsBase(BaseModel):
    center_lat: float = Field(ge=-90, le=90)
    center_lng: float = Field(ge=-180, le=180)
    zoom: int = Field(ge=1, le=20)
    map_style: MapStyle = "openstreetmap"

class MapSettingsUpdate(BaseModel):
    center_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    center_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    zoom: Optional[int] = Field(default=None, ge=1, le=20)
    map_style: Optional[MapStyle] = None

class MapSettings(MapSettingsBase):
    id: Optional[int] = None
    name: str = "default"
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Layer panel
class LayerSummary(BaseModel):
    id: str
    name: str
    color: str
    opacity: float
    visible: bool
    source: LayerSource
    feature_count: int
    position: int
    geometry_kind: str
    uploaded_at: Optional[datetime] = None

class LayerDetail(LayerSummary):
    features: List[Feature] = []

class ImportResult(BaseModel):
    success: bool = True
    message: str
    count: int
    layer: LayerSummary

class ColorUpdate(BaseModel):
    color: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")

class OpacityUpdate(BaseModel):
    opacity: float = Field(ge=0.0, le=1.0)

class ReorderRequest(BaseModel):
    dragged_id: str
    target_id: str

class FeatureRef(BaseModel):
    layer_id: str
    feature_id: str

class CameraState(BaseModel):
    center_lat: float
    center_lng: float
    zoom: int
    bounds: Optional[Dict[str, float]] = None
    moved: bool = True

class SystemRecords(BaseModel):
    """Records of the host application that have a location"""
    processes: List[Dict[str, Any]] = []
    companies: List[Dict[str, Any]] = []
