from pydantic import BaseModel, Field, BeforeValidator, computed_field
from typing import Annotated, List, Dict, Any, Optional, Tuple, Union, Literal
from datetime import datetime
from enum import Enum


def _drop_altitude(value: Any) -> Any:
    """Keeps only [lng, lat] of a position; altitude and extra ordinates are ignored"""
    if isinstance(value, (list, tuple)) and len(value) > 2:
        return tuple(value[:2])
    return value


FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]

# [longitude, latitude]
Position = Annotated[Tuple[FiniteFloat, FiniteFloat], BeforeValidator(_drop_altitude)]
LinearRing = Annotated[List[Position], Field(min_length=1)]
PolygonRings = Annotated[List[LinearRing], Field(min_length=1)]


class GeometryType(str, Enum):
    POINT = "Point"
    POLYGON = "Polygon"
    MULTI_POLYGON = "MultiPolygon"


class PointGeometry(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: Position


class PolygonGeometry(BaseModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: PolygonRings


class MultiPolygonGeometry(BaseModel):
    type: Literal["MultiPolygon"] = "MultiPolygon"
    coordinates: Annotated[List[PolygonRings], Field(min_length=1)]


Geometry = Annotated[
    Union[PointGeometry, PolygonGeometry, MultiPolygonGeometry],
    Field(discriminator="type"),
]

SUPPORTED_GEOMETRY_TYPES = tuple(t.value for t in GeometryType)


class Feature(BaseModel):
    """One geographic entity of a layer"""
    id: str
    name: str
    geometry: Geometry
    properties: Dict[str, Any] = Field(default_factory=dict)
    layer_id: Optional[str] = None

    @property
    def geometry_type(self) -> GeometryType:
        return GeometryType(self.geometry.type)

    @property
    def coordinates(self):
        return self.geometry.coordinates


class LayerSource(str, Enum):
    SYSTEM = "system"
    IMPORTED = "imported"


class Layer(BaseModel):
    """A named, styled group of features"""
    id: str
    name: str
    features: List[Feature] = Field(default_factory=list)
    visible: bool = True
    color: str
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    source: LayerSource
    uploaded_at: Optional[datetime] = None

    @computed_field
    @property
    def feature_count(self) -> int:
        return len(self.features)


class SystemLayerDef(BaseModel):
    """Definition of a layer derived from the host application's records"""
    id: str
    name: str
    features: List[Feature] = Field(default_factory=list)
    color: Optional[str] = None
