from fastapi import APIRouter, Depends, HTTPException, status, File, UploadFile, Response
from typing import List, Optional
import logging

from geolayers.api.schemas.geo_schemas import GeometryType, Layer
from geolayers.api.schemas.map_schemas import (
    LayerSummary, LayerDetail, ImportResult, ColorUpdate, OpacityUpdate,
    ReorderRequest, FeatureRef, CameraState, SystemRecords,
)
from geolayers.api.services.layer_store import LayerDeletionRefused
from geolayers.api.services.parsers import GeoParseError
from geolayers.api.services.remote_service import (
    RecordsClient, RemoteError, DuplicateRecordError, RecordNotFoundError,
    PermissionDeniedError, RemoteNotConfigured, RemoteUnavailableError,
)
from geolayers.api.services.sessions import GeoSession, get_geo_session, registry
from geolayers.api.services.system_layers import build_system_layers, fetch_system_layers

router = APIRouter(tags=["layers"])

logger = logging.getLogger(__name__)


def geometry_kind(layer: Layer) -> str:
    """'point', 'polygon', 'mixed' or 'empty', for the layer panel icon"""
    kinds = {
        "point" if f.geometry_type == GeometryType.POINT else "polygon"
        for f in layer.features
    }
    if not kinds:
        return "empty"
    return kinds.pop() if len(kinds) == 1 else "mixed"


def layer_summary(session: GeoSession, layer: Layer) -> LayerSummary:
    return LayerSummary(
        id=layer.id,
        name=layer.name,
        color=layer.color,
        opacity=layer.opacity,
        visible=layer.visible,
        source=layer.source,
        feature_count=layer.feature_count,
        position=session.store.index_of(layer.id),
        geometry_kind=geometry_kind(layer),
        uploaded_at=layer.uploaded_at,
    )


def remote_http_error(error: RemoteError) -> HTTPException:
    """Maps an error of the remote backend to the response shown to the user"""
    if isinstance(error, DuplicateRecordError):
        return HTTPException(status_code=409, detail="Registro duplicado")
    if isinstance(error, RecordNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=error.message)
    if isinstance(error, (RemoteNotConfigured, RemoteUnavailableError)):
        return HTTPException(status_code=503, detail=error.message)
    return HTTPException(status_code=502, detail=error.message)


def _summary_or_none(session: GeoSession, layer: Optional[Layer]) -> Optional[LayerSummary]:
    return None if layer is None else layer_summary(session, layer)


def _require_layer(session: GeoSession, layer_id: str) -> Layer:
    layer = session.store.get(layer_id)
    if layer is None:
        raise HTTPException(status_code=404, detail=f"Camada {layer_id} não encontrada")
    return layer


# Layer panel
@router.get("/geo/layers", response_model=List[LayerSummary])
async def read_layers(session: GeoSession = Depends(get_geo_session)):
    """Layers top-first, as listed in the panel"""
    return [layer_summary(session, layer) for layer in session.store.snapshot()]


@router.get("/geo/layers/{layer_id}", response_model=LayerDetail)
async def read_layer(layer_id: str, session: GeoSession = Depends(get_geo_session)):
    layer = _require_layer(session, layer_id)
    return LayerDetail(**layer_summary(session, layer).model_dump(), features=layer.features)


@router.post("/geo/layers/import", response_model=ImportResult, status_code=status.HTTP_201_CREATED)
async def import_layer(file: UploadFile = File(...), session: GeoSession = Depends(get_geo_session)):
    """Imports a CSV, JSON, GeoJSON or KML file as a new layer on top of the others"""
    content = await file.read()
    try:
        layer = session.import_file(file.filename or "", content)
    except GeoParseError as e:
        logger.warning(f"Import of {file.filename} failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return ImportResult(
        message=f"{layer.feature_count} registros importados com sucesso!",
        count=layer.feature_count,
        layer=layer_summary(session, layer),
    )


@router.post("/geo/layers/reorder", response_model=List[LayerSummary])
async def reorder_layers(request: ReorderRequest, session: GeoSession = Depends(get_geo_session)):
    """Moves the dragged layer to the position of the drop target"""
    session.store.reorder(request.dragged_id, request.target_id)
    return [layer_summary(session, layer) for layer in session.store.snapshot()]


@router.post("/geo/layers/system", response_model=List[LayerSummary])
async def push_system_layers(records: SystemRecords, session: GeoSession = Depends(get_geo_session)):
    """Recomputes the system layers from records sent by the host application"""
    layers = session.store.replace_system_layers(
        build_system_layers(records.processes, records.companies)
    )
    return [layer_summary(session, layer) for layer in layers]


@router.post("/geo/layers/system/refresh", response_model=List[LayerSummary])
async def refresh_system_layers(user_id: Optional[str] = None,
                                session: GeoSession = Depends(get_geo_session)):
    """Reloads the system layers from the records API"""
    try:
        layer_defs = fetch_system_layers(RecordsClient(), user_id)
    except RemoteError as e:
        raise remote_http_error(e)
    layers = session.store.replace_system_layers(layer_defs)
    return [layer_summary(session, layer) for layer in layers]


@router.post("/geo/layers/{layer_id}/toggle", response_model=Optional[LayerSummary])
async def toggle_layer(layer_id: str, session: GeoSession = Depends(get_geo_session)):
    """Shows or hides a layer; null for an unknown id"""
    return _summary_or_none(session, session.store.toggle_visibility(layer_id))


@router.put("/geo/layers/{layer_id}/color", response_model=Optional[LayerSummary])
async def update_layer_color(layer_id: str, update: ColorUpdate,
                             session: GeoSession = Depends(get_geo_session)):
    return _summary_or_none(session, session.store.set_color(layer_id, update.color))


@router.put("/geo/layers/{layer_id}/opacity", response_model=Optional[LayerSummary])
async def update_layer_opacity(layer_id: str, update: OpacityUpdate,
                               session: GeoSession = Depends(get_geo_session)):
    return _summary_or_none(session, session.store.set_opacity(layer_id, update.opacity))


@router.delete("/geo/layers/{layer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_layer(layer_id: str, session: GeoSession = Depends(get_geo_session)):
    """Deletes an imported layer; unknown ids are ignored"""
    try:
        session.store.delete_layer(layer_id)
    except LayerDeletionRefused as e:
        raise HTTPException(status_code=409, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Camera
@router.post("/geo/layers/{layer_id}/zoom", response_model=CameraState)
async def zoom_to_layer(layer_id: str, session: GeoSession = Depends(get_geo_session)):
    """Fits the camera to all features of the layer; the camera stays put for unknown or empty layers"""
    moved = session.viewport.zoom_to_layer(layer_id)
    return CameraState(**session.map.to_dict(), moved=moved)


@router.post("/geo/features/zoom", response_model=CameraState)
async def zoom_to_feature(ref: FeatureRef, session: GeoSession = Depends(get_geo_session)):
    feature = session.find_feature(ref.layer_id, ref.feature_id)
    if feature is None:
        raise HTTPException(status_code=404, detail="Feição não encontrada")
    moved = session.viewport.zoom_to_feature(feature)
    return CameraState(**session.map.to_dict(), moved=moved)


@router.delete("/geo/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_id: str):
    """Drops a map session and all of its layers"""
    registry.close(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
