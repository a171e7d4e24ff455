from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import HTMLResponse
from typing import List, Optional, Literal
from sqlalchemy.orm import Session
import logging

from geolayers.database import get_db
from geolayers.api.schemas.geo_schemas import Feature
from geolayers.api.schemas.map_schemas import MapSettings, MapSettingsUpdate, CameraState
from geolayers.api.schemas.render_schemas import MapScene, ClickRequest, ClickResult
from geolayers.api.services.export import ExportFormat, FieldSelection, encode
from geolayers.api.services.render import visible_features, to_folium, popup_for
from geolayers.api.services.sessions import GeoSession, get_geo_session
from geolayers.api.services.settings_service import get_or_create_map_settings, update_map_settings

router = APIRouter(tags=["map"])

logger = logging.getLogger(__name__)

ContextMenuAction = Literal["zoom_to_feature", "show_feature_info"]


@router.get("/geo/map/scene", response_model=MapScene)
async def read_scene(session: GeoSession = Depends(get_geo_session)):
    """Primitives of the visible layers in paint order"""
    return session.renderer.scene


@router.get("/geo/map/camera", response_model=CameraState)
async def read_camera(session: GeoSession = Depends(get_geo_session)):
    return CameraState(**session.map.to_dict(), moved=False)


@router.get("/geo/map", response_class=HTMLResponse)
async def read_map_page(session: GeoSession = Depends(get_geo_session)):
    """The current scene drawn on an interactive map page"""
    m = to_folium(session.renderer.scene, session.map, session.map_style)
    return HTMLResponse(m.get_root().render())


@router.get("/geo/features/visible", response_model=List[Feature])
async def read_visible_features(search: Optional[str] = None,
                                session: GeoSession = Depends(get_geo_session)):
    """Features of the visible layers, optionally filtered by name"""
    return visible_features(session.store.snapshot(), search)


@router.post("/geo/map/click", response_model=ClickResult)
async def click_map(request: ClickRequest, session: GeoSession = Depends(get_geo_session)):
    """Left click opens the feature popup, right click its context menu; anything else closes the menu"""
    feature = None
    if request.layer_id and request.feature_id:
        feature = session.find_feature(request.layer_id, request.feature_id)
    return session.interaction.click(feature, request.button, request.x, request.y)


@router.post("/geo/map/dismiss", response_model=ClickResult)
async def dismiss_context_menu(session: GeoSession = Depends(get_geo_session)):
    session.interaction.dismiss()
    return ClickResult()


@router.post("/geo/map/context-menu/{action}")
async def run_context_menu_action(action: ContextMenuAction, session: GeoSession = Depends(get_geo_session)):
    """Runs an action of the open context menu on its feature and closes the menu"""
    menu = session.interaction.context_menu
    if menu is None:
        raise HTTPException(status_code=409, detail="Nenhum menu de contexto aberto")

    feature = session.find_feature(menu.layer_id, menu.feature_id)
    if feature is None:
        session.interaction.dismiss()
        raise HTTPException(status_code=404, detail="Feição não encontrada")

    if action == "zoom_to_feature":
        moved = session.viewport.zoom_to_feature(feature)
        session.interaction.dismiss()
        return CameraState(**session.map.to_dict(), moved=moved)

    session.interaction.show_info(feature)
    return {"feature": feature, "popup": popup_for(feature)}


# Export
@router.get("/geo/export")
async def export_features(
    format: ExportFormat = Query(ExportFormat.CSV),
    search: Optional[str] = None,
    coordinates: bool = True,
    name: bool = True,
    type: bool = True,
    status: bool = True,
    details: bool = False,
    session: GeoSession = Depends(get_geo_session),
):
    """Downloads the visible features as geo_data.<format>"""
    features = visible_features(session.store.snapshot(), search)
    fields = FieldSelection(coordinates=coordinates, name=name, type=type, status=status, details=details)
    content = encode(features, format, fields)
    return Response(
        content=content.encode("utf-8"),
        media_type=f"{format.media_type}; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{format.filename}"'},
    )


# Saved map settings
@router.get("/maps/settings", response_model=MapSettings)
async def read_map_settings(db: Session = Depends(get_db)):
    """Default camera and base map of new sessions"""
    return get_or_create_map_settings(db)


@router.put("/maps/settings", response_model=MapSettings)
async def update_settings(update: MapSettingsUpdate, db: Session = Depends(get_db),
                          session: GeoSession = Depends(get_geo_session)):
    """Saves the map settings and applies them to the caller's map"""
    db_settings = update_map_settings(db, update)
    if update.center_lat is not None or update.center_lng is not None or update.zoom is not None:
        session.map.set_view(db_settings.center_lat, db_settings.center_lng, db_settings.zoom)
    session.map_style = db_settings.map_style
    return db_settings
