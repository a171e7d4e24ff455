from typing import Optional
from sqlalchemy.orm import Session
from geolayers.api.models.map_models import MapSettings
from geolayers.api.schemas.map_schemas import MapSettingsUpdate
from geolayers.config import settings

DEFAULT_NAME = "default"

def get_map_settings(db: Session, name: str = DEFAULT_NAME) -> Optional[MapSettings]:
    """Returns the saved map settings or None"""
    return db.query(MapSettings).filter(MapSettings.name == name).first()

def get_or_create_map_settings(db: Session, name: str = DEFAULT_NAME) -> MapSettings:
    """Returns the map settings, creating them from the configured defaults on first use"""
    db_settings = get_map_settings(db, name)
    if db_settings:
        return db_settings

    db_settings = MapSettings(
        name=name,
        center_lat=settings.default_center_lat,
        center_lng=settings.default_center_lng,
        zoom=settings.default_zoom,
        map_style="openstreetmap",
    )
    db.add(db_settings)
    db.commit()
    db.refresh(db_settings)
    return db_settings

def update_map_settings(db: Session, update: MapSettingsUpdate, name: str = DEFAULT_NAME) -> MapSettings:
    """Updates the map settings"""
    db_settings = get_or_create_map_settings(db, name)

    # Only the provided fields are updated
    update_data = update.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in update_data.items():
        setattr(db_settings, key, value)

    db.commit()
    db.refresh(db_settings)
    return db_settings
