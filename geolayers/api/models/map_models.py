from sqlalchemy import Column, Integer, String, Float, DateTime
from datetime import datetime, timezone
from geolayers.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class MapSettings(Base):
    """Saved map display settings (default camera and base map style)"""
    __tablename__ = "map_settings"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, default="default")
    center_lat = Column(Float)
    center_lng = Column(Float)
    zoom = Column(Integer)
    map_style = Column(String, default="openstreetmap")  # openstreetmap, satellite, terrain
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
