"""Shared fixtures: in-memory database, sample files, API client."""
import os

# Must be set before geolayers.config is imported
os.environ["GEOLAYERS_DATABASE_URL"] = "sqlite://"
os.environ["GEOLAYERS_REMOTE_URL"] = ""
os.environ["GEOLAYERS_REMOTE_KEY"] = ""

import json

import pytest
from fastapi.testclient import TestClient

from geolayers.api.schemas.geo_schemas import Feature, Layer, LayerSource


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network or server")
    config.addinivalue_line("markers", "integration: tests going through the HTTP API")


SAMPLE_CSV = (
    "name,latitude,longitude,status\n"
    "Empresa A,-23.5505,-46.6333,ativo\n"
    "Processo B,-22.9068,-43.1729,aprovado\n"
)

SQUARE = [[-47.0, -15.0], [-46.0, -15.0], [-46.0, -14.0], [-47.0, -14.0], [-47.0, -15.0]]
FAR_SQUARE = [[-44.0, -20.0], [-43.0, -20.0], [-43.0, -19.0], [-44.0, -19.0], [-44.0, -20.0]]


def make_point(feature_id="p1", lng=-46.6333, lat=-23.5505, name="Ponto", **properties):
    return Feature(
        id=feature_id,
        name=name,
        geometry={"type": "Point", "coordinates": [lng, lat]},
        properties=properties,
    )


def make_polygon(feature_id="poly1", ring=None, name="Área", **properties):
    return Feature(
        id=feature_id,
        name=name,
        geometry={"type": "Polygon", "coordinates": [ring or SQUARE]},
        properties=properties,
    )


def make_layer(layer_id="layer-a", features=None, color="#3B82F6",
               source=LayerSource.IMPORTED, **kwargs):
    return Layer(
        id=layer_id,
        name=kwargs.pop("name", layer_id),
        features=features if features is not None else [make_point(f"{layer_id}-p")],
        color=color,
        source=source,
        **kwargs,
    )


def areas_geojson() -> bytes:
    """Two polygons, as uploaded in the import scenario"""
    return json.dumps({
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"municipio": "Brasília"},
                "geometry": {"type": "Polygon", "coordinates": [SQUARE]},
            },
            {
                "type": "Feature",
                "properties": {"municipio": "Belo Horizonte"},
                "geometry": {"type": "Polygon", "coordinates": [FAR_SQUARE]},
            },
        ],
    }).encode("utf-8")


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV


@pytest.fixture
def client():
    """API client on a fresh session registry"""
    from geolayers.main import app
    from geolayers.api.services.sessions import registry
    from geolayers.api.models.map_models import MapSettings
    from geolayers.database import SessionLocal

    registry.clear()
    db = SessionLocal()
    try:
        db.query(MapSettings).delete()
        db.commit()
    finally:
        db.close()
    with TestClient(app) as test_client:
        yield test_client
    registry.clear()
