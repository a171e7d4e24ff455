import logging
from typing import Any, Dict, Iterable, List, Optional

from geolayers.api.schemas.geo_schemas import Feature, SystemLayerDef
from geolayers.api.services.parsers import to_float
from geolayers.api.services.remote_service import RecordsClient

logger = logging.getLogger(__name__)

PROCESSES_LAYER = ("processes", "Processos de Licenciamento", "#3B82F6")
COMPANIES_LAYER = ("companies", "Empresas Cadastradas", "#8B5CF6")


def parse_record_coordinates(value: Any) -> Optional[List[float]]:
    """'lat, lng' as stored on records -> [lng, lat]"""
    if not isinstance(value, str) or "," not in value:
        return None
    lat_text, lng_text = value.split(",", 1)
    lat, lng = to_float(lat_text), to_float(lng_text)
    if lat is None or lng is None:
        return None
    return [lng, lat]


def _record_features(records: Iterable[Dict[str, Any]], layer_id: str, kind: str, label) -> List[Feature]:
    features = []
    for record in records:
        coordinates = parse_record_coordinates(record.get("coordinates"))
        if coordinates is None:
            continue
        features.append(Feature(
            id=str(record.get("id")),
            name=label(record),
            geometry={"type": "Point", "coordinates": coordinates},
            properties={**record, "type": kind},
            layer_id=layer_id,
        ))
    return features


def _process_label(process: Dict[str, Any]) -> str:
    company = process.get("companies") or {}
    return company.get("name") or "Processo"


def build_system_layers(processes: Iterable[Dict[str, Any]] = (),
                        companies: Iterable[Dict[str, Any]] = ()) -> List[SystemLayerDef]:
    """Layer definitions for licensing processes and companies that have a location"""
    layer_defs = []

    layer_id, name, color = PROCESSES_LAYER
    features = _record_features(processes, layer_id, "process", _process_label)
    if features:
        layer_defs.append(SystemLayerDef(id=layer_id, name=name, features=features, color=color))

    layer_id, name, color = COMPANIES_LAYER
    features = _record_features(companies, layer_id, "company", lambda c: c.get("name") or "Empresa")
    if features:
        layer_defs.append(SystemLayerDef(id=layer_id, name=name, features=features, color=color))

    logger.info(f"System layers built: {[(d.id, len(d.features)) for d in layer_defs]}")
    return layer_defs


def fetch_system_layers(client: RecordsClient, user_id: Optional[str] = None) -> List[SystemLayerDef]:
    """Loads processes and companies from the records API and builds their layers"""
    filters = {"user_id": user_id} if user_id else None
    processes = client.select(
        "license_processes", "*,companies(*)", filters, order=[("created_at", False)],
    )
    companies = client.select("companies", "*", filters, order=[("name", True)])
    return build_system_layers(processes, companies)
