"""
Encoders writing the visible features to CSV, JSON, GeoJSON and KML.

Export is row based: every feature becomes one located record. Polygon
features are reduced to a representative point, so GeoJSON and KML output
only ever contain Point geometries.
"""
import csv
import io
import json
import logging
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from geolayers.api.schemas.geo_schemas import (
    Feature, PointGeometry, PolygonGeometry, MultiPolygonGeometry,
)

logger = logging.getLogger(__name__)

KML_NAMESPACE = "http://www.opengis.net/kml/2.2"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    GEOJSON = "geojson"
    KML = "kml"

    @property
    def filename(self) -> str:
        return f"geo_data.{self.value}"

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self]


MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.GEOJSON: "application/geo+json",
    ExportFormat.KML: "application/vnd.google-earth.kml+xml",
}


class FieldSelection(BaseModel):
    """Which semantic fields go into the export"""
    coordinates: bool = True
    name: bool = True
    type: bool = True
    status: bool = True
    details: bool = False


def representative_point(feature: Feature) -> Optional[Tuple[float, float]]:
    """(lng, lat) of a feature: the point itself, or the vertex mean of the first outer ring"""
    geometry = feature.geometry
    if isinstance(geometry, PointGeometry):
        return geometry.coordinates
    if isinstance(geometry, PolygonGeometry):
        ring = geometry.coordinates[0]
    elif isinstance(geometry, MultiPolygonGeometry):
        ring = geometry.coordinates[0][0]
    else:
        raise TypeError(f"Unsupported geometry: {type(geometry).__name__}")

    if not ring:
        return None
    return (
        sum(lng for lng, _ in ring) / len(ring),
        sum(lat for _, lat in ring) / len(ring),
    )


def export_row(feature: Feature) -> Dict[str, Any]:
    lng, lat = representative_point(feature) or (None, None)
    return {
        "name": feature.name,
        "latitude": lat,
        "longitude": lng,
        "type": feature.geometry.type,
        "status": feature.properties.get("status", ""),
        "details": feature.properties,
    }


EXPORT_FIELDS = ("name", "latitude", "longitude", "type", "status", "details")


def _selected(row: Dict[str, Any], fields: FieldSelection) -> Dict[str, Any]:
    item = {}
    if fields.name:
        item["name"] = row["name"]
    if fields.coordinates:
        item["latitude"] = row["latitude"]
        item["longitude"] = row["longitude"]
    if fields.type:
        item["type"] = row["type"]
    if fields.status:
        item["status"] = row["status"]
    if fields.details:
        item["details"] = row["details"]
    return item


def encode_csv(rows: List[Dict[str, Any]], fields: FieldSelection) -> str:
    headers = list(_selected(dict.fromkeys(EXPORT_FIELDS), fields))
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        item = _selected(row, fields)
        if "details" in item:
            item["details"] = json.dumps(item["details"], ensure_ascii=False, default=str)
        writer.writerow(["" if item[h] is None else item[h] for h in headers])
    return buffer.getvalue()


def encode_json(rows: List[Dict[str, Any]], fields: FieldSelection) -> str:
    return json.dumps([_selected(row, fields) for row in rows], ensure_ascii=False, indent=2, default=str)


def encode_geojson(rows: List[Dict[str, Any]], fields: FieldSelection) -> str:
    # Coordinates always travel in the geometry, never as properties
    property_fields = fields.model_copy(update={"coordinates": False})
    features = [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [row["longitude"], row["latitude"]]},
            "properties": _selected(row, property_fields),
        }
        for row in rows
        if row["latitude"] is not None
    ]
    return json.dumps(
        {"type": "FeatureCollection", "features": features},
        ensure_ascii=False, indent=2, default=str,
    )


def encode_kml(rows: List[Dict[str, Any]]) -> str:
    ET.register_namespace("", KML_NAMESPACE)
    kml = ET.Element(f"{{{KML_NAMESPACE}}}kml")
    document = ET.SubElement(kml, f"{{{KML_NAMESPACE}}}Document")
    ET.SubElement(document, f"{{{KML_NAMESPACE}}}name").text = "Dados Georreferenciados"
    ET.SubElement(document, f"{{{KML_NAMESPACE}}}description").text = (
        "Exportado do Sistema de Licenciamento Ambiental"
    )

    for row in rows:
        if row["latitude"] is None:
            continue
        placemark = ET.SubElement(document, f"{{{KML_NAMESPACE}}}Placemark")
        ET.SubElement(placemark, f"{{{KML_NAMESPACE}}}name").text = row["name"] or "Ponto"
        point = ET.SubElement(placemark, f"{{{KML_NAMESPACE}}}Point")
        ET.SubElement(point, f"{{{KML_NAMESPACE}}}coordinates").text = (
            f"{row['longitude']},{row['latitude']},0"
        )

    ET.indent(kml, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(kml, encoding="unicode")


def encode(features: Sequence[Feature], export_format, fields: Optional[FieldSelection] = None) -> str:
    """Serializes features in the requested format honoring the field selection"""
    export_format = ExportFormat(export_format)
    fields = fields or FieldSelection()
    rows = [export_row(feature) for feature in features]

    if export_format == ExportFormat.CSV:
        content = encode_csv(rows, fields)
    elif export_format == ExportFormat.JSON:
        content = encode_json(rows, fields)
    elif export_format == ExportFormat.GEOJSON:
        content = encode_geojson(rows, fields)
    else:
        content = encode_kml(rows)

    logger.info(f"Exported {len(rows)} features as {export_format.value}")
    return content
