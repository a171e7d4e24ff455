"""
Parsers turning uploaded geographic files into normalized features.

Every parser is a pure function of the file text. Problems with a single
row or feature are logged and the row is skipped; only a file that cannot
be understood as a whole raises ``GeoParseError``.
"""
import csv
import html
import io
import json
import logging
import math
import os
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from geolayers.api.schemas.geo_schemas import (
    Feature, GeometryType, SUPPORTED_GEOMETRY_TYPES,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".json", ".geojson", ".kml")

# Property checked first for a feature label (municipality layers)
PLACE_NAME_PROPERTY = "municipio"

FALLBACK_LABELS = {
    GeometryType.POINT: "Ponto",
    GeometryType.POLYGON: "Polígono",
    GeometryType.MULTI_POLYGON: "Multi-Polígono",
}


class GeoParseError(ValueError):
    """The file as a whole could not be read as geographic data"""


class UnsupportedFormatError(GeoParseError):
    pass


def format_from_filename(filename: str) -> str:
    """Returns the parser format for a file name, e.g. 'areas.geojson' -> 'geojson'"""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError("Formato não suportado. Use CSV, JSON, GeoJSON ou KML.")
    return extension[1:]


def parse(raw_text: str, format_hint: str) -> List[Feature]:
    """Parses raw file text according to the format hint ('csv', '.kml', ...)"""
    fmt = (format_hint or "").lower().lstrip(".")
    if fmt == "csv":
        return parse_csv(raw_text)
    if fmt in ("json", "geojson"):
        return parse_json(raw_text)
    if fmt == "kml":
        return parse_kml(raw_text)
    raise UnsupportedFormatError(f"Formato não suportado: {format_hint}")


def to_float(value: Any) -> Optional[float]:
    """Converts a cell or JSON value to a finite float, None when impossible"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _build_feature(index: int, **data) -> Optional[Feature]:
    try:
        return Feature(**data)
    except ValidationError as e:
        logger.warning(f"Feature {index} skipped, invalid geometry: {e.error_count()} error(s)")
        return None


# ---------------------------------------------------------------- CSV

def _find_column(headers: List[str], *needles: str) -> int:
    for i, header in enumerate(headers):
        if any(needle in header for needle in needles):
            return i
    return -1


def parse_csv(text: str) -> List[Feature]:
    """Parses a CSV with a header row into Point features"""
    rows = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))
    if not rows:
        raise GeoParseError("Arquivo CSV vazio")

    headers = [h.strip() for h in rows[0]]
    lowered = [h.lower() for h in headers]

    lat_index = _find_column(lowered, "lat")
    lng_index = _find_column(lowered, "lng", "lon")
    name_index = _find_column(lowered, "name", "nome")

    if lat_index == -1 or lng_index == -1:
        raise GeoParseError("Colunas de latitude e longitude não encontradas")

    data_rows = [row for row in rows[1:] if any(cell.strip() for cell in row)]
    features = []

    for index, values in enumerate(data_rows):
        def cell(i):
            return values[i].strip() if 0 <= i < len(values) else ""

        lat = to_float(cell(lat_index))
        lng = to_float(cell(lng_index))
        if lat is None or lng is None:
            logger.warning(f"CSV row {index + 2} skipped: non-numeric coordinates")
            continue

        feature = _build_feature(
            index,
            id=f"csv-{index}",
            name=cell(name_index) or f"Ponto {index + 1}",
            geometry={"type": "Point", "coordinates": [lng, lat]},
            properties={header: cell(i) for i, header in enumerate(headers) if header},
        )
        if feature:
            features.append(feature)

    logger.info(f"CSV parsed: {len(features)} of {len(data_rows)} rows usable")
    return features


# ---------------------------------------------------------------- JSON / GeoJSON

def _feature_label(properties: Dict[str, Any], geometry_type: GeometryType, index: int) -> str:
    for key in (PLACE_NAME_PROPERTY, "name", "Nome"):
        value = properties.get(key)
        if value not in (None, ""):
            return str(value)
    return f"{FALLBACK_LABELS[geometry_type]} {index + 1}"


def _parse_geojson_feature(item: Any, index: int) -> Optional[Feature]:
    if not isinstance(item, dict):
        logger.warning(f"GeoJSON feature {index} skipped: not an object")
        return None

    geometry = item.get("geometry")
    if not isinstance(geometry, dict):
        logger.warning(f"GeoJSON feature {index} skipped: no geometry")
        return None

    geometry_type = geometry.get("type")
    if geometry_type not in SUPPORTED_GEOMETRY_TYPES:
        logger.warning(f"GeoJSON feature {index} skipped: unsupported geometry type {geometry_type!r}")
        return None

    if not isinstance(geometry.get("coordinates"), list):
        logger.warning(f"GeoJSON feature {index} skipped: invalid coordinates")
        return None

    properties = item.get("properties")
    if not isinstance(properties, dict):
        properties = {}

    kind = GeometryType(geometry_type)
    feature_id = item.get("id")
    return _build_feature(
        index,
        id=str(feature_id) if feature_id not in (None, "") else f"{geometry_type.lower()}-{index}",
        name=_feature_label(properties, kind, index),
        geometry={"type": geometry_type, "coordinates": geometry["coordinates"]},
        properties=properties,
    )


def _parse_flat_object(item: Any, index: int, default_id: str, default_name: str) -> Optional[Feature]:
    if not isinstance(item, dict):
        logger.warning(f"JSON entry {index} skipped: not an object")
        return None

    lat = to_float(item.get("latitude", item.get("lat")))
    lng = to_float(item.get("longitude", item.get("lng")))
    if lat is None or lng is None:
        logger.warning(f"JSON entry {index} skipped: non-numeric coordinates")
        return None

    item_id = item.get("id")
    return _build_feature(
        index,
        id=str(item_id) if item_id not in (None, "") else default_id,
        name=str(item.get("name") or item.get("Nome") or default_name),
        geometry={"type": "Point", "coordinates": [lng, lat]},
        properties=item,
    )


def parse_json(text: str) -> List[Feature]:
    """
    Parses JSON or GeoJSON.

    Accepts a FeatureCollection, a single GeoJSON Feature, an array of flat
    objects with latitude/longitude keys, or one such object. Any other
    shape yields an empty list.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GeoParseError(f"JSON inválido: {e.msg} (linha {e.lineno})")

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        items = data.get("features")
        if not isinstance(items, list):
            logger.error("FeatureCollection without a features array")
            return []
        features = [f for f in (_parse_geojson_feature(item, i) for i, item in enumerate(items)) if f]
        logger.info(f"FeatureCollection parsed: {len(features)} of {len(items)} features usable")
        return features

    if isinstance(data, dict) and data.get("type") == "Feature":
        feature = _parse_geojson_feature(data, 0)
        return [feature] if feature else []

    if isinstance(data, list):
        features = [
            f for f in (
                _parse_flat_object(item, i, f"json-{i}", f"Item {i + 1}")
                for i, item in enumerate(data)
            ) if f
        ]
        logger.info(f"JSON array parsed: {len(features)} of {len(data)} entries usable")
        return features

    if isinstance(data, dict) and ("latitude" in data or "lat" in data):
        feature = _parse_flat_object(data, 0, "json-single", "Ponto Importado")
        return [feature] if feature else []

    logger.error("JSON format not recognized")
    return []


# ---------------------------------------------------------------- KML

PLACEMARK_RE = re.compile(r"<Placemark\b[^>]*>(.*?)</Placemark>", re.DOTALL)
NAME_RE = re.compile(r"<name>(.*?)</name>", re.DOTALL)
DESCRIPTION_RE = re.compile(r"<description>(.*?)</description>", re.DOTALL)
COORDINATES_RE = re.compile(r"<coordinates>(.*?)</coordinates>", re.DOTALL)
POLYGON_RE = re.compile(r"<Polygon\b[^>]*>(.*?)</Polygon>", re.DOTALL)
POINT_RE = re.compile(r"<Point\b[^>]*>(.*?)</Point>", re.DOTALL)
GEOMETRY_TAG_RE = re.compile(r"<(LineString|LinearRing|Track|gx:Track|Model)\b")
COMMA_SPACING_RE = re.compile(r"\s*,\s*")
OUTER_RE = re.compile(r"<outerBoundaryIs>(.*?)</outerBoundaryIs>", re.DOTALL)
INNER_RE = re.compile(r"<innerBoundaryIs>(.*?)</innerBoundaryIs>", re.DOTALL)
CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)


def _kml_text(raw: str) -> str:
    return html.unescape(CDATA_RE.sub(r"\1", raw)).strip()


def _kml_positions(raw: str) -> List[List[float]]:
    """Reads a <coordinates> body: whitespace separated 'lng,lat[,alt]' tuples"""
    positions = []
    # "lng, lat" with spaces around the comma is still one tuple
    for chunk in COMMA_SPACING_RE.sub(",", raw.strip()).split():
        parts = chunk.split(",")
        if len(parts) < 2:
            return []
        lng, lat = to_float(parts[0]), to_float(parts[1])
        if lat is None or lng is None:
            return []
        positions.append([lng, lat])
    return positions


def _kml_ring(block: str) -> List[List[float]]:
    match = COORDINATES_RE.search(block)
    return _kml_positions(match.group(1)) if match else []


def _kml_geometry(placemark: str) -> Optional[Dict[str, Any]]:
    polygons = []
    for polygon in POLYGON_RE.findall(placemark):
        outer = OUTER_RE.search(polygon)
        rings = [_kml_ring(outer.group(1))] if outer else []
        rings += [_kml_ring(inner) for inner in INNER_RE.findall(polygon)]
        if not rings or not all(rings):
            return None
        polygons.append(rings)

    if len(polygons) == 1:
        return {"type": "Polygon", "coordinates": polygons[0]}
    if polygons:
        return {"type": "MultiPolygon", "coordinates": polygons}

    point = POINT_RE.search(placemark)
    if not point:
        other = GEOMETRY_TAG_RE.search(placemark)
        if other:
            logger.warning(f"KML geometry {other.group(1)} not supported")
        return None
    match = COORDINATES_RE.search(point.group(1))
    if not match:
        return None
    positions = _kml_positions(match.group(1))
    if not positions:
        return None
    return {"type": "Point", "coordinates": positions[0]}


def parse_kml(text: str) -> List[Feature]:
    """Extracts Placemarks from KML text; placemarks without coordinates are dropped"""
    placemarks = PLACEMARK_RE.findall(text)
    features = []

    for index, placemark in enumerate(placemarks):
        geometry = _kml_geometry(placemark)
        if geometry is None:
            logger.warning(f"KML placemark {index} skipped: no parsable coordinates")
            continue

        properties = {"source": "kml"}
        description = DESCRIPTION_RE.search(placemark)
        if description:
            properties["description"] = _kml_text(description.group(1))

        name = NAME_RE.search(placemark)
        label = _kml_text(name.group(1)) if name else ""
        kind = GeometryType(geometry["type"])

        feature = _build_feature(
            index,
            id=f"kml-{index}",
            name=label or f"{FALLBACK_LABELS[kind]} {index + 1}",
            geometry=geometry,
            properties=properties,
        )
        if feature:
            features.append(feature)

    logger.info(f"KML parsed: {len(features)} of {len(placemarks)} placemarks usable")
    return features
