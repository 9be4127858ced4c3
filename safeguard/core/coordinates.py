"""
Coordinate resolution for SafeGuard.

This module converts the assorted location encodings found on incident
records (WKT point strings, direct latitude/longitude fields, GeoJSON
points and free-text place names) into validated coordinates with a
confidence tier. Every function returns a tagged CoordinateResult and
never raises for malformed input.
"""

import json
import math
import re
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from safeguard.common.geo import BoundingBox, haversine_meters, validate_coordinates
from safeguard.core.models import Confidence, CoordinateResult, Coordinates
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.coordinates")

# 국가 경계 (남아프리카공화국)
NATIONAL_BOUNDS = BoundingBox(min_lat=-35.0, max_lat=-22.0, min_lon=16.0, max_lon=33.0)

# 지역 경계 (Eldorado Park)
LOCAL_BOUNDS = BoundingBox(min_lat=-26.32, max_lat=-26.29, min_lon=27.92, max_lon=27.96)

DEFAULT_COORDINATES = Coordinates(latitude=-26.3054, longitude=27.9389)

def _c(lat: float, lon: float) -> Coordinates:
    return Coordinates(latitude=lat, longitude=lon)

# 지명 사전: 소문자 지명 -> 대표 좌표
GAZETTEER: Dict[str, Coordinates] = {
    # Extensions
    "extension 1": _c(-26.3020, 27.9350),
    "extension 2": _c(-26.3030, 27.9360),
    "extension 3": _c(-26.3040, 27.9370),
    "extension 4": _c(-26.3050, 27.9380),
    "extension 5": _c(-26.3060, 27.9390),
    "extension 6": _c(-26.3070, 27.9400),
    "extension 7": _c(-26.3080, 27.9410),
    "extension 8": _c(-26.3090, 27.9420),
    "extension 9": _c(-26.3100, 27.9430),
    "extension 10": _c(-26.3110, 27.9440),
    "extension 11": _c(-26.3120, 27.9450),
    "extension 12": _c(-26.3130, 27.9460),
    "extension 13": _c(-26.3140, 27.9470),

    # Key locations
    "shopping centre": _c(-26.3054, 27.9389),
    "shopping center": _c(-26.3054, 27.9389),
    "eldorado shopping centre": _c(-26.3054, 27.9389),
    "eldorado shopping center": _c(-26.3054, 27.9389),
    "main road": _c(-26.3050, 27.9395),
    "klipriver road": _c(-26.3040, 27.9410),
    "klip river road": _c(-26.3040, 27.9410),
    "golden highway": _c(-26.3045, 27.9385),

    # Education
    "school": _c(-26.3045, 27.9395),
    "eldorado primary school": _c(-26.3045, 27.9395),
    "eldorado high school": _c(-26.3048, 27.9392),
    "primary school": _c(-26.3045, 27.9395),
    "high school": _c(-26.3048, 27.9392),

    # Healthcare
    "clinic": _c(-26.3050, 27.9400),
    "eldorado clinic": _c(-26.3050, 27.9400),
    "community clinic": _c(-26.3050, 27.9400),
    "health clinic": _c(-26.3050, 27.9400),

    # Community
    "community hall": _c(-26.3060, 27.9380),
    "community center": _c(-26.3060, 27.9380),
    "community centre": _c(-26.3060, 27.9380),
    "hall": _c(-26.3060, 27.9380),
    "library": _c(-26.3055, 27.9385),
    "eldorado library": _c(-26.3055, 27.9385),
    "public library": _c(-26.3055, 27.9385),

    # Sports
    "sports complex": _c(-26.3065, 27.9375),
    "sports centre": _c(-26.3065, 27.9375),
    "sports center": _c(-26.3065, 27.9375),
    "stadium": _c(-26.3065, 27.9375),
    "soccer field": _c(-26.3062, 27.9378),
    "football field": _c(-26.3062, 27.9378),

    # Transport
    "eldorado park station": _c(-26.3035, 27.9420),
    "train station": _c(-26.3035, 27.9420),
    "station": _c(-26.3035, 27.9420),
    "taxi rank": _c(-26.3052, 27.9388),
    "bus stop": _c(-26.3051, 27.9390),

    # Religious
    "church": _c(-26.3058, 27.9383),
    "mosque": _c(-26.3056, 27.9387),
    "temple": _c(-26.3059, 27.9381),

    # Commercial
    "shops": _c(-26.3053, 27.9390),
    "market": _c(-26.3054, 27.9388),
    "spaza shop": _c(-26.3055, 27.9392),
    "tuck shop": _c(-26.3055, 27.9392),
}

# 자유 텍스트 위치 필드 (우선순위 순)
LOCATION_TEXT_FIELDS = ("location_area", "location_address", "area_name", "address", "location")

_NUM = r"([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"

# WKT POINT 패턴 (인코딩 순서는 경도, 위도)
POINT_PATTERNS = [
    # SRID=4326;POINT(lon lat)
    re.compile(r"SRID=\d+\s*;\s*POINT\s*\(\s*" + _NUM + r"\s+" + _NUM + r"\s*\)", re.IGNORECASE),
    # POINT(lon,lat)
    re.compile(r"POINT\s*\(\s*" + _NUM + r"\s*,\s*" + _NUM + r"\s*\)", re.IGNORECASE),
    # POINT(lon lat)
    re.compile(r"POINT\s*\(\s*" + _NUM + r"\s+" + _NUM + r"\s*\)", re.IGNORECASE),
    # 느슨한 형식: 쉼표와 공백 혼합
    re.compile(r"POINT\s*\(\s*" + _NUM + r"\s*[,\s]\s*" + _NUM + r"\s*\)", re.IGNORECASE),
]

_EXTENSION_PATTERN = re.compile(r"\bext(?:ension)?\.?\s*(\d+)\b", re.IGNORECASE)

def classify_bounds(lat: float, lon: float) -> Optional[Confidence]:
    """
    좌표가 어느 경계 안에 있는지에 따라 신뢰도를 반환합니다.

    Returns:
        지역 경계 안이면 "high", 국가 경계 안이면 "medium", 밖이면 None
    """
    if not validate_coordinates(lat, lon):
        return None
    if LOCAL_BOUNDS.contains(lat, lon):
        return "high"
    if NATIONAL_BOUNDS.contains(lat, lon):
        return "medium"
    return None

def _failure(source: str, error: str, original: Any = None) -> CoordinateResult:
    return CoordinateResult(
        coordinates=None,
        source=source,
        confidence="low",
        original_data=original,
        error=error,
    )

def _bounded(source: str, lat: float, lon: float, original: Any) -> CoordinateResult:
    confidence = classify_bounds(lat, lon)
    if confidence is None:
        return _failure(source, f"Coordinates outside national bounds: lat={lat}, lng={lon}", original)
    return CoordinateResult(
        coordinates=Coordinates(latitude=lat, longitude=lon),
        source=source,
        confidence=confidence,
        original_data=original,
    )

def _to_number(value: Any) -> Optional[float]:
    # bool은 int의 하위 타입이므로 명시적으로 거부
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None

def _as_mapping(record: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    if isinstance(record, Mapping):
        return record
    return None

def extract_from_postgis_point(location_point: Any) -> CoordinateResult:
    """
    WKT 형식의 POINT 문자열에서 좌표를 추출합니다.

    지원 형식:
        - SRID=4326;POINT(lon lat)
        - POINT(lon,lat)
        - POINT(lon lat), POINT (lon lat)
        - 쉼표/공백이 섞인 느슨한 형식

    Args:
        location_point: 원시 location_point 값

    Returns:
        (위도, 경도)로 정규화된 좌표 해석 결과
    """
    source = "postgis_point"
    if location_point is None or location_point == "":
        return _failure(source, "No location_point data provided")

    try:
        if isinstance(location_point, bytes):
            text = location_point.decode("utf-8", errors="replace")
        elif isinstance(location_point, str):
            text = location_point
        else:
            text = str(location_point)

        text = text.strip()
        match = None
        for pattern in POINT_PATTERNS:
            match = pattern.search(text)
            if match:
                break

        if not match:
            return _failure(source, f'No valid POINT pattern found in: "{text}"', location_point)

        longitude = float(match.group(1))
        latitude = float(match.group(2))
        if not (math.isfinite(longitude) and math.isfinite(latitude)):
            return _failure(source, f"Invalid coordinate values: longitude={match.group(1)}, latitude={match.group(2)}", location_point)

        return _bounded(source, latitude, longitude, location_point)

    except Exception as e:
        return _failure(source, f"Error parsing PostGIS point: {e}", location_point)

def extract_from_direct_fields(record: Any) -> CoordinateResult:
    """
    latitude/longitude 필드에서 좌표를 추출합니다 (숫자 또는 숫자 문자열).

    Args:
        record: 레코드 (dict 또는 pydantic 모델)

    Returns:
        좌표 해석 결과
    """
    source = "direct_fields"
    data = _as_mapping(record)
    if not data:
        return _failure(source, "No data provided")

    try:
        lat_field = data.get("latitude")
        lon_field = data.get("longitude")
        if lat_field is None or lon_field is None:
            return _failure(source, "Missing latitude or longitude fields")

        original = {"latitude": lat_field, "longitude": lon_field}
        latitude = _to_number(lat_field)
        longitude = _to_number(lon_field)
        if latitude is None or longitude is None:
            return _failure(source, f"Invalid coordinate values: latitude={lat_field}, longitude={lon_field}", original)

        return _bounded(source, latitude, longitude, original)

    except Exception as e:
        return _failure(source, f"Error extracting from direct fields: {e}", record)

def extract_from_geojson(value: Any) -> CoordinateResult:
    """
    GeoJSON Point 객체에서 좌표를 추출합니다.

    Args:
        value: {"type": "Point", "coordinates": [lon, lat]} 또는 그 JSON 문자열

    Returns:
        좌표 해석 결과
    """
    source = "geojson"
    try:
        if isinstance(value, str) and value.strip().startswith("{"):
            value = json.loads(value)
    except ValueError as e:
        return _failure(source, f"Error parsing GeoJSON: {e}", value)

    if not isinstance(value, Mapping):
        return _failure(source, "No GeoJSON data provided or invalid format", value)

    try:
        coords = value.get("coordinates")
        if value.get("type") == "Point" and isinstance(coords, (list, tuple)) and len(coords) >= 2:
            longitude = _to_number(coords[0]) if not isinstance(coords[0], str) else None
            latitude = _to_number(coords[1]) if not isinstance(coords[1], str) else None
            if longitude is not None and latitude is not None:
                return _bounded(source, latitude, longitude, value)

        return _failure(source, "Invalid GeoJSON Point format or missing coordinates", value)

    except Exception as e:
        return _failure(source, f"Error parsing GeoJSON: {e}", value)

@lru_cache(maxsize=1024)
def _gazetteer_pattern(key: str) -> "re.Pattern[str]":
    return re.compile(r"(?<![a-z0-9])" + re.escape(key) + r"(?![a-z0-9])")

def extract_from_area_fallback(record: Any, gazetteer: Optional[Mapping[str, Coordinates]] = None) -> CoordinateResult:
    """
    자유 텍스트 위치 필드를 지명 사전과 대조하여 좌표를 찾습니다.

    긴 지명이 먼저 비교되며, 단어 경계를 지켜 "extension 1"이
    "extension 12"에 잘못 매칭되지 않도록 합니다.

    Args:
        record: 레코드
        gazetteer: 지명 사전 (None이면 기본 사전)

    Returns:
        좌표 해석 결과 (성공 시 confidence "medium")
    """
    source = "area_fallback"
    data = _as_mapping(record)
    if not data:
        return _failure(source, "No data provided")

    places = gazetteer if gazetteer is not None else GAZETTEER

    try:
        texts = [
            str(data.get(field)).lower().strip()
            for field in LOCATION_TEXT_FIELDS
            if data.get(field)
        ]
        if not texts:
            return _failure(source, "No location text available for area matching")

        keys = sorted(places, key=len, reverse=True)
        for text in texts:
            for key in keys:
                if _gazetteer_pattern(key).search(text):
                    return CoordinateResult(
                        coordinates=places[key],
                        source=source,
                        confidence="medium",
                        original_data={"matched_text": text, "matched_area": key},
                    )

        # "ext 4", "extension4" 같은 번호 패턴
        for text in texts:
            ext = _EXTENSION_PATTERN.search(text)
            if ext:
                key = f"extension {int(ext.group(1))}"
                if key in places:
                    return CoordinateResult(
                        coordinates=places[key],
                        source=source,
                        confidence="medium",
                        original_data={"matched_text": text, "matched_area": key},
                    )

        return _failure(source, "No matching areas found in location text", {"searched_texts": texts})

    except Exception as e:
        return _failure(source, f"Error in area fallback: {e}", record)

def resolve_coordinates(record: Any, gazetteer: Optional[Mapping[str, Coordinates]] = None) -> CoordinateResult:
    """
    여러 추출 방법을 우선순위대로 시도하여 최적의 좌표를 반환합니다.

    순서: WKT POINT -> 직접 필드 -> GeoJSON -> 지명 사전 -> 기본 좌표.
    medium 이상의 신뢰도를 가진 첫 결과에서 멈춥니다.

    Args:
        record: 레코드 (dict 또는 pydantic 모델)
        gazetteer: 지명 사전 (None이면 기본 사전)

    Returns:
        좌표 해석 결과
    """
    data = _as_mapping(record)
    if not data:
        result = CoordinateResult(
            coordinates=DEFAULT_COORDINATES,
            source="default_fallback",
            confidence="low",
            error="No data provided, using default coordinates",
        )
        metrics.coordinates_resolved.labels(source=result.source, confidence=result.confidence).inc()
        return result

    methods: List[Callable[[], CoordinateResult]] = [
        lambda: extract_from_postgis_point(data.get("location_point")),
        lambda: extract_from_direct_fields(data),
        lambda: extract_from_geojson(data.get("location_point")),
        lambda: extract_from_area_fallback(data, gazetteer),
    ]

    attempts: List[CoordinateResult] = []
    for method in methods:
        try:
            result = method()
        except Exception as e:
            result = _failure("postgis_point", f"Method failed: {e}")
        attempts.append(result)

        if result.ok:
            metrics.coordinates_resolved.labels(source=result.source, confidence=result.confidence).inc()
            return result

    summary = ", ".join(f"{r.source}({r.error or 'no error'})" for r in attempts)
    log.debug("모든 좌표 추출 방법 실패, 기본 좌표 사용", record_id=data.get("id"))
    metrics.coordinates_resolved.labels(source="default_fallback", confidence="low").inc()
    return CoordinateResult(
        coordinates=DEFAULT_COORDINATES,
        source="default_fallback",
        confidence="low",
        original_data=dict(data),
        error=f"All extraction methods failed. Attempted: {summary}",
    )

def batch_resolve(records: Sequence[Any], gazetteer: Optional[Mapping[str, Coordinates]] = None) -> List[CoordinateResult]:
    """
    여러 레코드를 독립적으로 해석합니다. 한 레코드의 실패가 배치를 중단시키지 않습니다.

    Returns:
        입력과 같은 순서의 결과 목록 (original_data에 record_index 포함)
    """
    if not isinstance(records, (list, tuple)):
        return []

    results: List[CoordinateResult] = []
    for index, record in enumerate(records):
        try:
            result = resolve_coordinates(record, gazetteer)
            original = result.original_data
            if isinstance(original, Mapping):
                tagged = {**original, "record_index": index}
            else:
                tagged = {"value": original, "record_index": index}
            results.append(result.model_copy(update={"original_data": tagged}))
        except Exception as e:
            results.append(CoordinateResult(
                coordinates=DEFAULT_COORDINATES,
                source="default_fallback",
                confidence="low",
                original_data={"record_index": index},
                error=f"Batch extraction failed for record {index}: {e}",
            ))
    return results

def extraction_stats(results: Sequence[CoordinateResult]) -> Dict[str, Any]:
    """
    좌표 해석 결과에 대한 통계를 계산합니다.

    Returns:
        total, successful, success_rate, high_confidence_rate,
        by_source, by_confidence, errors, error_types
    """
    total = len(results)
    successful = 0
    errors = 0
    by_source: Dict[str, int] = {}
    by_confidence: Dict[str, int] = {}
    error_types: Dict[str, int] = {}

    for result in results:
        if result.coordinates is not None:
            successful += 1
        if result.error:
            errors += 1
            error_type = result.error.split(":")[0].strip() or "unknown"
            error_types[error_type] = error_types.get(error_type, 0) + 1
        by_source[result.source] = by_source.get(result.source, 0) + 1
        by_confidence[result.confidence] = by_confidence.get(result.confidence, 0) + 1

    return {
        "total": total,
        "successful": successful,
        "success_rate": (successful / total) * 100 if total else 0.0,
        "high_confidence_rate": (by_confidence.get("high", 0) / total) * 100 if total else 0.0,
        "by_source": by_source,
        "by_confidence": by_confidence,
        "errors": errors,
        "error_types": error_types,
    }

def format_coordinates(coords: Coordinates, precision: int = 6) -> str:
    return f"{coords.latitude:.{precision}f}, {coords.longitude:.{precision}f}"

def distance_meters(a: Coordinates, b: Coordinates) -> float:
    return haversine_meters(a.latitude, a.longitude, b.latitude, b.longitude)

def is_within_local_radius(coords: Coordinates, radius_m: float = 5000) -> bool:
    """기본 좌표(지역 중심)로부터 반경 안에 있는지 확인합니다."""
    return distance_meters(coords, DEFAULT_COORDINATES) <= radius_m
