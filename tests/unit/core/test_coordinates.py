"""
좌표 해석 모듈 테스트

WKT / 직접 필드 / GeoJSON / 지명 사전 네 가지 입력 형태와
경계 기반 신뢰도, 배치 처리, 통계를 검증합니다.
"""

import math

import pytest
from hypothesis import given, strategies as st

from safeguard.core.coordinates import (
    DEFAULT_COORDINATES,
    GAZETTEER,
    batch_resolve,
    classify_bounds,
    distance_meters,
    extract_from_area_fallback,
    extract_from_direct_fields,
    extract_from_geojson,
    extract_from_postgis_point,
    extraction_stats,
    format_coordinates,
    is_within_local_radius,
    resolve_coordinates,
)
from safeguard.core.models import CoordinateResult, Coordinates

TAXI_RANK = Coordinates(latitude=-26.3052, longitude=27.9388)


class TestPostgisPoint:
    """WKT POINT 추출 테스트"""

    @pytest.mark.parametrize("text", [
        "POINT(27.9388 -26.3052)",
        "POINT (27.9388 -26.3052)",
        "point(27.9388 -26.3052)",
        "POINT(27.9388,-26.3052)",
        "POINT( 27.9388 , -26.3052 )",
        "SRID=4326;POINT(27.9388 -26.3052)",
    ])
    def test_supported_formats_inside_local_box(self, text):
        """지역 경계 안 좌표는 high 신뢰도"""
        result = extract_from_postgis_point(text)

        assert result.source == "postgis_point"
        assert result.confidence == "high"
        assert result.coordinates == TAXI_RANK
        assert result.error is None

    def test_order_is_longitude_then_latitude(self):
        """WKT는 (경도 위도) 순서"""
        result = extract_from_postgis_point("POINT(27.9388 -26.3052)")

        assert result.coordinates.latitude == -26.3052
        assert result.coordinates.longitude == 27.9388

    def test_national_but_not_local_is_medium(self):
        """국가 경계 안, 지역 경계 밖이면 medium"""
        result = extract_from_postgis_point("POINT(28.0473 -26.2041)")

        assert result.confidence == "medium"
        assert result.ok

    def test_outside_national_bounds(self):
        """국가 경계 밖이면 좌표 없음"""
        result = extract_from_postgis_point("POINT(0 0)")

        assert result.coordinates is None
        assert result.confidence == "low"
        assert "outside national bounds" in result.error

    @pytest.mark.parametrize("value", [None, "", "LINESTRING(1 2, 3 4)", "POINT()", "garbage", 42])
    def test_invalid_input_returns_failure(self, value):
        """잘못된 입력은 예외 없이 실패 결과"""
        result = extract_from_postgis_point(value)

        assert isinstance(result, CoordinateResult)
        assert result.coordinates is None
        assert result.error

    def test_non_string_objects_are_stringified(self):
        """문자열이 아닌 객체는 str()로 변환 후 해석"""
        class Geometry:
            def __str__(self):
                return "SRID=4326;POINT(27.9388 -26.3052)"

        result = extract_from_postgis_point(Geometry())

        assert result.coordinates == TAXI_RANK
        assert result.confidence == "high"

    def test_bytes_are_decoded(self):
        result = extract_from_postgis_point(b"POINT(27.9388 -26.3052)")

        assert result.coordinates == TAXI_RANK

    @given(st.one_of(st.text(), st.binary(), st.none(), st.integers()))
    def test_never_raises(self, value):
        """임의 입력에도 예외를 던지지 않음"""
        result = extract_from_postgis_point(value)
        assert isinstance(result, CoordinateResult)

    @given(
        lat=st.floats(min_value=-26.32, max_value=-26.29, allow_nan=False),
        lon=st.floats(min_value=27.92, max_value=27.96, allow_nan=False),
    )
    def test_local_points_resolve_exactly(self, lat, lon):
        """지역 경계 안의 모든 점은 정확히 high로 해석"""
        result = extract_from_postgis_point(f"POINT({lon!r} {lat!r})")

        assert result.confidence == "high"
        assert result.coordinates.latitude == lat
        assert result.coordinates.longitude == lon


class TestDirectFields:
    """직접 필드 추출 테스트"""

    def test_numeric_fields(self):
        result = extract_from_direct_fields({"latitude": -26.3052, "longitude": 27.9388})

        assert result.coordinates == TAXI_RANK
        assert result.source == "direct_fields"

    def test_numeric_strings(self):
        result = extract_from_direct_fields({"latitude": " -26.3052 ", "longitude": "27.9388"})

        assert result.coordinates == TAXI_RANK

    @pytest.mark.parametrize("lat, lon", [
        ("abc", "27.9"),
        ("nan", "27.9"),
        (True, 27.9),
        ([1], 27.9),
    ])
    def test_invalid_values(self, lat, lon):
        result = extract_from_direct_fields({"latitude": lat, "longitude": lon})

        assert result.coordinates is None
        assert "Invalid coordinate values" in result.error

    def test_missing_field(self):
        result = extract_from_direct_fields({"latitude": -26.3})

        assert result.coordinates is None
        assert result.error == "Missing latitude or longitude fields"

    def test_empty_record(self):
        assert extract_from_direct_fields({}).error == "No data provided"
        assert extract_from_direct_fields(None).error == "No data provided"


class TestGeoJson:
    """GeoJSON 추출 테스트"""

    def test_point_object(self):
        result = extract_from_geojson({"type": "Point", "coordinates": [27.9388, -26.3052]})

        assert result.coordinates == TAXI_RANK
        assert result.source == "geojson"

    def test_point_json_string(self):
        result = extract_from_geojson('{"type": "Point", "coordinates": [27.9388, -26.3052]}')

        assert result.coordinates == TAXI_RANK

    @pytest.mark.parametrize("value", [
        {"type": "Polygon", "coordinates": [[0, 0]]},
        {"type": "Point", "coordinates": [27.9]},
        {"type": "Point", "coordinates": ["27.9", "-26.3"]},
        "{not json",
        None,
    ])
    def test_invalid_geojson(self, value):
        result = extract_from_geojson(value)

        assert result.coordinates is None
        assert result.error


class TestAreaFallback:
    """지명 사전 대체 테스트"""

    def test_matches_place_in_text(self):
        result = extract_from_area_fallback({"location_area": "Near the Taxi Rank"})

        assert result.coordinates == TAXI_RANK
        assert result.confidence == "medium"
        assert result.original_data["matched_area"] == "taxi rank"

    def test_word_boundary_prefers_exact_extension(self):
        """"extension 12"가 "extension 1"로 잘못 매칭되지 않음"""
        result = extract_from_area_fallback({"location_address": "Corner house, Extension 12"})

        assert result.coordinates == GAZETTEER["extension 12"]

    def test_longest_key_wins(self):
        result = extract_from_area_fallback({"location_address": "Eldorado High School gate"})

        assert result.original_data["matched_area"] == "eldorado high school"

    def test_abbreviated_extension(self):
        result = extract_from_area_fallback({"location_address": "ext. 4 park"})

        assert result.coordinates == GAZETTEER["extension 4"]

    def test_custom_gazetteer(self):
        places = {"the big tree": Coordinates(latitude=-26.31, longitude=27.93)}
        result = extract_from_area_fallback({"location": "under the big tree"}, places)

        assert result.coordinates == places["the big tree"]

    def test_no_match(self):
        result = extract_from_area_fallback({"location_address": "somewhere unknown"})

        assert result.coordinates is None
        assert result.error == "No matching areas found in location text"

    def test_no_text(self):
        result = extract_from_area_fallback({"id": "x"})

        assert result.error == "No location text available for area matching"


class TestResolveCoordinates:
    """우선순위 해석 테스트"""

    def test_four_shapes_agree(self):
        """같은 장소를 네 가지 형태로 표현하면 같은 좌표로 해석"""
        shapes = [
            {"location_point": "SRID=4326;POINT(27.9388 -26.3052)"},
            {"latitude": "-26.3052", "longitude": "27.9388"},
            {"location_point": {"type": "Point", "coordinates": [27.9388, -26.3052]}},
            {"location_area": "taxi rank"},
        ]
        results = [resolve_coordinates(shape) for shape in shapes]

        assert [r.source for r in results] == ["postgis_point", "direct_fields", "geojson", "area_fallback"]
        assert all(r.coordinates == TAXI_RANK for r in results)
        assert [r.confidence for r in results] == ["high", "high", "high", "medium"]

    def test_srid_scenario_high_confidence(self):
        """SRID 접두사가 붙은 백엔드 행"""
        row = {
            "id": "abc",
            "location_point": "SRID=4326;POINT(27.9389 -26.3054)",
            "location_address": "Main Road",
        }
        result = resolve_coordinates(row)

        assert result.source == "postgis_point"
        assert result.confidence == "high"
        assert result.coordinates == Coordinates(latitude=-26.3054, longitude=27.9389)

    def test_out_of_bounds_point_falls_through_to_area(self):
        row = {"location_point": "POINT(0 0)", "location_address": "Eldorado Clinic"}
        result = resolve_coordinates(row)

        assert result.source == "area_fallback"
        assert result.coordinates == GAZETTEER["eldorado clinic"]

    def test_default_fallback(self):
        result = resolve_coordinates({"location_point": "POINT(0 0)"})

        assert result.source == "default_fallback"
        assert result.confidence == "low"
        assert result.coordinates == DEFAULT_COORDINATES
        assert result.error.startswith("All extraction methods failed")

    def test_no_data(self):
        result = resolve_coordinates(None)

        assert result.coordinates == DEFAULT_COORDINATES
        assert result.error == "No data provided, using default coordinates"

    def test_accepts_model(self, make_record):
        result = resolve_coordinates(make_record())

        assert result.coordinates == TAXI_RANK


class TestBatchAndStats:
    """배치 해석과 통계 테스트"""

    def test_batch_resolve_tags_index(self):
        results = batch_resolve([
            {"location_point": "POINT(27.9388 -26.3052)"},
            {"location_point": "POINT(0 0)"},
        ])

        assert len(results) == 2
        assert results[0].original_data["record_index"] == 0
        assert results[1].original_data["record_index"] == 1
        assert results[1].source == "default_fallback"

    def test_batch_resolve_rejects_non_sequence(self):
        assert batch_resolve("not a list") == []

    def test_extraction_stats(self):
        results = batch_resolve([
            {"location_point": "POINT(27.9388 -26.3052)"},
            {"location_area": "library"},
            {},
        ])
        stats = extraction_stats(results)

        assert stats["total"] == 3
        assert stats["successful"] == 3
        assert stats["by_source"] == {"postgis_point": 1, "area_fallback": 1, "default_fallback": 1}
        assert stats["by_confidence"]["high"] == 1
        assert math.isclose(stats["high_confidence_rate"], 100 / 3)
        assert stats["errors"] == 1

    def test_extraction_stats_empty(self):
        stats = extraction_stats([])

        assert stats["success_rate"] == 0.0
        assert stats["total"] == 0


class TestHelpers:
    """보조 함수 테스트"""

    def test_classify_bounds(self):
        assert classify_bounds(-26.3052, 27.9388) == "high"
        assert classify_bounds(-33.9249, 18.4241) == "medium"
        assert classify_bounds(51.5, -0.12) is None
        assert classify_bounds(float("nan"), 27.9) is None
        assert classify_bounds(-26.3, 200.0) is None

    def test_format_coordinates(self):
        assert format_coordinates(TAXI_RANK, precision=2) == "-26.31, 27.94"

    def test_distance_and_local_radius(self):
        assert distance_meters(TAXI_RANK, TAXI_RANK) == 0
        assert is_within_local_radius(TAXI_RANK)
        assert not is_within_local_radius(Coordinates(latitude=-33.9249, longitude=18.4241))
