"""
Gazetteer file loader for SafeGuard.

Loads additional place names for the area-name fallback of the
coordinate resolver from a .csv or .xlsx file with name, latitude and
longitude columns. Rows outside the national bounds are skipped.
"""

import csv
import os
from typing import Dict, List, Optional, Sequence

import openpyxl

from safeguard.core.coordinates import GAZETTEER, NATIONAL_BOUNDS
from safeguard.core.models import Coordinates
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.gazetteer")

NAME_COLUMNS = ("name", "place", "area")
LAT_COLUMNS = ("lat", "latitude")
LON_COLUMNS = ("lon", "lng", "longitude")

def _find_column(headers: Sequence[str], candidates: Sequence[str], label: str) -> int:
    lowered = [str(h).strip().lower() if h is not None else "" for h in headers]
    for candidate in candidates:
        if candidate in lowered:
            return lowered.index(candidate)
    raise ValueError(f"{label} 컬럼을 찾을 수 없습니다. 사용 가능한 컬럼: {list(headers)}")

def _rows_from_csv(path: str) -> List[List]:
    with open(path, newline="", encoding="utf-8") as f:
        return [row for row in csv.reader(f)]

def _rows_from_xlsx(path: str) -> List[List]:
    wb = openpyxl.load_workbook(path, data_only=True, read_only=True)
    try:
        ws = wb.active
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()

def load_gazetteer(path: str, base: Optional[Dict[str, Coordinates]] = None) -> Dict[str, Coordinates]:
    """
    지명 파일을 읽어 지명 사전을 만듭니다.

    Args:
        path: .csv 또는 .xlsx 파일 경로
        base: 병합할 기본 사전 (None이면 내장 사전)

    Returns:
        소문자 지명 -> 좌표 사전 (파일 항목이 기본 사전을 덮어씀)

    Raises:
        ValueError: 지원하지 않는 형식이거나 필수 컬럼이 없는 경우
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == ".csv":
        rows = _rows_from_csv(path)
    elif ext in (".xlsx", ".xlsm"):
        rows = _rows_from_xlsx(path)
    else:
        raise ValueError(f"지원하지 않는 지명 파일 형식: {ext}")

    gazetteer = dict(GAZETTEER if base is None else base)
    if not rows:
        log.warning(f"지명 파일이 비어 있음: {path}")
        return gazetteer

    headers = rows[0]
    name_idx = _find_column(headers, NAME_COLUMNS, "지명")
    lat_idx = _find_column(headers, LAT_COLUMNS, "위도")
    lon_idx = _find_column(headers, LON_COLUMNS, "경도")

    loaded = 0
    for row_num, row in enumerate(rows[1:], start=2):
        if len(row) <= max(name_idx, lat_idx, lon_idx):
            continue
        name = row[name_idx]
        if not name:
            continue
        try:
            lat = float(row[lat_idx])
            lon = float(row[lon_idx])
        except (TypeError, ValueError):
            log.warning(f"행 {row_num} 좌표 변환 실패: {name}")
            continue
        if not NATIONAL_BOUNDS.contains(lat, lon):
            log.warning(f"행 {row_num} 좌표가 국가 범위 밖: {name} ({lat}, {lon})")
            continue
        gazetteer[str(name).strip().lower()] = Coordinates(latitude=lat, longitude=lon)
        loaded += 1

    log.info(f"지명 {loaded}개 로드: {path}")
    return gazetteer
