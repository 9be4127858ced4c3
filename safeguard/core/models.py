"""
Core domain models for SafeGuard.

This module defines the core domain models using Pydantic v2
for type safety and validation.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field

# 심각도 타입 정의 (낮음 -> 높음)
Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_ORDER = {
    "low": 0,
    "medium": 1,
    "high": 2,
    "critical": 3
}

IncidentType = Literal[
    "theft",
    "suspicious_activity",
    "gang_activity",
    "drugs",
    "vandalism",
    "resolved",
    "other",
]

VerificationType = Literal["confirm", "dispute", "additional_info"]

CoordinateSource = Literal[
    "postgis_point",
    "direct_fields",
    "geojson",
    "area_fallback",
    "default_fallback",
]

Confidence = Literal["high", "medium", "low"]

NotificationType = Literal[
    "incident",
    "safety_alert",
    "community_event",
    "route_update",
    "verification",
]

Priority = Literal["low", "medium", "high", "urgent"]

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    백엔드 타임스탬프를 aware datetime으로 변환합니다.

    "2025-06-01 10:00:00.123+00" 같은 PostgreSQL 출력도 허용하며,
    시간대가 없으면 UTC로 간주합니다.

    Returns:
        datetime 또는 None (파싱 불가)
    """
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (TypeError, ValueError):
        try:
            parsed = date_parser.parse(value)
        except (TypeError, ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Coordinates(BaseModel):
    """위도/경도 좌표"""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class CoordinateResult(BaseModel):
    """좌표 해석 결과 (실패해도 예외 대신 error 필드로 반환)"""
    coordinates: Optional[Coordinates] = None
    source: CoordinateSource
    confidence: Confidence
    original_data: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.coordinates is not None and self.confidence in ("high", "medium")


class IncidentRecord(BaseModel):
    """
    신고된 안전 사건 레코드.

    frozen 모델이므로 스토어에는 항상 레코드 전체를 교체하는 방식으로만 반영됩니다.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    reporter_id: Optional[str] = None
    incident_type: IncidentType = "other"
    severity: Severity = "medium"
    title: str
    description: Optional[str] = None
    location_point: Optional[Any] = None
    location_address: str = ""
    location_area: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    extracted_coordinates: Optional[Coordinates] = None
    coordinate_extraction: Optional[CoordinateResult] = None
    verification_count: int = Field(default=0, ge=0)
    is_verified: bool = False
    is_urgent: bool = False
    is_resolved: bool = False
    resolved_at: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)
    distance_meters: Optional[float] = None

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith("temp-")


class IncidentDraft(BaseModel):
    """사용자가 작성한 신고 입력값"""
    incident_type: IncidentType
    severity: Severity
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location_address: str
    location_area: Optional[str] = None
    latitude: float
    longitude: float
    is_urgent: bool = False
    media_urls: List[str] = Field(default_factory=list)


class ChangeEvent(BaseModel):
    """백엔드 토픽 구독으로 전달되는 변경 이벤트"""
    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeType = Field(alias="eventType")
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)


class NotificationLocation(BaseModel):
    """알림의 지리적 기준점"""
    latitude: float
    longitude: float
    address: str = "Unknown location"


class NotificationEvent(BaseModel):
    """후보 또는 전달된 알림"""
    id: str
    type: NotificationType
    title: str
    message: str
    priority: Priority = "medium"
    location: Optional[NotificationLocation] = None
    timestamp: str = Field(default_factory=utcnow_iso)
    read: bool = False
    action_url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class QuietHours(BaseModel):
    """방해 금지 시간대 (HH:MM, 자정을 넘길 수 있음)"""
    enabled: bool = False
    start: str = Field(default="22:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(default="07:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


class NotificationPreferences(BaseModel):
    """사용자 알림 설정"""
    incidents: bool = True
    safety_alerts: bool = True
    community_events: bool = True
    route_updates: bool = False
    verifications: bool = True
    push_enabled: bool = False
    sound_enabled: bool = True
    vibration_enabled: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    location_radius: float = Field(default=2000.0, gt=0)


class MutationError(BaseModel):
    """분류된 변경(mutation) 실패"""
    kind: str
    message: str
    status: Optional[int] = None
    code: Optional[str] = None
    detail: Optional[str] = None


class ApiResult(BaseModel):
    """{data, error} 형태의 균일한 결과"""
    data: Optional[Any] = None
    error: Optional[MutationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
