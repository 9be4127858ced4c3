"""
Backend API port interface.

This module defines the protocol for the remote incident API. Every
operation returns an ApiResult instead of raising.
"""

from typing import Optional, Protocol

from safeguard.core.models import ApiResult, VerificationType

class BackendPort(Protocol):
    """백엔드 API 포트 인터페이스"""

    async def create_incident(self, payload: dict) -> ApiResult:
        """
        사건을 생성합니다.

        Args:
            payload: 삽입할 행 데이터

        Returns:
            data에 생성된 레코드 딕셔너리
        """
        ...

    async def insert_verification(
        self,
        incident_id: str,
        verification_type: VerificationType,
        notes: Optional[str] = None
    ) -> ApiResult:
        ...

    async def get_incident(self, incident_id: str) -> ApiResult:
        ...

    async def get_incidents(self, limit: int = 50) -> ApiResult:
        ...

    async def get_incidents_near_location(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float = 5000,
        limit: int = 50
    ) -> ApiResult:
        ...

    async def get_incident_verification_stats(self, incident_id: str) -> ApiResult:
        ...
