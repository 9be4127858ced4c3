"""
PostgREST backend client for SafeGuard.

This module talks to the incident backend's REST interface. Queries are
retried with backoff on transient failures; mutations are sent exactly
once. Every call returns an ApiResult and never raises.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from safeguard.common.retry import retry_with_backoff
from safeguard.core.errors import BackendError, classify_mutation_error
from safeguard.core.models import ApiResult, VerificationType
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.backend")

class TransientBackendError(BackendError):
    """재시도 가능한 백엔드 오류 (5xx)"""

RETRYABLE = (aiohttp.ClientConnectionError, asyncio.TimeoutError, TransientBackendError)

class PostgrestBackend:
    """PostgREST 백엔드 클라이언트"""

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 access_token: Optional[str] = None,
                 user_id: Optional[str] = None,
                 timeout: int = 10,
                 max_retries: int = 3):
        """
        초기화합니다.

        Args:
            base_url: 백엔드 기본 URL
            api_key: 공개 API 키
            access_token: 사용자 액세스 토큰 (없으면 api_key로 인증)
            user_id: 인증된 사용자 id (검증 기록에 필요)
            timeout: 요청 타임아웃 (초)
            max_retries: 조회 재시도 횟수
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.access_token = access_token
        self.user_id = user_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.session: Optional[aiohttp.ClientSession] = None
        self._profile_id: Optional[str] = None

        log.info(f"백엔드 클라이언트 초기화됨: {self.base_url}")

    async def __aenter__(self):
        """비동기 컨텍스트 매니저 진입"""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """비동기 컨텍스트 매니저 종료"""
        await self.close()

    async def _ensure_session(self) -> None:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def set_auth(self, access_token: Optional[str], user_id: Optional[str]) -> None:
        """로그인 사용자를 변경합니다. 열린 세션은 닫고 다음 요청에서 새로 엽니다."""
        self.access_token = access_token
        self.user_id = user_id
        self._profile_id = None
        await self.close()

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        API 요청을 한 번 수행합니다.

        Raises:
            BackendError: 2xx가 아닌 응답
        """
        await self._ensure_session()
        url = f"{self.base_url}{endpoint}"

        async with self.session.request(method, url, **kwargs) as response:
            if 200 <= response.status < 300:
                if response.status == 204:
                    return None
                return await response.json(content_type=None)

            body: Dict[str, Any] = {}
            try:
                parsed = await response.json(content_type=None)
                if isinstance(parsed, dict):
                    body = parsed
            except (aiohttp.ContentTypeError, ValueError):
                pass

            message = body.get("message") or body.get("error") or response.reason or "request failed"
            error_cls = TransientBackendError if response.status >= 500 else BackendError
            raise error_cls(response.status, message, code=body.get("code"), detail=body.get("details"))

    async def _query(self, operation: str, method: str, endpoint: str, **kwargs) -> ApiResult:
        try:
            data = await retry_with_backoff(
                lambda: self._request(method, endpoint, **kwargs),
                max_retries=self.max_retries,
                retry_on=RETRYABLE,
            )
        except Exception as e:
            error = classify_mutation_error(e)
            metrics.mutation_failures.labels(operation=operation, kind=error.kind).inc()
            log.error(f"백엔드 조회 실패 {operation}: {error.kind} ({error.detail})")
            return ApiResult(error=error)
        return ApiResult(data=data)

    async def _mutate(self, operation: str, method: str, endpoint: str, **kwargs) -> ApiResult:
        try:
            data = await self._request(method, endpoint, **kwargs)
        except Exception as e:
            error = classify_mutation_error(e)
            metrics.mutation_failures.labels(operation=operation, kind=error.kind).inc()
            log.warning(f"백엔드 변경 실패 {operation}: {error.kind} ({error.detail})")
            return ApiResult(error=error)
        return ApiResult(data=data)

    @staticmethod
    def _single(result: ApiResult) -> ApiResult:
        if not result.ok:
            return result
        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        return ApiResult(data=data)

    async def create_incident(self, payload: dict) -> ApiResult:
        result = await self._mutate(
            "create_incident", "POST", "/rest/v1/incidents",
            json=[payload], headers={"Prefer": "return=representation"},
        )
        return self._single(result)

    async def _resolve_profile_id(self) -> Optional[str]:
        if self._profile_id:
            return self._profile_id
        if not self.user_id:
            return None
        result = self._single(await self._query(
            "get_profile", "GET", "/rest/v1/profiles",
            params={"select": "id", "user_id": f"eq.{self.user_id}"},
        ))
        if result.ok and isinstance(result.data, dict):
            self._profile_id = result.data.get("id")
        return self._profile_id

    async def insert_verification(
        self,
        incident_id: str,
        verification_type: VerificationType,
        notes: Optional[str] = None
    ) -> ApiResult:
        """
        사건 검증을 기록합니다.

        검증 횟수 갱신은 서버 트리거가 처리합니다.
        """
        profile_id = await self._resolve_profile_id()
        if profile_id is None:
            error = classify_mutation_error(status=401, message="Must be authenticated")
            return ApiResult(error=error)

        row = {
            "incident_id": incident_id,
            "verifier_id": profile_id,
            "verification_type": verification_type,
            "notes": notes,
        }
        result = await self._mutate(
            "insert_verification", "POST", "/rest/v1/incident_verifications",
            json=[row], headers={"Prefer": "return=representation"},
        )
        return self._single(result)

    async def has_user_verified(self, incident_id: str) -> ApiResult:
        profile_id = await self._resolve_profile_id()
        if profile_id is None:
            return ApiResult(data=False)
        result = await self._query(
            "has_user_verified", "GET", "/rest/v1/incident_verifications",
            params={"select": "id", "incident_id": f"eq.{incident_id}", "verifier_id": f"eq.{profile_id}"},
        )
        if not result.ok:
            return ApiResult(data=False, error=result.error)
        return ApiResult(data=bool(result.data))

    async def get_incident(self, incident_id: str) -> ApiResult:
        result = self._single(await self._query(
            "get_incident", "GET", "/rest/v1/incidents",
            params={"select": "*", "id": f"eq.{incident_id}"},
        ))
        if result.ok and result.data is None:
            return ApiResult(error=classify_mutation_error(status=404, message=f"incident {incident_id} not found"))
        return result

    async def get_incidents(self, limit: int = 50) -> ApiResult:
        return await self._query(
            "get_incidents", "GET", "/rest/v1/incidents",
            params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
        )

    async def get_incidents_near_location(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float = 5000,
        limit: int = 50
    ) -> ApiResult:
        return await self._query(
            "get_incidents_near_location", "POST", "/rest/v1/rpc/get_incidents_near_location",
            json={"lat": latitude, "lng": longitude, "radius_meters": radius_meters, "result_limit": limit},
        )

    async def get_incident_verification_stats(self, incident_id: str) -> ApiResult:
        result = await self._query(
            "get_incident_verification_stats", "POST", "/rest/v1/rpc/get_incident_verification_stats",
            json={"incident_uuid": incident_id},
        )
        return self._single(result)
