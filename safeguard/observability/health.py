"""
HTTP endpoints for SafeGuard observability.

This module implements health, readiness, metrics, info and sync status
endpoints for monitoring and operational visibility.
"""

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time
from typing import Optional
from safeguard.settings import Settings
from safeguard.observability.logging_setup import get_logger
from safeguard.orchestrators.incident_sync import IncidentSync

log = get_logger("safeguard.http")

def create_app(settings: Settings, sync: Optional[IncidentSync] = None) -> FastAPI:
    """FastAPI 애플리케이션을 생성합니다."""
    app = FastAPI(
        title=settings.observability.service_name,
        version=settings.observability.build_version,
        description="SafeGuard realtime sync and notification service"
    )

    start_time = time.time()

    @app.get("/health")
    async def health():
        """헬스 체크 엔드포인트"""
        return JSONResponse({
            "status": "ok",
            "service": settings.observability.service_name,
            "timestamp": time.time()
        })

    @app.get("/ready")
    async def ready():
        """레디니스 체크 엔드포인트 (실시간 동기화 가능 여부)"""
        available = sync is not None and sync.hub.sync_available
        body = {
            "status": "ready" if available else "unavailable",
            "service": settings.observability.service_name,
            "sync_available": available,
            "timestamp": time.time()
        }
        return JSONResponse(body, status_code=200 if available else 503)

    @app.get("/metrics")
    async def metrics():
        """Prometheus 메트릭 엔드포인트"""
        if not settings.observability.metrics_enabled:
            raise HTTPException(status_code=503, detail="Metrics disabled")

        try:
            return Response(
                generate_latest(),
                media_type=CONTENT_TYPE_LATEST
            )
        except Exception as e:
            log.error(f"메트릭 생성 오류: {e}")
            raise HTTPException(status_code=500, detail="Metrics generation failed")

    @app.get("/info")
    async def info():
        """서비스 정보 엔드포인트"""
        uptime = time.time() - start_time
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "build_date": settings.observability.build_date,
            "uptime_seconds": int(uptime),
            "metrics_enabled": settings.observability.metrics_enabled,
            "log_level": settings.observability.log_level
        })

    @app.get("/sync")
    async def sync_status():
        """토픽별 구독 상태, 대기 중인 낙관적 업데이트, 읽지 않은 알림 수"""
        if sync is None:
            raise HTTPException(status_code=503, detail="sync not configured")
        return JSONResponse(sync.status())

    @app.get("/")
    async def root():
        """루트 엔드포인트"""
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "endpoints": {
                "health": "/health",
                "ready": "/ready",
                "metrics": "/metrics",
                "info": "/info",
                "sync": "/sync"
            }
        })

    return app
