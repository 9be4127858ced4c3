# safeguard/settings.py
from __future__ import annotations
from pydantic import BaseModel, Field

class BackendConfig(BaseModel):
    base_url: str = "http://localhost:54321"
    api_key: str = ""
    access_token: str | None = None
    user_id: str | None = None
    reporter_id: str | None = None            # 로그인 사용자 프로필 id
    timeout_sec: int = 10
    max_retries: int = 3

class RealtimeConfig(BaseModel):
    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    tls: bool = False
    client_id: str | None = None
    keepalive: int = 30
    qos: int = 1
    topic_prefix: str = "safeguard"
    max_attempts: int = 5
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0

class OptimisticConfig(BaseModel):
    expiry_sec: float = 30.0
    sweep_interval_sec: float = 5.0

class NotificationConfig(BaseModel):
    quota_per_hour: int = 20
    history_limit: int = 50
    app_origin: str | None = None
    push_device_token: str | None = None      # 없으면 인앱 알림만 사용
    user_latitude: float | None = None
    user_longitude: float | None = None

class StorageConfig(BaseModel):
    kv_path: str = "/data/safeguard.db"
    persistent: bool = True

class GazetteerConfig(BaseModel):
    file_path: str | None = None              # .csv | .xlsx

class Observability(BaseModel):
    http_port: int = 8099
    metrics_enabled: bool = True
    service_name: str = "SafeGuard-Sync"
    build_version: str = "0.3.0"
    build_date: str = "2025-06-26"
    log_level: str = "INFO"

class Settings(BaseModel):
    # 하위 섹션 (기본값/팩토리로 누락 방지)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    optimistic: OptimisticConfig = Field(default_factory=OptimisticConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    gazetteer: GazetteerConfig = Field(default_factory=GazetteerConfig)
    observability: Observability = Field(default_factory=Observability)
