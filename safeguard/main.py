# safeguard/main.py
import os, asyncio, signal
from typing import Optional
import uvicorn
from safeguard.settings import Settings
from safeguard.observability.health import create_app
from safeguard.observability.logging_setup import setup_logger, get_logger
from safeguard.adapters.storage import SQLiteKVStore, InMemoryKVStore, SafeKVStore
from safeguard.adapters.backend import PostgrestBackend
from safeguard.adapters.push import FcmRelayPushProvider, NullPushProvider
from safeguard.adapters.realtime import MqttEventSource
from safeguard.adapters.gazetteer import load_gazetteer
from safeguard.core.models import Coordinates
from safeguard.dispatch import NotificationEngine, PreferenceRepository
from safeguard.orchestrators import IncidentSync
from safeguard.realtime import RealtimeHub
from safeguard.state import IncidentStore, OptimisticUpdateManager

def _b(name, default=False): return os.getenv(name, str(default)).lower() in ("1","true","yes","on")

def _f(name, default):
    v = os.getenv(name)
    return float(v) if v not in (None, "") else default

def build_settings() -> Settings:
    s = Settings()

    # 백엔드
    s.backend.base_url = os.getenv("BACKEND_URL", s.backend.base_url)
    s.backend.api_key = os.getenv("BACKEND_API_KEY", s.backend.api_key)
    s.backend.access_token = os.getenv("BACKEND_ACCESS_TOKEN", s.backend.access_token)
    s.backend.user_id = os.getenv("BACKEND_USER_ID", s.backend.user_id)
    s.backend.reporter_id = os.getenv("REPORTER_ID", s.backend.reporter_id)
    s.backend.timeout_sec = int(os.getenv("BACKEND_TIMEOUT_SEC", s.backend.timeout_sec))

    # 실시간
    s.realtime.host = os.getenv("REALTIME_MQTT_HOST", s.realtime.host)
    s.realtime.port = int(os.getenv("REALTIME_MQTT_PORT", s.realtime.port))
    s.realtime.username = os.getenv("REALTIME_MQTT_USERNAME", s.realtime.username)
    s.realtime.password = os.getenv("REALTIME_MQTT_PASSWORD", s.realtime.password)
    s.realtime.client_id = os.getenv("REALTIME_MQTT_CLIENT_ID", s.realtime.client_id)
    s.realtime.tls = _b("REALTIME_MQTT_TLS", s.realtime.tls)
    s.realtime.topic_prefix = os.getenv("REALTIME_TOPIC_PREFIX", s.realtime.topic_prefix)
    s.realtime.max_attempts = int(os.getenv("REALTIME_MAX_ATTEMPTS", s.realtime.max_attempts))
    s.realtime.base_delay_sec = _f("REALTIME_BASE_DELAY_SEC", s.realtime.base_delay_sec)

    # 낙관적 업데이트
    s.optimistic.expiry_sec = _f("OPTIMISTIC_EXPIRY_SEC", s.optimistic.expiry_sec)
    s.optimistic.sweep_interval_sec = _f("OPTIMISTIC_SWEEP_SEC", s.optimistic.sweep_interval_sec)

    # 알림
    s.notifications.quota_per_hour = int(os.getenv("NOTIFY_QUOTA_PER_HOUR", s.notifications.quota_per_hour))
    s.notifications.app_origin = os.getenv("APP_ORIGIN", s.notifications.app_origin)
    s.notifications.push_device_token = os.getenv("PUSH_DEVICE_TOKEN", s.notifications.push_device_token)
    s.notifications.user_latitude = _f("USER_LATITUDE", s.notifications.user_latitude)
    s.notifications.user_longitude = _f("USER_LONGITUDE", s.notifications.user_longitude)

    # 저장소 / 지명
    s.storage.kv_path = os.getenv("KV_PATH", s.storage.kv_path)
    s.storage.persistent = _b("KV_PERSISTENT", s.storage.persistent)
    s.gazetteer.file_path = os.getenv("GAZETTEER_FILE", s.gazetteer.file_path)

    # 관측성
    s.observability.metrics_enabled = _b("METRICS_ENABLED", s.observability.metrics_enabled)
    s.observability.http_port = int(os.getenv("METRICS_PORT", s.observability.http_port))
    s.observability.log_level = os.getenv("LOG_LEVEL", s.observability.log_level)

    return s

async def start_http(settings: Settings, sync: Optional[IncidentSync] = None) -> Optional[asyncio.Task]:
    if not settings.observability.metrics_enabled: return None
    app = create_app(settings, sync)
    return asyncio.create_task(uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.observability.http_port, log_level="info")
    ).serve())

async def build_sync(s: Settings) -> IncidentSync:
    log = get_logger()

    # 저장소: 파일 저장 실패 시 메모리로 폴백
    kv = None
    if s.storage.persistent:
        sqlite_kv = SQLiteKVStore(s.storage.kv_path)
        try:
            await sqlite_kv.init()
            kv = sqlite_kv
        except Exception as e:
            log.warning(f"SQLite 저장소 초기화 실패, 메모리 저장소 사용: {e}")
    storage = SafeKVStore(kv or InMemoryKVStore())

    gazetteer = None
    if s.gazetteer.file_path:
        try:
            gazetteer = load_gazetteer(s.gazetteer.file_path)
        except (OSError, ValueError) as e:
            log.warning(f"지명 파일 로드 실패, 내장 사전 사용: {e}")

    backend = PostgrestBackend(
        base_url=s.backend.base_url,
        api_key=s.backend.api_key,
        access_token=s.backend.access_token,
        user_id=s.backend.user_id,
        timeout=s.backend.timeout_sec,
        max_retries=s.backend.max_retries,
    )

    if s.notifications.push_device_token:
        push = FcmRelayPushProvider(s.backend.base_url, s.backend.api_key, s.notifications.push_device_token)
    else:
        push = NullPushProvider()
        log.info("푸시 토큰 없음: 인앱 알림만 사용")

    engine = NotificationEngine(
        PreferenceRepository(storage, history_limit=s.notifications.history_limit),
        push,
        quota_limit=s.notifications.quota_per_hour,
        history_limit=s.notifications.history_limit,
        app_origin=s.notifications.app_origin,
    )
    user_location = None
    if s.notifications.user_latitude is not None and s.notifications.user_longitude is not None:
        user_location = Coordinates(latitude=s.notifications.user_latitude, longitude=s.notifications.user_longitude)
    await engine.initialize(user_location)

    source = MqttEventSource(
        s.realtime.host,
        s.realtime.port,
        topic_prefix=s.realtime.topic_prefix,
        username=s.realtime.username,
        password=s.realtime.password,
        tls=s.realtime.tls,
        client_id=s.realtime.client_id,
        keepalive=s.realtime.keepalive,
        qos=s.realtime.qos,
    )
    hub = RealtimeHub(
        source,
        max_attempts=s.realtime.max_attempts,
        base_delay=s.realtime.base_delay_sec,
        max_delay=s.realtime.max_delay_sec,
    )

    store = IncidentStore()
    optimistic = OptimisticUpdateManager(
        store,
        expiry_sec=s.optimistic.expiry_sec,
        sweep_interval_sec=s.optimistic.sweep_interval_sec,
    )
    return IncidentSync(
        store, optimistic, hub, engine, backend,
        reporter_id=s.backend.reporter_id,
        gazetteer=gazetteer,
    )

async def main():
    # 로거 초기화 (환경변수 LOG_LEVEL 우선, 없으면 설정 사용)
    initial_level = os.getenv("LOG_LEVEL", "INFO")
    setup_logger(initial_level)
    log = get_logger()

    s = build_settings()
    log.info("설정 로드 완료")

    sync = await build_sync(s)
    log.info("동기화 구성 완료")

    http_task = await start_http(s, sync)
    if http_task:
        log.info("HTTP 서버 시작됨")

    stop = asyncio.Future()
    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try: loop.add_signal_handler(sig, lambda: (not stop.done()) and stop.set_result(True))
            except NotImplementedError: pass
    except RuntimeError: pass

    sync.start()
    result = await sync.load_incidents()
    if not result.ok:
        log.warning(f"초기 사건 로드 실패: {result.error.kind}")

    await stop
    await sync.stop()
    await sync.backend.close()
    if isinstance(sync.engine.push, FcmRelayPushProvider):
        await sync.engine.push.close()
    if http_task: http_task.cancel()

def run() -> None:
    asyncio.run(main())

if __name__ == "__main__":
    run()
