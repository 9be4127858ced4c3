"""
MQTT event source for SafeGuard.

Each subscribed topic gets its own aiomqtt connection running in a task.
Messages are JSON change events ({"eventType", "new", "old"}). Connection
outcomes are reported through the status callback using the backend's
channel status vocabulary.
"""

import asyncio
import json
import ssl
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from aiomqtt import Client, MqttError
from jsonschema import validate
from jsonschema.exceptions import ValidationError

from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.mqtt")

SCHEMA = json.loads((Path(__file__).parent / "change_event_schema.json").read_text(encoding="utf-8"))

class MqttEventSource:
    """MQTT 기반 실시간 이벤트 소스"""

    def __init__(
        self,
        host: str,
        port: int = 1883,
        *,
        topic_prefix: str = "safeguard",
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: bool = False,
        client_id: Optional[str] = None,
        keepalive: int = 30,
        qos: int = 1,
        connect_timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.username = username
        self.password = password
        self.tls = tls
        self.client_id = client_id
        self.keepalive = keepalive
        self.qos = qos
        self.connect_timeout = connect_timeout

    def full_topic(self, topic: str) -> str:
        return f"{self.topic_prefix}/{topic}" if self.topic_prefix else topic

    def _client(self, topic: str) -> Client:
        tls_context = ssl.create_default_context() if self.tls else None
        identifier = f"{self.client_id}-{topic}" if self.client_id else None
        return Client(
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            identifier=identifier,
            keepalive=self.keepalive,
            tls_context=tls_context,
            timeout=self.connect_timeout,
        )

    @staticmethod
    def decode(payload: Any) -> Optional[Dict[str, Any]]:
        """
        MQTT 페이로드를 변경 이벤트 딕셔너리로 변환합니다.

        Returns:
            이벤트 딕셔너리 또는 None (디코딩 불가)
        """
        try:
            if isinstance(payload, (bytes, bytearray)):
                payload = payload.decode("utf-8")
            data = json.loads(payload)
        except UnicodeDecodeError as e:
            log.error(f"문자열 디코딩 오류: {e}")
            return None
        except (TypeError, ValueError) as e:
            log.error(f"JSON 파싱 오류: {e}")
            return None

        try:
            validate(instance=data, schema=SCHEMA)
        except ValidationError as e:
            log.warning(f"변경 이벤트 스키마 검증 실패: {e.message}")
            return None
        return data

    def subscribe(
        self,
        topic: str,
        on_event: Callable[[Dict[str, Any]], None],
        on_status: Callable[[str, Any], None]
    ) -> Callable[[], None]:
        task = asyncio.get_running_loop().create_task(self._run(topic, on_event, on_status))

        def _unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return _unsubscribe

    async def _run(
        self,
        topic: str,
        on_event: Callable[[Dict[str, Any]], None],
        on_status: Callable[[str, Any], None]
    ) -> None:
        full_topic = self.full_topic(topic)
        try:
            async with self._client(topic) as client:
                await client.subscribe(full_topic, qos=self.qos)
                log.info(f"토픽 구독됨: {full_topic}")
                on_status("SUBSCRIBED", None)

                async for message in client.messages:
                    event = self.decode(message.payload)
                    if event is not None:
                        on_event(event)

            log.warning(f"MQTT 연결 종료됨: {full_topic}")
            on_status("CLOSED", None)
        except asyncio.CancelledError:
            log.info(f"MQTT 구독 취소: {full_topic}")
            raise
        except asyncio.TimeoutError as e:
            log.error(f"MQTT 연결 시간 초과: {full_topic}")
            on_status("TIMED_OUT", e)
        except MqttError as e:
            log.error(f"MQTT 오류: {full_topic}: {e}")
            on_status("CHANNEL_ERROR", e)
        except Exception as e:
            log.error(f"MQTT 구독 중 예상치 못한 오류: {full_topic}: {e}")
            on_status("CHANNEL_ERROR", e)
