"""
Failure-tolerant storage wrapper for SafeGuard.

SafeKVStore wraps any KVStorePort and reports failures as data, so
callers keep working (without persistence) when storage is unavailable.
Values are JSON-serialized on the way in and parsed on the way out.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from safeguard.ports.kvstore import KVStorePort

log = get_logger("safeguard.kv.safe")

@dataclass
class StorageResult:
    """저장소 작업 결과"""
    ok: bool
    value: Any = None
    error: Optional[str] = None

class SafeKVStore:
    """예외를 던지지 않는 키-값 저장소 래퍼"""

    def __init__(self, inner: Optional[KVStorePort]):
        """
        초기화합니다.

        Args:
            inner: 실제 저장소 (None이면 모든 작업이 실패 결과를 반환)
        """
        self.inner = inner

    @property
    def available(self) -> bool:
        return self.inner is not None

    def _failed(self, operation: str, key: str, error: Exception) -> StorageResult:
        metrics.storage_failures.labels(operation=operation).inc()
        log.warning(f"저장소 {operation} 실패: {key}: {error}")
        return StorageResult(ok=False, error=str(error))

    async def get_json(self, key: str, default: Any = None) -> StorageResult:
        """
        JSON 값을 조회합니다.

        값이 없으면 ok=True, value=default를 반환합니다.
        """
        if self.inner is None:
            return StorageResult(ok=False, value=default, error="storage unavailable")
        try:
            raw = await self.inner.get(key)
        except Exception as e:
            result = self._failed("get", key, e)
            result.value = default
            return result

        if raw is None:
            return StorageResult(ok=True, value=default)
        try:
            return StorageResult(ok=True, value=json.loads(raw))
        except (TypeError, ValueError) as e:
            result = self._failed("decode", key, e)
            result.value = default
            return result

    async def set_json(self, key: str, value: Any) -> StorageResult:
        if self.inner is None:
            return StorageResult(ok=False, error="storage unavailable")
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            return self._failed("encode", key, e)
        try:
            await self.inner.set(key, raw)
        except Exception as e:
            return self._failed("set", key, e)
        return StorageResult(ok=True, value=value)

    async def remove(self, key: str) -> StorageResult:
        if self.inner is None:
            return StorageResult(ok=False, error="storage unavailable")
        try:
            await self.inner.remove(key)
        except Exception as e:
            return self._failed("remove", key, e)
        return StorageResult(ok=True)
