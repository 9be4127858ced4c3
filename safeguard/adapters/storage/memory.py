"""
In-memory key/value store.

Used when no persistent storage is configured and in tests.
"""

from typing import Dict, Optional

class InMemoryKVStore:
    """메모리 키-값 저장소"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
