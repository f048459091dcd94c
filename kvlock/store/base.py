"""Protocol untuk key-value store yang dipakai oleh locks dan bucketing."""

from typing import Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Operasi atomic yang dibutuhkan dari store (satu round trip per call)."""

    async def set_if_absent(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """Set key hanya jika belum ada. ttl dalam seconds."""
        ...

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        """Return True jika tepat satu entry terhapus."""
        ...

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Compare-and-delete: hapus key hanya jika value == expected."""
        ...

    async def expire(self, key: str, seconds: float) -> bool:
        ...

    async def hash_get(self, key: str, field: str) -> Optional[str]:
        ...

    async def hash_put(self, key: str, field: str, value: str) -> bool:
        ...

    async def hash_put_all(self, key: str, mapping: Dict[str, str], ttl: Optional[float] = None) -> bool:
        ...

    async def hash_delete(self, key: str, *fields: str) -> int:
        ...

    def unpartitioned(self) -> 'KeyValueStore':
        """View dari store yang sama tanpa bucketing (untuk lock keys)."""
        ...
