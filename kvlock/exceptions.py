"""
Exception classes untuk kvlock.

Lock contention paths tidak pernah raise exception ke caller (hasilnya
bool / Optional). Exception di sini dipakai di boundary internal dan untuk
configuration errors yang harus fail fast.
"""


class KVLockError(Exception):
    """Base exception untuk semua kvlock errors."""
    pass


class StoreUnavailable(KVLockError):
    """Raised saat Redis tidak bisa dihubungi atau operation timeout."""

    def __init__(self, operation: str, cause: Exception = None):
        super().__init__(f"Store operation '{operation}' failed: {cause}")
        self.operation = operation
        self.cause = cause


class MalformedLockRecord(KVLockError, ValueError):
    """Raised saat isi lock record tidak bisa di-parse."""

    def __init__(self, raw: str):
        super().__init__(f"Malformed lock record: {raw!r}")
        self.raw = raw


class InvalidLockConfig(KVLockError, ValueError):
    """Raised untuk configuration yang tidak valid (negative lease, dst)."""
    pass


class LockAcquisitionError(KVLockError):
    """Raised oleh blocking / context-manager surface saat lock tidak didapat."""

    def __init__(self, key: str, reason: str = "Lock acquisition failed"):
        super().__init__(f"{reason}: {key}")
        self.key = key
        self.reason = reason
