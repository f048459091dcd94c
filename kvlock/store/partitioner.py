"""
Key Partitioner untuk compact storage di Redis.

Redis menyimpan hash dengan encoding compact (ziplist / listpack) selama:
- jumlah field di hash <= hash-max-ziplist-entries (default 512)
- panjang setiap field dan value <= hash-max-ziplist-value (default 64 bytes)

Lewat dari itu, Redis pindah ke encoding hashtable yang jauh lebih boros memory.
Partitioner ini memetakan key space yang tidak terbatas ke sejumlah bucket
(masing-masing satu Redis hash) supaya setiap bucket tetap di bawah threshold.
"""

import math
import zlib
from typing import Tuple

from ..exceptions import InvalidLockConfig

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000

# 31, 131, 1313, 13131 ... makin besar seed, makin tersebar hash-nya
BKDR_SEED = 31


def recommended_bucket_count(expected_keys: int, per_bucket: int = 512, headroom: float = 1.25) -> int:
    """
    Hitung jumlah bucket untuk expected_keys.

    Contoh: 10 juta key / 512 = 19531 bucket minimum. Karena hash tidak
    terdistribusi sempurna, tambahkan headroom lalu bulatkan ke atas
    ke kelipatan 1000.
    """
    if expected_keys <= 0 or per_bucket <= 0:
        raise InvalidLockConfig("expected_keys and per_bucket must be positive")
    minimum = math.ceil(expected_keys / per_bucket)
    return int(math.ceil(minimum * headroom / 1000.0) * 1000)


class KeyPartitioner:
    """
    Deterministic mapping dari logical key ke (bucket, field).

    Jika bucketing disabled, semua key dipakai apa adanya (identity mapping).
    """

    def __init__(self, enabled: bool = False, bucket_count: int = 25000):
        """
        Args:
            enabled: Aktifkan bucketing
            bucket_count: Jumlah bucket, harus > 0
        """
        if bucket_count <= 0:
            raise InvalidLockConfig(f"bucket_count must be positive, got {bucket_count}")
        self.enabled = enabled
        self.bucket_count = bucket_count

    @classmethod
    def from_config(cls, config) -> 'KeyPartitioner':
        return cls(enabled=config.bucketing_enabled, bucket_count=config.effective_bucket_count)

    @classmethod
    def disabled(cls) -> 'KeyPartitioner':
        return cls(enabled=False)

    def bucket_of(self, key: str) -> str:
        """
        Tentukan bucket untuk key.

        Algorithm:
        1. CRC32 dari UTF-8 bytes key (unsigned 32-bit)
        2. Modulo bucket_count
        3. Return sebagai decimal string
        """
        if not self.enabled:
            return key
        checksum = zlib.crc32(key.encode('utf-8')) & _INT32_MASK
        return str(checksum % self.bucket_count)

    def field_of(self, inner_key: str) -> str:
        """
        BKDR hash untuk field di dalam bucket.

        Accumulator wrap sebagai signed 32-bit integer, jadi hasilnya bisa
        negatif. Collision antar field akan overwrite value sebelumnya.
        """
        if not self.enabled:
            return inner_key
        hash_value = 0
        for code_unit in _utf16_code_units(inner_key):
            hash_value = (hash_value * BKDR_SEED + code_unit) & _INT32_MASK
        if hash_value & _INT32_SIGN:
            hash_value -= 1 << 32
        return str(hash_value)

    def locate(self, key: str, inner_key: str) -> Tuple[str, str]:
        """Return (bucket, field) untuk pasangan key dan inner key"""
        return self.bucket_of(key), self.field_of(inner_key)

    def __repr__(self):
        return f"KeyPartitioner(enabled={self.enabled}, bucket_count={self.bucket_count})"


def _utf16_code_units(text: str):
    # Karakter di luar BMP dihitung sebagai surrogate pair
    data = text.encode('utf-16-be', 'surrogatepass')
    for i in range(0, len(data), 2):
        yield (data[i] << 8) | data[i + 1]


# Test code
if __name__ == "__main__":
    partitioner = KeyPartitioner(enabled=True, bucket_count=recommended_bucket_count(10_000_000))
    print(partitioner)
    for key in ['user:1', 'user:2', 'order:42']:
        print(f"{key} -> bucket {partitioner.bucket_of(key)}, field {partitioner.field_of(key)}")
