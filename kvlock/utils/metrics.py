"""
Metrics collector menggunakan Prometheus.
File ini mengumpulkan data lock attempts, wait time, stale lock
reclamation, store errors, dan resource usage.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest
import time
import psutil


class MetricsCollector:
    """
    Class untuk mengumpulkan metrics kvlock.
    Menggunakan Prometheus format untuk monitoring.
    """

    def __init__(self):
        # Counter: setiap lock attempt, dilabel per variant dan hasil
        self.lock_attempts = Counter(
            'kvlock_lock_attempts_total',
            'Total number of lock acquisition attempts',
            ['variant', 'outcome']
        )

        # Histogram: berapa lama caller menunggu lock
        self.lock_wait = Histogram(
            'kvlock_lock_wait_seconds',
            'Time spent waiting for a lock in seconds',
            ['variant']
        )

        self.stale_reclaimed = Counter(
            'kvlock_stale_locks_reclaimed_total',
            'Number of stale lock records repaired'
        )

        self.store_errors = Counter(
            'kvlock_store_errors_total',
            'Number of failed store operations',
            ['operation']
        )

        # Gauge: lock yang sedang di-hold oleh process ini
        self.locks_held = Gauge(
            'kvlock_locks_held',
            'Number of locks currently held by this process'
        )

        # System metrics
        self.cpu_usage = Gauge('kvlock_cpu_usage_percent', 'CPU usage percentage')
        self.memory_usage = Gauge('kvlock_memory_usage_percent', 'Memory usage percentage')

    def record_attempt(self, variant: str, acquired: bool):
        """Record satu lock attempt"""
        outcome = 'acquired' if acquired else 'failed'
        self.lock_attempts.labels(variant=variant, outcome=outcome).inc()

    def record_wait(self, variant: str, duration: float):
        """
        Record waktu tunggu lock.

        Args:
            variant: Lock variant (polling, managed)
            duration: Wait duration in seconds
        """
        self.lock_wait.labels(variant=variant).observe(duration)

    def record_stale_reclaim(self):
        self.stale_reclaimed.inc()

    def record_store_error(self, operation: str):
        self.store_errors.labels(operation=operation).inc()

    def lock_held(self):
        self.locks_held.inc()

    def lock_released(self):
        self.locks_held.dec()

    def update_system_metrics(self):
        """Update CPU dan memory usage"""
        self.cpu_usage.set(psutil.cpu_percent())
        self.memory_usage.set(psutil.virtual_memory().percent)

    def get_metrics(self) -> bytes:
        """
        Export metrics dalam Prometheus format.
        Returns: Metrics data dalam bytes
        """
        self.update_system_metrics()
        return generate_latest()


# Context manager untuk measure wait time
class measure_time:
    """
    Context manager untuk mengukur execution time.

    Contoh penggunaan:
        with measure_time() as timer:
            await lock.acquire(...)
        print(f"Execution time: {timer.elapsed}s")
    """

    def __init__(self):
        self.start_time = None
        self.elapsed = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.monotonic() - self.start_time
        return False


# Singleton instance
metrics = MetricsCollector()
