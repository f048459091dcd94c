"""
Load testing scenarios untuk LockNode menggunakan Locust.

Cara menjalankan:
  NODE_PORT=5000 python -m kvlock node
  locust -f benchmarks/load_test_scenarios.py --host=http://localhost:5000
"""

from locust import HttpUser, task, between, events
import random
import time


class ContendedLockUser(HttpUser):
    """
    Simulate user yang berebut sedikit key (contention tinggi).
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.keys = [f"order:{i}" for i in range(5)]

    @task(5)
    def acquire_and_release(self):
        """Acquire dengan wait singkat, tahan sebentar, lalu release"""
        key = random.choice(self.keys)

        with self.client.post(
            "/api/lock/acquire",
            json={'key': key, 'wait': 1.0, 'lease': 5},
            name="/api/lock/acquire [contended]",
            catch_response=True
        ) as response:
            if response.status_code == 200:
                token = response.json()['token']
                response.success()
                time.sleep(random.uniform(0.05, 0.2))
                self.release_lock(key, token)
            elif response.status_code == 409:
                # Timeout karena contention bukan error
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")

    def release_lock(self, key, token):
        with self.client.post(
            "/api/lock/release",
            json={'key': key, 'token': token},
            catch_response=True
        ) as response:
            if response.status_code == 200:
                response.success()
            else:
                response.failure(f"Release failed: HTTP {response.status_code}")

    @task(1)
    def check_status(self):
        """Check lock status"""
        self.client.get("/api/lock/status")


class SpreadLockUser(HttpUser):
    """
    Simulate user dengan key tersebar (hampir tanpa contention).
    """
    wait_time = between(0.05, 0.3)

    def on_start(self):
        self.user_id = random.randint(1, 1_000_000)
        self.counter = 0

    @task(4)
    def try_lock_once(self):
        """Single attempt (wait=0) pada key unik"""
        self.counter += 1
        key = f"job:{self.user_id}:{self.counter}"

        with self.client.post(
            "/api/lock/acquire",
            json={'key': key, 'wait': 0, 'lease': 10},
            name="/api/lock/acquire [spread]",
            catch_response=True
        ) as response:
            if response.status_code != 200:
                response.failure(f"HTTP {response.status_code}")
                return
            response.success()
            token = response.json()['token']

        self.client.post("/api/lock/release", json={'key': key, 'token': token})

    @task(1)
    def bucket_lookup(self):
        """Lookup bucket dan field"""
        key = f"user:{random.randint(1, 10_000_000)}"
        self.client.get(
            "/api/bucket",
            params={'key': key, 'field': 'name'},
            name="/api/bucket"
        )


# Event handlers untuk custom metrics
@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("Load test starting...")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("Load test complete!")
    print(f"Total requests: {environment.stats.total.num_requests}")
    print(f"Failure rate: {environment.stats.total.fail_ratio:.2%}")
