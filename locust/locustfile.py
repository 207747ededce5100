"""
Locust Load Test Suite

Tokens are signed locally with the shared SECRET_KEY, so the target must
run with the same key. Against STORE_BACKEND=sql the load-vendor-N ids
must exist in the users table or every reservation returns 404.

Run scenarios:
  locust -f locustfile.py --tags contention   # Many vendors, few stalls
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import string
from locust import HttpUser, task, between, tag, events

from stall_booking.core.security import create_access_token

# Shared state
STALL_IDS = []
CONTENTION_STALL_IDS = []
VENDOR_POOL = [f"load-vendor-{i}" for i in range(500)]

ADMIN_HEADERS = {
    "Authorization": "Bearer " + create_access_token(
        {"sub": "load-admin", "role": "admin", "email": "admin@load.test"}
    )
}


def vendor_headers() -> dict:
    user_id = random.choice(VENDOR_POOL)
    token = create_access_token(
        {"sub": user_id, "role": "user", "email": f"{user_id}@load.test", "name": user_id}
    )
    return {"Authorization": f"Bearer {token}"}


def random_code(prefix: str) -> str:
    return prefix + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print("SETUP: Contention stalls are created by the first vendor")
    print("="*60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 vendors -> 5 stalls

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT stall_id, COUNT(*) FROM reservations
      WHERE status IN ('PENDING', 'CONFIRMED') GROUP BY stall_id;
    Every count should be exactly 1.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = vendor_headers()
        if not CONTENTION_STALL_IDS:
            for _ in range(5):
                resp = self.client.post("/api/v1/stalls/",
                    json={"code": random_code("C-"), "size": "MEDIUM", "price": "20000"},
                    headers=ADMIN_HEADERS,
                    name="/api/v1/stalls/ [setup]",
                )
                if resp.status_code == 201:
                    CONTENTION_STALL_IDS.append(resp.json()["id"])
            print(f"\n✓ Created {len(CONTENTION_STALL_IDS)} contention stalls\n")

    @tag("contention")
    @task
    def reserve_contended_stall(self):
        """Everyone fights over the same five stalls."""
        if not CONTENTION_STALL_IDS:
            return

        with self.client.post("/api/v1/reservations/",
            json={"stall_id": random.choice(CONTENTION_STALL_IDS), "total_amount": "20000"},
            headers=self.headers,
            catch_response=True,
            name="/api/v1/reservations/ [contended]",
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: lost the race
            elif resp.status_code == 400 and resp.json().get("code") == "quota_exceeded":
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_available_cached(self):
        """Hammer the floor plan."""
        self.client.get("/api/v1/stalls/available", name="/api/v1/stalls/available [cached]")

    @tag("throughput", "read")
    @task(5)
    def list_by_size(self):
        size = random.choice(["SMALL", "MEDIUM", "LARGE"])
        self.client.get(f"/api/v1/stalls/?size={size}", name="/api/v1/stalls/?size [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_stall_detail(self):
        if STALL_IDS:
            self.client.get(f"/api/v1/stalls/{random.choice(STALL_IDS)}",
                name="/api/v1/stalls/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = vendor_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_stall(self):
        with self.client.post("/api/v1/reservations/",
            json={"stall_id": "does-not-exist", "total_amount": "100"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def negative_amount(self):
        with self.client.post("/api/v1/reservations/",
            json={"stall_id": "any", "total_amount": -5},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def too_many_decimals(self):
        with self.client.post("/api/v1/reservations/",
            json={"stall_id": "any", "total_amount": "10.999"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/reservations/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/reservations/",
            json={"stall_id": "any", "total_amount": "1"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def vendor_creates_stall(self):
        with self.client.post("/api/v1/stalls/",
            json={"code": random_code("X-"), "size": "SMALL", "price": "1"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [403])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates opening day of registration:
      - Mostly browsing the floor plan
      - Some reservations and cancellations
      - Rare stall creation by the organizer
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = vendor_headers()
        self.mine = []

    @task(50)
    def browse_stalls(self):
        resp = self.client.get("/api/v1/stalls/available")
        if resp.status_code == 200:
            for stall in resp.json().get("stalls", []):
                if stall["id"] not in STALL_IDS:
                    STALL_IDS.append(stall["id"])

    @task(20)
    def view_stall(self):
        if STALL_IDS:
            self.client.get(f"/api/v1/stalls/{random.choice(STALL_IDS)}",
                name="/api/v1/stalls/{id}")

    @task(10)
    def reserve_stall(self):
        if not STALL_IDS:
            return
        with self.client.post("/api/v1/reservations/",
            json={"stall_id": random.choice(STALL_IDS), "total_amount": "20000"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                self.mine.append(resp.json()["id"])
                resp.success()
            elif resp.status_code in (400, 409):
                resp.success()

    @task(3)
    def cancel_reservation(self):
        if self.mine:
            reservation_id = self.mine.pop()
            self.client.put(f"/api/v1/reservations/{reservation_id}/cancel",
                headers=self.headers,
                name="/api/v1/reservations/{id}/cancel")

    @task(2)
    def my_reservations(self):
        self.client.get("/api/v1/reservations/my-reservations", headers=self.headers)

    @task(1)
    def create_stall(self):
        resp = self.client.post("/api/v1/stalls/",
            json={
                "code": random_code("S-"),
                "size": random.choice(["SMALL", "MEDIUM", "LARGE"]),
                "price": str(random.choice([10000, 20000, 35000])),
            },
            headers=ADMIN_HEADERS,
            name="/api/v1/stalls/ [create]",
        )
        if resp.status_code == 201:
            STALL_IDS.append(resp.json()["id"])
