"""
Locust Load Test Suite

Run scenarios (from backend/, so gym_booking is importable for token minting):
  locust -f locust/locustfile.py --tags contention   # Join/cancel churn on one class
  locust -f locust/locustfile.py --tags throughput   # Test cache
  locust -f locust/locustfile.py --tags edge         # Test bad input
  locust -f locust/locustfile.py                     # All tests

Tokens are signed locally with SECRET_KEY, which must match the server's.
"""

import random
import string
from datetime import datetime, timezone, timedelta

import requests
from locust import HttpUser, task, between, tag, events

from gym_booking.core.security import create_access_token

# Shared state
CLASS_IDS = []
CONTENTION_CLASS_ID = None
CONTENTION_SEATS = 10


def random_member_id():
    return "member_" + "".join(random.choices(string.ascii_lowercase, k=8))


def bearer(user_id, role=None):
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(data=claims, expires_delta=timedelta(hours=2))}"}


STAFF_HEADERS = bearer("load-coach", role="staff")


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: schedule a small class everyone fights over."""
    print("\n" + "=" * 60)
    print("SETUP: Creating contention test class...")
    print("=" * 60)

    future = (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()
    resp = requests.post(
        f"{environment.host}/api/v1/classes/",
        json={
            "title": "Contention Test Class",
            "coach_id": "load-coach",
            "starts_at": future,
            "duration_minutes": 60,
            "max_capacity": CONTENTION_SEATS,
        },
        headers=STAFF_HEADERS,
        timeout=10,
    )
    if resp.status_code == 201:
        globals()["CONTENTION_CLASS_ID"] = resp.json()["id"]
        print(f"\n✓ Created class {CONTENTION_CLASS_ID} with {CONTENTION_SEATS} seats\n")


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 members churning on 10 seats

    Run: locust -f locust/locustfile.py --tags contention -u 100 -r 50 --run-time 60s

    Each member joins, sometimes cancels, and accepts any seat offered.
    After the test, verify the headcount matches the seat holders:
      SELECT c.occupied_count,
             (SELECT COUNT(*) FROM reservations r
              WHERE r.class_id = c.id
                AND r.status IN ('confirmed', 'pending_confirmation'))
      FROM class_sessions c WHERE c.id = X;
    Both numbers must be equal and <= 10.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.user_id = random_member_id()
        self.headers = bearer(self.user_id)
        self.reservation_id = None

    @tag("contention")
    @task(5)
    def join(self):
        if not CONTENTION_CLASS_ID or self.reservation_id:
            return

        with self.client.post(
            f"/api/v1/classes/{CONTENTION_CLASS_ID}/reservations",
            headers=self.headers,
            name="/api/v1/classes/{id}/reservations",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                self.reservation_id = resp.json()["id"]
                resp.success()
            elif resp.status_code in (409, 503):
                resp.success()  # Already listed, or the class was too busy
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("contention")
    @task(3)
    def cancel(self):
        if not self.reservation_id:
            return

        with self.client.delete(
            f"/api/v1/reservations/{self.reservation_id}",
            headers=self.headers,
            name="/api/v1/reservations/{id}",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 404):
                self.reservation_id = None
                resp.success()
            elif resp.status_code == 503:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("contention")
    @task(4)
    def accept_offer(self):
        resp = self.client.get("/api/v1/reservations/pending", headers=self.headers)
        if resp.status_code != 200 or not resp.json().get("reservation"):
            return

        reservation_id = resp.json()["reservation"]["id"]
        with self.client.post(
            f"/api/v1/reservations/{reservation_id}/accept",
            headers=self.headers,
            name="/api/v1/reservations/{id}/accept",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 409, 410, 503):
                resp.success()  # 410: offer expired and passed on
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locust/locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false on the server, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_classes_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(
            f"/api/v1/classes/?page={page}&page_size=20",
            name="/api/v1/classes/ [cached]",
        )
        if resp.status_code == 200:
            for cls in resp.json().get("classes", []):
                if cls["id"] not in CLASS_IDS:
                    CLASS_IDS.append(cls["id"])

    @tag("throughput", "read")
    @task(3)
    def get_class_detail(self):
        if CLASS_IDS:
            self.client.get(f"/api/v1/classes/{random.choice(CLASS_IDS)}", name="/api/v1/classes/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locust/locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = bearer(random_member_id())

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def join_missing_class(self):
        with self.client.post(
            "/api/v1/classes/999999/reservations",
            headers=self.headers,
            name="/api/v1/classes/[missing]/reservations",
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def cancel_missing_reservation(self):
        with self.client.delete(
            "/api/v1/reservations/999999",
            headers=self.headers,
            name="/api/v1/reservations/[missing]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def accept_without_offer(self):
        with self.client.post(
            "/api/v1/reservations/999999/accept",
            headers=self.headers,
            name="/api/v1/reservations/[missing]/accept",
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def member_creates_class(self):
        future = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
        with self.client.post(
            "/api/v1/classes/",
            json={"title": "Sneaky", "starts_at": future, "max_capacity": 5},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (403,))

    @tag("edge")
    @task
    def malformed_walk_in(self):
        with self.client.post(
            "/api/v1/staff/classes/1/walk-ins",
            data="not json at all",
            headers=STAFF_HEADERS,
            name="/api/v1/staff/classes/{id}/walk-ins",
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/classes/1/reservations", catch_response=True) as resp:
            self._expect(resp, (401,))


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locust/locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some joins and cancellations, rare scheduling by staff.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.user_id = random_member_id()
        self.headers = bearer(self.user_id)

    @task(50)
    def browse_classes(self):
        resp = self.client.get("/api/v1/classes/?page=1&page_size=20")
        if resp.status_code == 200:
            for cls in resp.json().get("classes", []):
                if cls["id"] not in CLASS_IDS:
                    CLASS_IDS.append(cls["id"])

    @task(20)
    def check_status(self):
        if CLASS_IDS:
            self.client.get(
                f"/api/v1/classes/{random.choice(CLASS_IDS)}/reservations/me",
                headers=self.headers,
                name="/api/v1/classes/{id}/reservations/me",
            )

    @task(10)
    def join_class(self):
        if CLASS_IDS:
            self.client.post(
                f"/api/v1/classes/{random.choice(CLASS_IDS)}/reservations",
                headers=self.headers,
                name="/api/v1/classes/{id}/reservations",
            )

    @task(5)
    def cancel_one(self):
        resp = self.client.get("/api/v1/reservations/", headers=self.headers)
        if resp.status_code == 200 and resp.json():
            reservation = random.choice(resp.json())
            self.client.delete(
                f"/api/v1/reservations/{reservation['id']}",
                headers=self.headers,
                name="/api/v1/reservations/{id}",
            )

    @task(1)
    def schedule_class(self):
        future = (datetime.now(timezone.utc) + timedelta(days=random.randint(1, 30))).isoformat()
        resp = self.client.post(
            "/api/v1/classes/",
            json={
                "title": f"Class {random.randint(1, 10000)}",
                "starts_at": future,
                "duration_minutes": random.choice([30, 45, 60]),
                "max_capacity": random.randint(5, 30),
            },
            headers=STAFF_HEADERS,
        )
        if resp.status_code == 201:
            CLASS_IDS.append(resp.json()["id"])
