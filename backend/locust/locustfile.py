"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Test double-booking of tables
  locust -f locustfile.py --tags planning     # Test planner latency
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
TABLE_IDS = []
BOOKING_IDS = []
CONTENTION_TABLE_ID = None
CONTENTION_START = (datetime.now(timezone.utc) + timedelta(days=30)).replace(
    hour=19, minute=0, second=0, microsecond=0
)

HOST_HEADERS = {"X-Actor-Id": "load-host"}
GUEST_HEADERS = {"X-Actor-Id": "load-guest"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: tables are created lazily by the first user of each class."""
    print("\n" + "="*60)
    print("SETUP: Creating contention test table...")
    print("="*60)


def request_booking(client, party_size: int, start: datetime):
    resp = client.post("/api/v1/bookings/",
        json={
            "party_size": party_size,
            "start_time": start.isoformat(),
            "policy": "request",
        },
        headers=GUEST_HEADERS,
        name="/api/v1/bookings/ [request]",
    )
    if resp.status_code == 201:
        return resp.json()["id"]
    return None


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many hosts accept different requests onto one table

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no overlapping active bookings share the table:
      SELECT a.id, b.id FROM bookings a
        JOIN booking_tables ta ON ta.booking_id = a.id
        JOIN booking_tables tb ON tb.table_id = ta.table_id AND tb.booking_id > a.id
        JOIN bookings b ON b.id = tb.booking_id
      WHERE a.status IN ('confirmed', 'arrived', 'seated', 'ordered', 'appetizers',
                         'main_course', 'dessert', 'payment')
        AND b.status IN ('confirmed', 'arrived', 'seated', 'ordered', 'appetizers',
                         'main_course', 'dessert', 'payment')
        AND a.start_time < b.end_time AND a.end_time > b.start_time;
    Should return no rows
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global CONTENTION_TABLE_ID
        if not CONTENTION_TABLE_ID:
            resp = self.client.post("/api/v1/tables/",
                json={
                    "table_number": random.randint(100000, 999999),
                    "min_capacity": 1,
                    "max_capacity": 4,
                },
                headers=HOST_HEADERS,
            )
            if resp.status_code == 201:
                CONTENTION_TABLE_ID = resp.json()["id"]
                print(f"\n✓ Created contention table {CONTENTION_TABLE_ID}\n")

    @tag("contention")
    @task
    def accept_onto_same_table(self):
        """Every user tries to put a fresh request on the same table and window."""
        if not CONTENTION_TABLE_ID:
            return

        offset = random.choice([0, 15, 30, 45])
        booking_id = request_booking(self.client, 2, CONTENTION_START + timedelta(minutes=offset))
        if not booking_id:
            return

        with self.client.post(f"/api/v1/bookings/{booking_id}/accept",
            json={"table_ids": [CONTENTION_TABLE_ID]},
            headers=HOST_HEADERS,
            name="/api/v1/bookings/{id}/accept [contended]",
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: table taken or lost the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class PlanningUser(HttpUser):
    """
    TEST 2: Planning - planner latency with a realistic floor

    Run: locust -f locustfile.py --tags planning -u 100 -r 20 --run-time 60s

    Compare against planner_latency_seconds on /metrics:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        if TABLE_IDS:
            return
        base = random.randint(10000, 90000)
        for offset, (low, high, combinable) in enumerate([
            (1, 2, False), (2, 4, False), (2, 4, True), (3, 4, True),
            (4, 6, False), (2, 3, True), (6, 8, False), (1, 2, True),
        ]):
            resp = self.client.post("/api/v1/tables/",
                json={
                    "table_number": base + offset,
                    "min_capacity": low,
                    "max_capacity": high,
                    "combinable": combinable,
                    "priority_score": random.random(),
                },
                headers=HOST_HEADERS,
            )
            if resp.status_code == 201:
                TABLE_IDS.append(resp.json()["id"])

    @tag("planning", "read")
    @task(10)
    def plan_assignment(self):
        """Dry-run planning over the whole floor."""
        start = CONTENTION_START + timedelta(minutes=15 * random.randint(-8, 8))
        self.client.post("/api/v1/availability/plan",
            json={"party_size": random.randint(1, 10), "start_time": start.isoformat()},
            name="/api/v1/availability/plan")

    @tag("planning", "read")
    @task(3)
    def check_availability(self):
        if TABLE_IDS:
            self.client.post("/api/v1/availability/check",
                json={
                    "table_ids": random.sample(TABLE_IDS, k=min(2, len(TABLE_IDS))),
                    "start_time": CONTENTION_START.isoformat(),
                },
                name="/api/v1/availability/check")

    @tag("planning")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    @tag("edge")
    @task
    def unknown_booking(self):
        """Accept a booking that does not exist."""
        with self.client.post("/api/v1/bookings/999999/accept",
            json={},
            headers=HOST_HEADERS,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def zero_party(self):
        with self.client.post("/api/v1/bookings/",
            json={"party_size": 0, "start_time": CONTENTION_START.isoformat()},
            headers=GUEST_HEADERS,
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def empty_table_set(self):
        """Availability needs at least one table."""
        with self.client.post("/api/v1/availability/check",
            json={"table_ids": [], "start_time": CONTENTION_START.isoformat()},
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def skip_to_seated(self):
        """Illegal lifecycle edge on a fresh request."""
        booking_id = request_booking(self.client, 2, CONTENTION_START + timedelta(days=1))
        if not booking_id:
            return
        with self.client.post(f"/api/v1/bookings/{booking_id}/transition",
            json={"target_status": "seated"},
            headers=HOST_HEADERS,
            name="/api/v1/bookings/{id}/transition [illegal]",
            catch_response=True
        ) as resp:
            if resp.status_code == 409:
                resp.success()
            else:
                resp.failure(f"Expected 409, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        """Send garbage data."""
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=GUEST_HEADERS,
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_actor(self):
        """Try a write without the actor header."""
        with self.client.post("/api/v1/bookings/",
            json={"party_size": 2, "start_time": CONTENTION_START.isoformat()},
            catch_response=True
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Expected 422, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates a service evening:
      - Mostly guests browsing and requesting (70%)
      - Hosts accepting and declining (20%)
      - Floor staff moving bookings along (10%)
    """
    wait_time = between(1, 3)

    @task(40)
    def list_bookings(self):
        resp = self.client.get("/api/v1/bookings/?status=pending")
        if resp.status_code == 200:
            for booking in resp.json():
                if booking["id"] not in BOOKING_IDS:
                    BOOKING_IDS.append(booking["id"])

    @task(30)
    def request_table(self):
        start = CONTENTION_START + timedelta(days=random.randint(0, 6), minutes=15 * random.randint(-8, 8))
        booking_id = request_booking(self.client, random.randint(1, 8), start)
        if booking_id:
            BOOKING_IDS.append(booking_id)

    @task(15)
    def accept_request(self):
        if BOOKING_IDS:
            self.client.post(f"/api/v1/bookings/{random.choice(BOOKING_IDS)}/accept",
                json={"suggest_alternatives": True},
                headers=HOST_HEADERS,
                name="/api/v1/bookings/{id}/accept")

    @task(5)
    def decline_request(self):
        if BOOKING_IDS:
            self.client.post(f"/api/v1/bookings/{random.choice(BOOKING_IDS)}/decline",
                json={"reason": "Fully booked", "suggest_alternatives": True},
                headers=HOST_HEADERS,
                name="/api/v1/bookings/{id}/decline")

    @task(10)
    def advance_booking(self):
        if BOOKING_IDS:
            self.client.post(f"/api/v1/bookings/{random.choice(BOOKING_IDS)}/transition",
                json={"target_status": random.choice(["arrived", "cancelled_by_user"]),
                      "metadata": {"reason": "load test"}},
                headers=HOST_HEADERS,
                name="/api/v1/bookings/{id}/transition")
