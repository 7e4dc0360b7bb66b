import cProfile
import os
from datetime import datetime, timedelta, timezone

# decisions are issued in bulk, skip per-principal rate limiting
os.environ.setdefault("TESTING", "1")

from fastapi.testclient import TestClient
from jose import jwt

from hall_bookings_service.main import app
from hall_bookings_service.database import Base, engine
from hall_bookings_service.settings import ALGORITHM, SECRET_KEY

client = TestClient(app)

HALLS = ["A-191", "A-192", "Seminar Hall", "Auditorium"]
CATEGORIES = ["Institutional", "Departmental", "Student", "Other"]


def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def make_headers(user_id: int, role: str) -> dict:
    payload = {
        "sub": f"{role}{user_id}",
        "role": role,
        "user_id": user_id,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return {"Authorization": f"Bearer {jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)}"}


def scenario_reservations():
    """
    Submit many overlapping requests, override some of them and let an
    admin decide every pending reservation.
    """
    admin = make_headers(1, "admin")
    base = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(days=3)

    for i in range(100):
        coordinator = make_headers(100 + i % 10, "coordinator")
        start = base + timedelta(days=i % 7, hours=(i % 4) * 2)
        body = {
            "resource_id": HALLS[i % len(HALLS)],
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=3)).isoformat(),
            "category": CATEGORIES[i % len(CATEGORIES)],
            "expected_attendance": (i * 7) % 300,
            "event_title": f"Event {i}",
            "faculty_name": f"Faculty {i}",
        }
        r = client.post("/api/v1/reservations", json=body, headers=coordinator)
        if r.status_code == 409 and r.json()["analysis"]["should_override"]:
            body["override_requested"] = True
            r = client.post("/api/v1/reservations", json=body, headers=coordinator)
        if r.status_code not in (201, 409):
            raise RuntimeError(f"Unexpected status on submit: {r.status_code}")

    pending = client.get("/api/v1/reservations/pending", headers=admin).json()
    for reservation in pending:
        action = "approve" if reservation["score"] >= 40 else "reject"
        client.patch(f"/api/v1/reservations/{reservation['id']}/{action}", headers=admin)


def main():
    reset_db()
    scenario_reservations()


if __name__ == "__main__":
    # run cProfile and sort by cumulative time
    cProfile.run("main()", sort="cumtime")
