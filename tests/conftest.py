import os
import sys

# must be set before the service settings are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_hall_bookings.db")
os.environ.setdefault("TESTING", "1")
os.environ.pop("REDIS_URL", None)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from hall_bookings_service.database import Base, SessionLocal, engine


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
