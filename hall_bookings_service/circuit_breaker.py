# hall_bookings_service/circuit_breaker.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from .models import utcnow

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    In-memory circuit breaker for outbound HTTP calls.

    States:
    - closed: requests pass, failures are counted
    - open: requests are blocked until the reset timeout elapses
    - half_open: one trial request is let through
    """

    def __init__(self, name: str, max_failures: int = 3, reset_timeout_seconds: int = 30):
        self.name = name
        self.max_failures = max_failures
        self.reset_timeout = timedelta(seconds=reset_timeout_seconds)
        self.failure_count = 0
        self.state = "closed"
        self.last_failure_time: Optional[datetime] = None

    def allow_request(self) -> bool:
        if self.state != "open":
            return True
        if self.last_failure_time is None:
            return False
        if utcnow() - self.last_failure_time >= self.reset_timeout:
            self.state = "half_open"
            return True
        return False

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = utcnow()
        if self.failure_count >= self.max_failures and self.state != "open":
            logger.warning("Circuit %s opened after %d failures", self.name, self.failure_count)
            self.state = "open"


facilities_circuit_breaker = CircuitBreaker(
    name="facilities_service",
    max_failures=3,
    reset_timeout_seconds=30,
)
