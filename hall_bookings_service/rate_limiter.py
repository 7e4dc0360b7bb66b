# hall_bookings_service/rate_limiter.py
import os
import time
from typing import Dict, List

from fastapi import Depends, HTTPException, status

from .auth import Principal, get_current_principal

WINDOW_SECONDS = 60
MAX_OPERATIONS_PER_WINDOW = 20

_principal_request_log: Dict[int, List[float]] = {}


def reservation_rate_limiter(principal: Principal = Depends(get_current_principal)):
    """
    Rate limit reservation submissions and decisions per authenticated principal.
    """
    if os.getenv("TESTING") == "1":
        return

    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = [
        ts for ts in _principal_request_log.get(principal.user_id, []) if ts >= window_start
    ]

    if len(timestamps) >= MAX_OPERATIONS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many reservation operations in a short time",
        )

    timestamps.append(now)
    _principal_request_log[principal.user_id] = timestamps
