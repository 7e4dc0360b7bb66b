import logging
from typing import List, Optional, Sequence

import httpx

from common.cache import HALLS_CATALOG_KEY, get_cached_json, set_cached_json

from .circuit_breaker import CircuitBreaker, facilities_circuit_breaker
from .settings import FACILITIES_SERVICE_URL, HALLS

logger = logging.getLogger(__name__)


class HallCatalog:
    """
    Source of bookable hall names, injected into the alternative-slot
    suggestion logic.
    """

    def list_halls(self) -> List[str]:
        raise NotImplementedError


class StaticHallCatalog(HallCatalog):
    def __init__(self, halls: Sequence[str]):
        self.halls = list(halls)

    def list_halls(self) -> List[str]:
        return list(self.halls)


class HttpHallCatalog(HallCatalog):
    """
    Hall catalog backed by the facilities service.

    Only active halls are returned. Responses are cached in Redis when it
    is configured. When the facilities service is unreachable or the
    circuit is open, the fallback catalog is used instead.

    Parameters
    ----------
    base_url : str
        Base URL of the facilities service.
    fallback : HallCatalog
        Catalog used when the facilities service cannot be reached.
    breaker : CircuitBreaker
        Circuit breaker guarding the outbound call.
    """

    def __init__(
        self,
        base_url: str,
        fallback: HallCatalog,
        breaker: CircuitBreaker = facilities_circuit_breaker,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.fallback = fallback
        self.breaker = breaker
        self.timeout = timeout

    def list_halls(self) -> List[str]:
        cached = get_cached_json(HALLS_CATALOG_KEY)
        if cached is not None:
            return cached

        if not self.breaker.allow_request():
            logger.warning("Facilities circuit open, using fallback hall catalog")
            return self.fallback.list_halls()

        try:
            resp = httpx.get(f"{self.base_url}/api/v1/facilities", timeout=self.timeout)
        except httpx.RequestError as exc:
            self.breaker.record_failure()
            logger.warning("Failed to contact facilities service: %s", exc)
            return self.fallback.list_halls()

        if resp.status_code != 200:
            self.breaker.record_failure()
            logger.warning("Facilities service returned %s", resp.status_code)
            return self.fallback.list_halls()

        self.breaker.record_success()

        halls = [
            item["name"]
            for item in resp.json()
            if item.get("status", "Active") == "Active"
        ]
        set_cached_json(HALLS_CATALOG_KEY, halls, ttl_seconds=60)
        return halls


_catalog: Optional[HallCatalog] = None


def get_catalog() -> HallCatalog:
    """
    FastAPI dependency returning the configured hall catalog.
    """
    global _catalog

    if _catalog is None:
        static = StaticHallCatalog(HALLS)
        if FACILITIES_SERVICE_URL:
            _catalog = HttpHallCatalog(FACILITIES_SERVICE_URL, fallback=static)
        else:
            _catalog = static
    return _catalog
