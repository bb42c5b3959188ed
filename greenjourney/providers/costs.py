"""Toll, fuel and transit fare lookups against the pricing services."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from greenjourney.settings import Settings, get_settings

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("GREEN_JOURNEY_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False


class CostClient:
    """Blocking price lookups; any failure prices the item at 0.0.

    The normalizer runs in a worker thread, so these calls use a synchronous
    ``httpx.Client`` rather than the async client the route providers use.
    """

    def __init__(self, settings: Optional[Settings] = None, *, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self._client = client or httpx.Client(timeout=self.settings.provider_timeout)

    def close(self) -> None:
        self._client.close()

    def _lookup(self, url: str, params: Dict[str, Any], field: str) -> float:
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
            return float(response.json()[field])
        except (httpx.HTTPError, ValueError, KeyError, TypeError):
            logger.warning("Price lookup %s failed for %s", url, params, exc_info=True)
            return 0.0

    def toll_cost(self, origin: str, destination: str, distance_km: float) -> float:
        params = {"from": origin, "to": destination, "distance": int(distance_km)}
        return self._lookup(self.settings.toll_api_url, params, "toll-cost")

    def fuel_cost_per_liter(self, origin: str) -> float:
        return self._lookup(self.settings.fuel_cost_api_url, {"location": origin}, "fuel-cost")

    def transit_cost(self, origin: str, destination: str, mode: str, distance_km: float) -> float:
        params = {"from": origin, "to": destination, "mode": mode, "distance": int(distance_km)}
        return self._lookup(self.settings.transit_cost_api_url, params, "transit-cost")
