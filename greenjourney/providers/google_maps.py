"""Google Maps distance-matrix and transit-directions client."""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from greenjourney.errors import ProviderError
from greenjourney.payloads import DistanceMatrixPayload, TransitDirectionsPayload
from greenjourney.schemas import Place
from greenjourney.settings import Settings, get_settings

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("GREEN_JOURNEY_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

PayloadT = TypeVar("PayloadT", bound=BaseModel)

_ACCEPTED_STATUSES = {"OK", "ZERO_RESULTS"}
_TRANSIT_PARAMS = {
    "train": {"transit_mode": "rail", "transit_routing_preference": "fewer_transfers"},
    "bus": {"transit_mode": "bus"},
}


class GoogleMapsClient:
    PROVIDER = "google_maps"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _key(self) -> str:
        if not self.settings.google_maps_api_key:
            raise ProviderError(self.PROVIDER, "GOOGLE_MAPS_API_KEY environment variable not configured")
        return self.settings.google_maps_api_key

    async def _get(self, path: str, params: Dict[str, Any], model: Type[PayloadT]) -> PayloadT:
        url = f"{self.settings.google_maps_base_url.rstrip('/')}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.settings.provider_timeout) as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(self.PROVIDER, f"request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(self.PROVIDER, f"{path} returned invalid JSON") from exc

        try:
            payload = model.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(self.PROVIDER, f"unexpected {path} payload: {exc}") from exc

        status = getattr(payload, "status", "OK")
        if status not in _ACCEPTED_STATUSES:
            raise ProviderError(self.PROVIDER, f"{path} answered with status {status}")
        logger.debug("Google Maps %s answered %s", path, status)
        return payload

    async def distance_matrix(
        self,
        origin: Place,
        destination: Place,
        departure: datetime,
        mode: str = "car",
    ) -> DistanceMatrixPayload:
        params: Dict[str, Any] = {
            "origins": origin.name,
            "destinations": destination.name,
            "departure_time": int(departure.timestamp()),
            "key": self._key(),
        }
        if mode == "bike":
            params["mode"] = "bicycling"
        return await self._get("distancematrix/json", params, DistanceMatrixPayload)

    async def transit_directions(
        self,
        origin: Place,
        destination: Place,
        departure: datetime,
        mode: str,
    ) -> TransitDirectionsPayload:
        if mode not in _TRANSIT_PARAMS:
            raise ProviderError(self.PROVIDER, f"unsupported transit mode {mode!r}")
        params: Dict[str, Any] = {
            "origin": origin.name,
            "destination": destination.name,
            "mode": "transit",
            "departure_time": int(departure.timestamp()),
            "key": self._key(),
        }
        params.update(_TRANSIT_PARAMS[mode])
        return await self._get("directions/json", params, TransitDirectionsPayload)
