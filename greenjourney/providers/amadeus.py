"""Amadeus flight-offer and location client."""
from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from greenjourney.errors import ProviderError
from greenjourney.payloads import FlightOffersPayload, LocationsPayload
from greenjourney.settings import Settings, get_settings

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("GREEN_JOURNEY_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

PROVIDER = "amadeus"


class AmadeusCredentials:
    """Client-credentials grant holder.

    The bearer token is fetched on first use and replaced by ``refresh`` when
    the API rejects it. Each ``from_settings`` call starts without a token;
    pass the same instance to several clients to share one.
    """

    TOKEN_PATH = "v1/security/oauth2/token"

    def __init__(self, api_key: Optional[str], api_secret: Optional[str], base_url: str):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self._token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AmadeusCredentials":
        return cls(settings.amadeus_api_key, settings.amadeus_api_secret, settings.amadeus_base_url)

    @property
    def token(self) -> Optional[str]:
        return self._token

    async def bearer(self, client: httpx.AsyncClient) -> str:
        if self._token is None:
            return await self.refresh(client)
        return self._token

    async def refresh(self, client: httpx.AsyncClient) -> str:
        if not self.api_key or not self.api_secret:
            raise ProviderError(PROVIDER, "AMADEUS_API_KEY / AMADEUS_API_SECRET not configured")
        response = await client.post(
            f"{self.base_url}/{self.TOKEN_PATH}",
            data={
                "grant_type": "client_credentials",
                "client_id": self.api_key,
                "client_secret": self.api_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()
        token = response.json().get("access_token")
        if not token:
            raise ProviderError(PROVIDER, "token response carried no access_token")
        self._token = token
        logger.info("Obtained a new Amadeus access token")
        return token


class AmadeusClient:
    def __init__(self, credentials: AmadeusCredentials, settings: Optional[Settings] = None):
        self.credentials = credentials
        self.settings = settings or get_settings()

    async def _authorized_get(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.credentials.base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.settings.provider_timeout) as client:
                token = await self.credentials.bearer(client)
                response = await client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
                if response.status_code == 401:
                    logger.info("Amadeus rejected the access token, refreshing once")
                    token = await self.credentials.refresh(client)
                    response = await client.get(
                        url, params=params, headers={"Authorization": f"Bearer {token}"}
                    )
                    if response.status_code == 401:
                        raise ProviderError(PROVIDER, "unauthorized")
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(PROVIDER, f"request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(PROVIDER, f"{path} returned invalid JSON") from exc

    async def flight_offers(self, origin_iata: str, destination_iata: str, departure_date: date) -> FlightOffersPayload:
        params = {
            "originLocationCode": origin_iata,
            "destinationLocationCode": destination_iata,
            "departureDate": departure_date.isoformat(),
            "adults": 1,
            "max": 3,
        }
        data = await self._authorized_get("v2/shopping/flight-offers", params)
        try:
            payload = FlightOffersPayload.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(PROVIDER, f"unexpected flight-offers payload: {exc}") from exc
        if not payload.data:
            raise ProviderError(PROVIDER, f"no flight offers {origin_iata} -> {destination_iata}")
        return payload

    async def locations(self, keyword: str) -> LocationsPayload:
        """Cities and airports matching ``keyword`` (usually an IATA code)."""
        data = await self._authorized_get(
            "v1/reference-data/locations", {"subType": "CITY,AIRPORT", "keyword": keyword}
        )
        try:
            return LocationsPayload.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(PROVIDER, f"unexpected locations payload: {exc}") from exc
