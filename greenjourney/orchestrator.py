from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from greenjourney.core.normalizer import PriceLookup, SearchContext, normalize_payload
from greenjourney.errors import ProviderError
from greenjourney.payloads import FlightOffersPayload, ProviderPayload
from greenjourney.providers.amadeus import AmadeusClient, AmadeusCredentials
from greenjourney.providers.costs import CostClient
from greenjourney.providers.google_maps import GoogleMapsClient
from greenjourney.schemas import Place, Segment
from greenjourney.settings import Settings, get_settings
from greenjourney.store import InMemoryStore

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("GREEN_JOURNEY_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

# plane goes first: the airports and cities it registers are reused by the others
PROVIDER_SEQUENCE: Tuple[str, ...] = ("plane", "bike", "car", "train", "bus")

ProviderResult = Tuple[str, Union[Sequence[List[Segment]], BaseException]]


def aggregate_options(provider_results: Iterable[ProviderResult]) -> List[List[Segment]]:
    """Merge per-provider options in provider order, dropping failed providers."""
    options: List[List[Segment]] = []
    for mode, result in provider_results:
        if isinstance(result, BaseException):
            logger.warning("Provider for %s failed: %s", mode, result, exc_info=result)
            continue
        kept = [option for option in result if option]
        logger.info("Provider for %s returned %d option(s)", mode, len(kept))
        options.extend(kept)
    return options


class TravelSearch:
    """Query every provider for one direction of a trip and merge the options."""

    def __init__(
        self,
        store: InMemoryStore,
        *,
        google: Optional[GoogleMapsClient] = None,
        amadeus: Optional[AmadeusClient] = None,
        pricing: Optional[PriceLookup] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.google = google or GoogleMapsClient(self.settings)
        self.amadeus = amadeus or AmadeusClient(AmadeusCredentials.from_settings(self.settings), self.settings)
        self._owned_costs: Optional[CostClient] = None
        if pricing is None:
            pricing = self._owned_costs = CostClient(self.settings)
        self.pricing = pricing

    def close(self) -> None:
        """Release the cost client this search created, if any."""
        if self._owned_costs is not None:
            self._owned_costs.close()
            self._owned_costs = None

    async def search(
        self,
        origin: Place,
        destination: Place,
        departure: datetime,
        is_outward: bool = True,
    ) -> List[List[Segment]]:
        base = SearchContext(origin=origin, destination=destination, departure=departure, mode="plane", is_outward=is_outward)
        timeout = self.settings.provider_timeout

        first, *others = PROVIDER_SEQUENCE
        try:
            plane = await asyncio.wait_for(self.query(replace(base, mode=first)), timeout)
        except Exception as exc:
            plane = exc

        rest = await asyncio.gather(
            *[asyncio.wait_for(self.query(replace(base, mode=mode)), timeout) for mode in others],
            return_exceptions=True,
        )
        results: List[ProviderResult] = [(first, plane)]
        results.extend(zip(others, rest))
        options = aggregate_options(results)
        logger.info(
            "Search %s -> %s (%s) produced %d option(s)",
            origin.name,
            destination.name,
            "outward" if is_outward else "return",
            len(options),
        )
        return options

    async def fetch(self, context: SearchContext) -> ProviderPayload:
        mode = context.mode
        if mode == "plane":
            if not context.origin.iata or not context.destination.iata:
                raise ProviderError("amadeus", "origin or destination has no IATA code")
            payload = await self.amadeus.flight_offers(
                context.origin.iata, context.destination.iata, context.departure.date()
            )
            await self._register_airports(payload)
            return payload
        if mode in ("bike", "car"):
            return await self.google.distance_matrix(context.origin, context.destination, context.departure, mode)
        if mode in ("train", "bus"):
            return await self.google.transit_directions(context.origin, context.destination, context.departure, mode)
        raise ProviderError("search", f"unknown mode {mode!r}")

    async def query(self, context: SearchContext) -> List[List[Segment]]:
        payload = await self.fetch(context)
        # place resolution and price lookups block
        return await asyncio.to_thread(normalize_payload, payload, context, self.store, self.pricing)

    async def _register_airports(self, payload: FlightOffersPayload) -> None:
        codes: Set[str] = set()
        for offer in payload.data:
            for itinerary in offer.itineraries[:1]:
                for leg in itinerary.segments:
                    for endpoint in (leg.departure, leg.arrival):
                        if endpoint is not None:
                            codes.add(endpoint.iata_code)
        missing = sorted(code for code in codes if self.store.airport_by_iata(code) is None)
        if not missing:
            return
        answers = await asyncio.gather(*[self.amadeus.locations(code) for code in missing], return_exceptions=True)
        for code, answer in zip(missing, answers):
            if isinstance(answer, BaseException):
                logger.warning("Airport lookup for %s failed", code, exc_info=answer)
                continue
            self.store.register_locations(answer)
