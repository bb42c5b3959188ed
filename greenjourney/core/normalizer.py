"""Turn provider payloads into canonical ``Segment`` sequences."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Sequence, Tuple

from greenjourney.core.emissions import (
    aircraft_emission,
    apportion_flight_price,
    car_emission,
    car_price,
    haversine_km,
    parse_iso_duration,
    transit_emission,
)
from greenjourney.errors import ItineraryValidationError
from greenjourney.payloads import (
    DirectionsStep,
    DistanceMatrixPayload,
    FlightOffer,
    FlightOffersPayload,
    ProviderPayload,
    TransitDirectionsPayload,
    TransitStop,
)
from greenjourney.schemas import Airport, Place, PlaceRef, Segment

logger = logging.getLogger(__name__)

BUS_VEHICLES = frozenset({"BUS", "INTERCITY_BUS", "SHARE_TAXI", "TROLLEYBUS"})
TRAIN_VEHICLES = frozenset({
    "COMMUTER_TRAIN",
    "HEAVY_RAIL",
    "HIGH_SPEED_TRAIN",
    "LONG_DISTANCE_TRAIN",
    "METRO_RAIL",
    "MONORAIL",
    "RAIL",
    "SUBWAY",
    "TRAM",
})
ALLOWED_VEHICLES = {"bus": BUS_VEHICLES, "train": TRAIN_VEHICLES}

AMADEUS_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


class PlaceResolver(Protocol):
    def resolve_place(self, name: str, latitude: float, longitude: float, exact: bool = True) -> Place:
        ...

    def airport_by_iata(self, iata: str) -> Optional[Airport]:
        ...


class PriceLookup(Protocol):
    def toll_cost(self, origin: str, destination: str, distance_km: float) -> float:
        ...

    def fuel_cost_per_liter(self, origin: str) -> float:
        ...

    def transit_cost(self, origin: str, destination: str, mode: str, distance_km: float) -> float:
        ...


@dataclass
class SearchContext:
    """What one provider query was asked for."""

    origin: Place
    destination: Place
    departure: datetime
    mode: str
    is_outward: bool = True


# ------- transit directions -------
def normalize_provider_steps(
    steps: Sequence[DirectionsStep],
    origin: Place,
    destination: Place,
    mode: str,
    is_outward: bool,
    *,
    places: PlaceResolver,
    pricing: Optional[PriceLookup] = None,
) -> Tuple[List[Segment], bool]:
    """Decode one transit route; a rejected route comes back as ``([], False)``."""
    try:
        segments = decode_transit_steps(
            steps, origin, destination, mode, is_outward, places=places, pricing=pricing
        )
    except ValueError as exc:
        logger.warning("Discarding %s option %s -> %s: %s", mode, origin.name, destination.name, exc)
        return [], False
    return segments, True


def decode_transit_steps(
    steps: Sequence[DirectionsStep],
    origin: Place,
    destination: Place,
    mode: str,
    is_outward: bool,
    *,
    places: PlaceResolver,
    pricing: Optional[PriceLookup] = None,
) -> List[Segment]:
    if mode not in ALLOWED_VEHICLES:
        raise ItineraryValidationError(f"unsupported transit mode {mode!r}")
    if not steps:
        raise ItineraryValidationError("route has no steps")

    segments: List[Segment] = []
    for position, step in enumerate(steps, start=1):
        if step.is_walking:
            segments.append(_walking_segment(step, position, is_outward))
        else:
            segments.append(_transit_segment(step, position, mode, is_outward, places, pricing))

    if all(segment.is_walk for segment in segments):
        raise ItineraryValidationError("route has no transit step")

    pin_endpoints(segments, origin, destination)
    segments = compact_walking_runs(segments)
    backfill_walking_endpoints(segments, origin, destination)
    return segments


def _walking_segment(step: DirectionsStep, position: int, is_outward: bool) -> Segment:
    seconds = step.duration.value if step.duration and step.duration.value is not None else 0
    metres = step.distance.value if step.distance and step.distance.value is not None else 0
    return Segment(
        num_segment=position,
        duration=timedelta(seconds=seconds),
        vehicle="walk",
        distance=metres / 1000.0,
        is_outward=is_outward,
    )


def _require_stop(stop: Optional[TransitStop], label: str) -> TransitStop:
    if stop is None or stop.location is None or not stop.name:
        raise ItineraryValidationError(f"transit step is missing its {label} stop")
    return stop


def _transit_segment(
    step: DirectionsStep,
    position: int,
    mode: str,
    is_outward: bool,
    places: PlaceResolver,
    pricing: Optional[PriceLookup],
) -> Segment:
    details = step.transit_details
    if not step.travel_mode or details is None:
        raise ItineraryValidationError(f"step {position} has no transit details")
    line = details.line
    if line is None or line.vehicle is None or not line.vehicle.type:
        raise ItineraryValidationError(f"step {position} has no line vehicle")
    if details.departure_time is None or details.departure_time.value is None:
        raise ItineraryValidationError(f"step {position} has no departure time")
    departure_stop = _require_stop(details.departure_stop, "departure")
    arrival_stop = _require_stop(details.arrival_stop, "arrival")
    if step.distance is None or step.distance.value is None:
        raise ItineraryValidationError(f"step {position} has no distance")
    if step.duration is None or step.duration.value is None:
        raise ItineraryValidationError(f"step {position} has no duration")

    if line.vehicle.type not in ALLOWED_VEHICLES[mode]:
        raise ItineraryValidationError(f"vehicle {line.vehicle.type} does not match mode {mode}")

    distance = step.distance.value / 1000.0
    departure = places.resolve_place(
        departure_stop.name, departure_stop.location.lat, departure_stop.location.lng, exact=True
    )
    arrival = places.resolve_place(
        arrival_stop.name, arrival_stop.location.lat, arrival_stop.location.lng, exact=True
    )
    price = pricing.transit_cost(departure.name, arrival.name, mode, distance) if pricing else 0.0

    return Segment(
        num_segment=position,
        departure=PlaceRef.from_place(departure),
        destination=PlaceRef.from_place(arrival),
        date_time=datetime.fromtimestamp(details.departure_time.value, tz=timezone.utc),
        duration=timedelta(seconds=step.duration.value),
        vehicle=mode,
        description=", ".join(part for part in (line.short_name, line.name) if part),
        price=price,
        co2_emitted=transit_emission(mode, distance),
        distance=distance,
        is_outward=is_outward,
    )


def pin_endpoints(segments: List[Segment], origin: Place, destination: Place) -> None:
    """Anchor the first and last ridden legs on the queried places."""
    ridden = [segment for segment in segments if not segment.is_walk]
    if not ridden:
        return
    ridden[0].depart_from(origin)
    ridden[-1].arrive_at(destination)


def compact_walking_runs(segments: Sequence[Segment]) -> List[Segment]:
    """Collapse every run of consecutive walks into one walk and renumber 1..N."""
    compacted: List[Segment] = []
    run: List[Segment] = []

    def flush() -> None:
        if not run:
            return
        compacted.append(
            Segment(
                num_segment=1,
                duration=sum((walk.duration for walk in run), timedelta(0)),
                vehicle="walk",
                distance=sum(walk.distance for walk in run),
                is_outward=run[0].is_outward,
            )
        )
        run.clear()

    for segment in segments:
        if segment.is_walk:
            run.append(segment)
            continue
        flush()
        compacted.append(segment)
    flush()

    for number, segment in enumerate(compacted, start=1):
        segment.num_segment = number
    return compacted


def backfill_walking_endpoints(segments: List[Segment], origin: Place, destination: Place) -> None:
    last = len(segments) - 1
    for index, walk in enumerate(segments):
        if not walk.is_walk:
            continue
        previous = segments[index - 1] if index > 0 else None
        following = segments[index + 1] if index < last else None

        walk.departure = previous.destination if previous else PlaceRef.from_place(origin)
        walk.destination = following.departure if following else PlaceRef.from_place(destination)

        if following is not None and following.date_time is not None:
            walk.date_time = following.date_time - walk.duration
        elif following is None and previous is not None and previous.date_time is not None:
            walk.date_time = previous.date_time + previous.duration


def normalize_transit_directions(
    payload: TransitDirectionsPayload,
    context: SearchContext,
    places: PlaceResolver,
    pricing: Optional[PriceLookup] = None,
) -> List[List[Segment]]:
    routes = [route for route in payload.routes if route.legs]
    if not routes:
        raise ItineraryValidationError(f"no {context.mode} route between {context.origin.name} and {context.destination.name}")
    options: List[List[Segment]] = []
    for route in routes:
        segments, ok = normalize_provider_steps(
            route.legs[0].steps,
            context.origin,
            context.destination,
            context.mode,
            context.is_outward,
            places=places,
            pricing=pricing,
        )
        if ok:
            options.append(segments)
    return options


# ------- flights -------
def normalize_flight_offers(
    payload: FlightOffersPayload,
    context: SearchContext,
    places: PlaceResolver,
) -> List[List[Segment]]:
    options: List[List[Segment]] = []
    for index, offer in enumerate(payload.data):
        try:
            options.append(_flight_option(offer, context.is_outward, places))
        except ValueError as exc:
            logger.warning("Skipping flight offer %d: %s", index, exc)
    return options


def _flight_option(offer: FlightOffer, is_outward: bool, places: PlaceResolver) -> List[Segment]:
    if not offer.itineraries or not offer.itineraries[0].segments:
        raise ItineraryValidationError("offer has no itinerary")

    segments: List[Segment] = []
    distances: List[float] = []
    for position, leg in enumerate(offer.itineraries[0].segments, start=1):
        if leg.departure is None or leg.arrival is None:
            raise ItineraryValidationError(f"leg {position} is missing an endpoint")
        try:
            departs_at = datetime.strptime(leg.departure.at or "", AMADEUS_TIME_FORMAT)
            duration = parse_iso_duration(leg.duration or "")
        except ValueError as exc:
            raise ItineraryValidationError(f"leg {position}: {exc}") from exc

        origin_airport = places.airport_by_iata(leg.departure.iata_code)
        arrival_airport = places.airport_by_iata(leg.arrival.iata_code)
        if origin_airport is None or arrival_airport is None:
            raise ItineraryValidationError(
                f"unknown airport on leg {position} ({leg.departure.iata_code} -> {leg.arrival.iata_code})"
            )

        distance = haversine_km(
            origin_airport.latitude,
            origin_airport.longitude,
            arrival_airport.latitude,
            arrival_airport.longitude,
        )
        distances.append(distance)
        segments.append(
            Segment(
                num_segment=position,
                departure=PlaceRef.from_place(origin_airport.city),
                destination=PlaceRef.from_place(arrival_airport.city),
                date_time=departs_at,
                duration=duration,
                vehicle="plane",
                description=f"{leg.carrier_code} {leg.number}".strip(),
                co2_emitted=aircraft_emission(duration),
                distance=distance,
                is_outward=is_outward,
            )
        )

    for segment, price in zip(segments, apportion_flight_price(offer.total_price(), distances)):
        segment.price = price
    return segments


# ------- car and bike -------
def normalize_distance_matrix(
    payload: DistanceMatrixPayload,
    context: SearchContext,
    pricing: Optional[PriceLookup] = None,
) -> List[List[Segment]]:
    element = payload.first_element()
    if element is None or element.distance is None or element.duration is None:
        raise ItineraryValidationError(f"no {context.mode} element in distance matrix")
    if element.distance.value is None or element.duration.value is None:
        raise ItineraryValidationError(f"incomplete {context.mode} element in distance matrix")
    if context.mode not in ("car", "bike"):
        raise ItineraryValidationError(f"distance matrix cannot serve mode {context.mode!r}")

    distance = element.distance.value / 1000.0
    co2 = 0.0
    price = 0.0
    if context.mode == "car":
        co2 = car_emission(distance)
        if pricing is not None:
            fuel = pricing.fuel_cost_per_liter(context.origin.name)
            toll = pricing.toll_cost(context.origin.name, context.destination.name, distance)
            price = car_price(distance, fuel, toll)

    segment = Segment(
        num_segment=1,
        departure=PlaceRef.from_place(context.origin),
        destination=PlaceRef.from_place(context.destination),
        date_time=context.departure,
        duration=timedelta(seconds=element.duration.value),
        vehicle=context.mode,
        price=price,
        co2_emitted=co2,
        distance=distance,
        is_outward=context.is_outward,
    )
    return [[segment]]


def normalize_payload(
    payload: ProviderPayload,
    context: SearchContext,
    places: PlaceResolver,
    pricing: Optional[PriceLookup] = None,
) -> List[List[Segment]]:
    if payload.kind == "flight_offers":
        return normalize_flight_offers(payload, context, places)
    if payload.kind == "distance_matrix":
        return normalize_distance_matrix(payload, context, pricing)
    if payload.kind == "transit_directions":
        return normalize_transit_directions(payload, context, places, pricing)
    raise ItineraryValidationError(f"unknown payload kind {payload.kind!r}")
