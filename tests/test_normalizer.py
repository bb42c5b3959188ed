import copy
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Dict, List, Optional

import pytest
from pydantic import TypeAdapter

from greenjourney.core.emissions import aircraft_emission
from greenjourney.core.normalizer import (
    SearchContext,
    compact_walking_runs,
    decode_transit_steps,
    normalize_distance_matrix,
    normalize_flight_offers,
    normalize_payload,
    normalize_provider_steps,
    normalize_transit_directions,
)
from greenjourney.errors import ItineraryValidationError
from greenjourney.payloads import (
    DirectionsStep,
    DistanceMatrixPayload,
    FlightOffersPayload,
    ProviderPayload,
    TransitDirectionsPayload,
)
from greenjourney.schemas import Airport, Place, PlaceRef, Segment

CITY_A = Place(place_id=100, name="CityA", country_name="Italy", latitude=45.46, longitude=9.19)
CITY_B = Place(place_id=200, name="CityB", country_name="Italy", latitude=41.90, longitude=12.50)
DEPART_EPOCH = 1_700_000_000


class FakePlaces:
    def __init__(self, airports: Optional[Dict[str, Airport]] = None):
        self._ids = count(1)
        self.resolved: List[tuple] = []
        self.airports = airports or {}

    def resolve_place(self, name, latitude, longitude, exact=True):
        self.resolved.append((name, exact))
        return Place(place_id=next(self._ids), name=name, latitude=latitude, longitude=longitude)

    def airport_by_iata(self, iata):
        return self.airports.get(iata)


class FakePricing:
    def __init__(self, toll=5.0, fuel=2.0, transit=12.5):
        self.toll, self.fuel, self.transit = toll, fuel, transit
        self.transit_calls: List[tuple] = []

    def toll_cost(self, origin, destination, distance_km):
        return self.toll

    def fuel_cost_per_liter(self, origin):
        return self.fuel

    def transit_cost(self, origin, destination, mode, distance_km):
        self.transit_calls.append((origin, destination, mode, distance_km))
        return self.transit


def walk(seconds: int, metres: int = 100) -> dict:
    return {
        "travel_mode": "WALKING",
        "distance": {"text": "", "value": metres},
        "duration": {"text": "", "value": seconds},
    }


def ride(
    vehicle_type: str = "HEAVY_RAIL",
    departure=("Milano Centrale", 45.48, 9.20),
    arrival=("Roma Termini", 41.90, 12.50),
    depart_at: int = DEPART_EPOCH,
    seconds: int = 3600,
    metres: int = 100_000,
) -> dict:
    return {
        "travel_mode": "TRANSIT",
        "distance": {"text": "", "value": metres},
        "duration": {"text": "", "value": seconds},
        "transit_details": {
            "departure_stop": {"name": departure[0], "location": {"lat": departure[1], "lng": departure[2]}},
            "arrival_stop": {"name": arrival[0], "location": {"lat": arrival[1], "lng": arrival[2]}},
            "departure_time": {"text": "", "value": depart_at},
            "line": {"name": "Frecciarossa", "short_name": "FR", "vehicle": {"name": "Train", "type": vehicle_type}},
        },
    }


def steps(*raw: dict) -> List[DirectionsStep]:
    return [DirectionsStep.model_validate(item) for item in raw]


def decode(raw_steps, mode="train", places=None, pricing=None):
    return decode_transit_steps(
        steps(*raw_steps), CITY_A, CITY_B, mode, True, places=places or FakePlaces(), pricing=pricing
    )


def test_consecutive_walks_collapse_into_one_leg():
    segments = decode([walk(120, 100), walk(180, 200), walk(300, 300), ride(), walk(60, 50)])

    assert [s.vehicle for s in segments] == ["walk", "train", "walk"]
    assert [s.num_segment for s in segments] == [1, 2, 3]
    assert segments[0].duration == timedelta(minutes=10)
    assert segments[0].distance == pytest.approx(0.6)
    assert segments[2].duration == timedelta(minutes=1)
    assert segments[2].distance == pytest.approx(0.05)


def test_trailing_walk_run_is_kept():
    segments = decode([ride(), walk(60), walk(120)])

    assert [s.vehicle for s in segments] == ["train", "walk"]
    assert segments[-1].duration == timedelta(minutes=3)


def test_endpoints_are_pinned_to_queried_places():
    segments = decode(
        [
            ride(departure=("Stop 1", 45.0, 9.0), arrival=("Stop 2", 44.0, 10.0)),
            ride(departure=("Stop 2", 44.0, 10.0), arrival=("Stop 3", 42.0, 12.0), depart_at=DEPART_EPOCH + 7200),
        ]
    )

    assert segments[0].departure == PlaceRef.from_place(CITY_A)
    assert segments[0].destination.name == "Stop 2"
    assert segments[1].departure.name == "Stop 2"
    assert segments[-1].destination == PlaceRef.from_place(CITY_B)


def test_walking_legs_are_backfilled_from_neighbours():
    segments = decode([walk(300), ride(seconds=3600), walk(600)])
    leading, train, trailing = segments
    depart = datetime.fromtimestamp(DEPART_EPOCH, tz=timezone.utc)

    assert leading.departure == PlaceRef.from_place(CITY_A)
    assert leading.destination == train.departure
    assert leading.date_time == depart - timedelta(minutes=5)

    assert trailing.departure == train.destination == PlaceRef.from_place(CITY_B)
    assert trailing.destination == PlaceRef.from_place(CITY_B)
    assert trailing.date_time == depart + timedelta(hours=1)


def test_walk_between_rides_connects_their_stops():
    segments = decode(
        [
            ride(arrival=("Bologna", 44.5, 11.3)),
            walk(240),
            ride(departure=("Bologna AV", 44.5, 11.3), depart_at=DEPART_EPOCH + 5400),
        ]
    )
    first, connector, second = segments

    assert connector.departure.name == "Bologna"
    assert connector.destination.name == "Bologna AV"
    assert connector.date_time == second.date_time - timedelta(minutes=4)


def test_transit_segment_carries_emission_price_and_description():
    pricing = FakePricing(transit=12.5)
    places = FakePlaces()
    segments = decode([ride(metres=100_000)], places=places, pricing=pricing)
    train = segments[0]

    assert train.distance == pytest.approx(100.0)
    assert train.co2_emitted == pytest.approx(3.5)
    assert train.price == pytest.approx(12.5)
    assert train.description == "FR, Frecciarossa"
    assert train.date_time == datetime.fromtimestamp(DEPART_EPOCH, tz=timezone.utc)
    assert pricing.transit_calls == [("Milano Centrale", "Roma Termini", "train", pytest.approx(100.0))]
    assert places.resolved == [("Milano Centrale", True), ("Roma Termini", True)]


def test_bus_mode_accepts_bus_vehicles_only():
    segments = decode([ride(vehicle_type="INTERCITY_BUS", metres=50_000)], mode="bus")
    assert segments[0].vehicle == "bus"
    assert segments[0].co2_emitted == pytest.approx(1.5)

    result, ok = normalize_provider_steps(
        steps(ride(vehicle_type="HEAVY_RAIL")), CITY_A, CITY_B, "bus", True, places=FakePlaces()
    )
    assert (result, ok) == ([], False)


def _drop(*path):
    def mutate(step):
        node = step
        for key in path[:-1]:
            node = node[key]
        node.pop(path[-1])
    return mutate


@pytest.mark.parametrize(
    "mutate",
    [
        _drop("travel_mode"),
        _drop("transit_details"),
        _drop("transit_details", "line"),
        _drop("transit_details", "line", "vehicle"),
        _drop("transit_details", "line", "vehicle", "type"),
        _drop("transit_details", "departure_time"),
        _drop("transit_details", "departure_stop"),
        _drop("transit_details", "departure_stop", "location"),
        _drop("transit_details", "arrival_stop"),
        _drop("transit_details", "arrival_stop", "location"),
        _drop("distance"),
        _drop("duration"),
    ],
)
def test_transit_step_missing_a_field_rejects_the_option(mutate):
    broken = copy.deepcopy(ride(depart_at=DEPART_EPOCH + 3600))
    mutate(broken)

    result, ok = normalize_provider_steps(
        steps(walk(60), ride(), broken), CITY_A, CITY_B, "train", True, places=FakePlaces()
    )

    assert ok is False
    assert result == []


def test_walking_step_without_distance_defaults_to_zero():
    segments = decode([{"travel_mode": "WALKING"}, ride()])
    assert segments[0].distance == 0.0
    assert segments[0].duration == timedelta(0)


def test_walk_only_route_is_rejected():
    result, ok = normalize_provider_steps(steps(walk(60), walk(60)), CITY_A, CITY_B, "train", True, places=FakePlaces())
    assert (result, ok) == ([], False)


def test_negative_walking_distance_rejects_the_option():
    result, ok = normalize_provider_steps(
        steps(walk(60, metres=-5), ride(vehicle_type="BUS")), CITY_A, CITY_B, "bus", True, places=FakePlaces()
    )
    assert (result, ok) == ([], False)


def test_negative_fare_rejects_the_option():
    result, ok = normalize_provider_steps(
        steps(ride(vehicle_type="BUS")),
        CITY_A,
        CITY_B,
        "bus",
        True,
        places=FakePlaces(),
        pricing=FakePricing(transit=-3.0),
    )
    assert (result, ok) == ([], False)


def test_invalid_route_does_not_hide_the_valid_ones():
    payload = TransitDirectionsPayload.model_validate(
        {
            "status": "OK",
            "routes": [
                {"legs": [{"steps": [walk(60, metres=-5), ride(vehicle_type="BUS")]}]},
                {"legs": [{"steps": [walk(60), ride(vehicle_type="BUS")]}]},
            ],
        }
    )

    options = normalize_transit_directions(payload, _context(mode="bus"), FakePlaces())

    assert len(options) == 1
    assert [s.vehicle for s in options[0]] == ["walk", "bus"]


def test_compaction_keeps_direction_flag():
    raw = [
        Segment(num_segment=1, vehicle="walk", duration=timedelta(minutes=1), is_outward=False),
        Segment(num_segment=2, vehicle="walk", duration=timedelta(minutes=2), is_outward=False),
    ]
    compacted = compact_walking_runs(raw)
    assert len(compacted) == 1
    assert compacted[0].is_outward is False
    assert compacted[0].num_segment == 1


# ------- flights -------
def _airport(iata, lat, lon, city_name, place_id):
    city = Place(place_id=place_id, name=city_name, iata=iata[:3], latitude=lat, longitude=lon)
    return Airport(name=f"{city_name} Airport", iata=iata, latitude=lat, longitude=lon, city=city)


AIRPORTS = {
    "MXP": _airport("MXP", 45.63, 8.72, "Milan", 1),
    "FRA": _airport("FRA", 50.03, 8.56, "Frankfurt", 2),
    "LHR": _airport("LHR", 51.47, -0.45, "London", 3),
}


def _leg(origin, destination, at, duration, number):
    return {
        "departure": {"iataCode": origin, "at": at},
        "arrival": {"iataCode": destination, "at": at},
        "carrierCode": "LH",
        "number": number,
        "duration": duration,
    }


def _context(mode="plane"):
    return SearchContext(origin=CITY_A, destination=CITY_B, departure=datetime(2025, 3, 1, 9, 0), mode=mode)


def test_flight_offers_become_options_and_bad_offers_are_skipped():
    payload = FlightOffersPayload.model_validate(
        {
            "data": [
                {
                    "price": {"grandTotal": "300.00"},
                    "itineraries": [
                        {
                            "segments": [
                                _leg("MXP", "FRA", "2025-03-01T07:00:00", "PT1H15M", "331"),
                                _leg("FRA", "LHR", "2025-03-01T10:00:00", "PT1H40M", "900"),
                            ]
                        }
                    ],
                },
                {
                    "price": {"grandTotal": "120.00"},
                    "itineraries": [{"segments": [_leg("MXP", "XXX", "2025-03-01T08:00:00", "PT2H", "1")]}],
                },
                {
                    "price": {"grandTotal": "99.00"},
                    "itineraries": [{"segments": [_leg("MXP", "LHR", "not-a-date", "PT2H", "2")]}],
                },
            ]
        }
    )

    options = normalize_flight_offers(payload, _context(), FakePlaces(AIRPORTS))

    assert len(options) == 1
    first, second = options[0]
    assert [first.num_segment, second.num_segment] == [1, 2]
    assert first.description == "LH 331"
    assert first.departure.name == "Milan"
    assert second.destination.name == "London"
    assert first.date_time == datetime(2025, 3, 1, 7, 0)
    assert first.co2_emitted == pytest.approx(aircraft_emission(timedelta(minutes=75)))
    assert first.price + second.price == pytest.approx(300.0)
    assert first.price / second.price == pytest.approx(first.distance / second.distance)


def test_flight_offer_with_unparsable_price_is_free():
    payload = FlightOffersPayload.model_validate(
        {
            "data": [
                {
                    "price": {"grandTotal": "n/a"},
                    "itineraries": [{"segments": [_leg("MXP", "LHR", "2025-03-01T07:00:00", "PT2H", "7")]}],
                }
            ]
        }
    )
    options = normalize_flight_offers(payload, _context(), FakePlaces(AIRPORTS))
    assert options[0][0].price == 0.0


# ------- car and bike -------
def _matrix(distance_m: Optional[int] = 150_000, duration_s: Optional[int] = 5400) -> DistanceMatrixPayload:
    element = {"status": "OK"}
    if distance_m is not None:
        element["distance"] = {"text": "", "value": distance_m}
    if duration_s is not None:
        element["duration"] = {"text": "", "value": duration_s}
    return DistanceMatrixPayload.model_validate({"rows": [{"elements": [element]}]})


def test_car_option_uses_fuel_and_toll():
    options = normalize_distance_matrix(_matrix(), _context("car"), FakePricing(toll=5.0, fuel=2.0))

    (segment,), = options
    assert segment.vehicle == "car"
    assert segment.distance == pytest.approx(150.0)
    assert segment.co2_emitted == pytest.approx(30.0)
    assert segment.price == pytest.approx(25.0)
    assert segment.duration == timedelta(minutes=90)
    assert segment.departure == PlaceRef.from_place(CITY_A)
    assert segment.destination == PlaceRef.from_place(CITY_B)
    assert segment.date_time == datetime(2025, 3, 1, 9, 0)


def test_bike_option_is_free_and_clean():
    (segment,), = normalize_distance_matrix(_matrix(), _context("bike"), FakePricing())
    assert segment.vehicle == "bike"
    assert segment.price == 0.0
    assert segment.co2_emitted == 0.0


def test_distance_matrix_without_duration_fails():
    with pytest.raises(ItineraryValidationError):
        normalize_distance_matrix(_matrix(duration_s=None), _context("car"), FakePricing())
    with pytest.raises(ItineraryValidationError):
        normalize_distance_matrix(DistanceMatrixPayload(), _context("car"), FakePricing())


def test_normalize_payload_dispatches_on_kind():
    adapter = TypeAdapter(ProviderPayload)
    matrix = adapter.validate_python(
        {
            "kind": "distance_matrix",
            "rows": [{"elements": [{"distance": {"value": 10_000}, "duration": {"value": 1800}}]}],
        }
    )
    transit = adapter.validate_python(
        {"kind": "transit_directions", "routes": [{"legs": [{"steps": [walk(60), ride()]}]}]}
    )

    assert isinstance(matrix, DistanceMatrixPayload)
    bike = normalize_payload(matrix, _context("bike"), FakePlaces())
    assert bike[0][0].vehicle == "bike"

    train = normalize_payload(transit, _context("train"), FakePlaces(), FakePricing())
    assert [s.vehicle for s in train[0]] == ["walk", "train"]
