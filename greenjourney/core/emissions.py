"""CO2 and price calculators for each vehicle kind."""
from __future__ import annotations

import re
from datetime import timedelta
from math import atan2, cos, radians, sin, sqrt
from typing import List, Sequence

EARTH_RADIUS_KM = 6371.0

# kg of CO2 per km travelled
CAR_CO2_PER_KM = 0.2
TRAIN_CO2_PER_KM = 0.035
BUS_CO2_PER_KM = 0.03

CAR_KM_PER_LITER = 15.0

# Regression of fuel burn against block time, in minutes.
_AIRCRAFT_COEFFICIENTS = (
    2.163511e-9,
    -3.861958034e-6,
    1.920067332020e-3,
    0.410217102378141,
    20.868891633418,
)

_ISO_DURATION = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


def car_emission(distance_km: float) -> float:
    return CAR_CO2_PER_KM * distance_km


def train_emission(distance_km: float) -> float:
    return TRAIN_CO2_PER_KM * distance_km


def bus_emission(distance_km: float) -> float:
    return BUS_CO2_PER_KM * distance_km


def aircraft_emission(duration: timedelta) -> float:
    """kg of CO2 per passenger for a flight of the given duration."""
    minutes = duration.total_seconds() / 60.0
    result = 0.0
    for coefficient in _AIRCRAFT_COEFFICIENTS:
        result = result * minutes + coefficient
    return result


def transit_emission(mode: str, distance_km: float) -> float:
    if mode == "train":
        return train_emission(distance_km)
    if mode == "bus":
        return bus_emission(distance_km)
    return 0.0


def car_price(distance_km: float, fuel_cost_per_liter: float, toll_cost: float) -> float:
    return distance_km / CAR_KM_PER_LITER * fuel_cost_per_liter + toll_cost


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two points given in degrees."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dlat = phi2 - phi1
    dlon = radians(lon2) - radians(lon1)
    h = sin(dlat / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(h), sqrt(1 - h))


def apportion_flight_price(total_price: float, leg_distances: Sequence[float]) -> List[float]:
    """Split an offer's price over its legs by each leg's share of the distance."""
    if not leg_distances:
        return []
    total_distance = sum(leg_distances)
    if total_distance <= 0:
        share = total_price / len(leg_distances)
        return [share for _ in leg_distances]
    return [total_price * (distance / total_distance) for distance in leg_distances]


def parse_iso_duration(value: str) -> timedelta:
    """Parse the ``PT#H#M#S`` durations Amadeus returns."""
    match = _ISO_DURATION.match(value or "")
    if not match or value == "PT":
        raise ValueError(f"unsupported duration format: {value!r}")
    hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)
