"""Eco-score deltas and badge tiers."""
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from greenjourney.errors import DegenerateScoreError
from greenjourney.schemas import Badge, ScoreDelta, Segment, TravelDetails

VEHICLE_WEIGHTS = {
    "car": 0.05,
    "bike": 0.05,
    "plane": 0.05,
    "train": 0.44,
    "bus": 0.44,
}
COMPENSATION_COEFFICIENT = 0.12
FULL_OFFSET_BONUS = 2.0
SHORT_DISTANCE_LIMIT_KM = 800.0

DISTANCE_THRESHOLDS = (3000.0, 5000.0, 10000.0)
ECOLOGICAL_CHOICE_THRESHOLDS = (15.0, 20.0, 30.0)
COMPENSATION_THRESHOLDS = (0.2, 0.5, 0.8)
TRAVELS_NUMBER_THRESHOLDS = (5, 10, 30)


def travel_totals(segments: Iterable[Segment]) -> Tuple[float, float]:
    """Return (distance km, CO2 kg) summed over ``segments``."""
    distance = 0.0
    co2 = 0.0
    for segment in segments:
        distance += segment.distance
        co2 += segment.co2_emitted
    return distance, co2


def travel_coefficient(segments: Iterable[Segment]) -> float:
    """Distance-weighted blend of the per-vehicle weights; walks do not count."""
    weighted = 0.0
    total = 0.0
    for segment in segments:
        weight = VEHICLE_WEIGHTS.get(segment.vehicle)
        if weight is None:
            continue
        weighted += weight * segment.distance
        total += segment.distance
    if total == 0:
        raise DegenerateScoreError("no segment with positive distance")
    return weighted / total


def confirmation_score(coefficient: float, distance: float, co2: float) -> float:
    if co2 == 0:
        return coefficient * distance
    return coefficient * distance / co2


def compensation_score(increase: float, new_total: float, co2_emitted: float) -> float:
    score = COMPENSATION_COEFFICIENT * increase
    # a zero-emission travel has nothing to offset
    if new_total > 0 and math.isclose(new_total, co2_emitted, rel_tol=0.0, abs_tol=1e-9):
        score += FULL_OFFSET_BONUS
    return score


def is_short_distance(distance: float) -> bool:
    return distance <= SHORT_DISTANCE_LIMIT_KM


def compute_score_delta(
    details: TravelDetails,
    new_compensation: Optional[float] = None,
    new_confirmed: Optional[bool] = None,
) -> ScoreDelta:
    """Score earned by moving ``details.travel`` to the given state.

    ``None`` leaves the corresponding field unchanged. Only a false -> true
    confirmation and an increase in compensation earn points.
    """
    travel = details.travel
    distance, co2 = travel_totals(details.segments)
    short = is_short_distance(distance)
    try:
        coefficient = travel_coefficient(details.segments)
    except DegenerateScoreError:
        return ScoreDelta(delta=0.0, is_short_distance=True, ok=False)

    delta = 0.0
    if new_confirmed and not travel.confirmed:
        delta += confirmation_score(coefficient, distance, co2)
    if new_compensation is not None and new_compensation > travel.co2_compensated:
        delta += compensation_score(new_compensation - travel.co2_compensated, new_compensation, co2)
    return ScoreDelta(delta=delta, is_short_distance=short, ok=True)


def compute_delete_delta(details: TravelDetails) -> ScoreDelta:
    """Score to revoke when ``details`` is deleted (positive; the caller subtracts it)."""
    travel = details.travel
    if not travel.confirmed:
        return ScoreDelta(delta=0.0, is_short_distance=True, ok=True)

    distance, co2 = travel_totals(details.segments)
    try:
        coefficient = travel_coefficient(details.segments)
    except DegenerateScoreError:
        return ScoreDelta(delta=0.0, is_short_distance=True, ok=False)

    delta = confirmation_score(coefficient, distance, co2)
    delta += compensation_score(travel.co2_compensated, travel.co2_compensated, co2)
    return ScoreDelta(delta=delta, is_short_distance=is_short_distance(distance), ok=True)


# ------- badges -------
def _tier(value: float, thresholds: Sequence[float], badges: Sequence[Badge]) -> Optional[Badge]:
    tier: Optional[Badge] = None
    for threshold, badge in zip(thresholds, badges):
        if value >= threshold:
            tier = badge
    return tier


def distance_badge(distance: float) -> Optional[Badge]:
    return _tier(
        distance,
        DISTANCE_THRESHOLDS,
        (Badge.DISTANCE_LOW, Badge.DISTANCE_MID, Badge.DISTANCE_HIGH),
    )


def ecological_choice_badge(distance: float, co2_emitted: float) -> Optional[Badge]:
    if co2_emitted == 0:
        ratio = math.inf if distance > 0 else 0.0
    else:
        ratio = distance / co2_emitted
    return _tier(
        ratio,
        ECOLOGICAL_CHOICE_THRESHOLDS,
        (Badge.ECOLOGICAL_CHOICE_LOW, Badge.ECOLOGICAL_CHOICE_MID, Badge.ECOLOGICAL_CHOICE_HIGH),
    )


def compensation_badge(co2_compensated: float, co2_emitted: float) -> Optional[Badge]:
    ratio = co2_compensated / co2_emitted if co2_emitted > 0 else 0.0
    return _tier(
        ratio,
        COMPENSATION_THRESHOLDS,
        (Badge.COMPENSATION_LOW, Badge.COMPENSATION_MID, Badge.COMPENSATION_HIGH),
    )


def travels_number_badge(travel_count: int) -> Optional[Badge]:
    return _tier(
        travel_count,
        TRAVELS_NUMBER_THRESHOLDS,
        (Badge.TRAVELS_NUMBER_LOW, Badge.TRAVELS_NUMBER_MID, Badge.TRAVELS_NUMBER_HIGH),
    )


def compute_badges(
    distance: float,
    co2_emitted: float,
    co2_compensated: float,
    travel_count: int,
) -> List[Badge]:
    candidates = (
        distance_badge(distance),
        ecological_choice_badge(distance, co2_emitted),
        compensation_badge(co2_compensated, co2_emitted),
        travels_number_badge(travel_count),
    )
    return [badge for badge in candidates if badge is not None]
