"""In-process repository for places, users, travels and reviews.

Every public method takes the store lock for the data it touches. Travel
updates and deletions apply their score delta inside the same critical
section as the travel mutation. Place resolution locks the lookup and the
creation separately, so two concurrent resolutions of an unseen place may
both create it.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Dict, Iterable, List, Optional

from greenjourney.core.emissions import haversine_km
from greenjourney.core.scoring import compute_badges, compute_delete_delta, compute_score_delta
from greenjourney.errors import InvalidReviewError, InvalidTravelError, NotFoundError
from greenjourney.payloads import AmadeusLocation, LocationsPayload
from greenjourney.schemas import (
    Airport,
    Badge,
    CityReviewElement,
    Place,
    Ranking,
    RankingElement,
    Review,
    ReviewInput,
    ReviewsAggregated,
    Travel,
    TravelDetails,
    TravelUpdate,
    User,
    UserCreate,
)

logger = logging.getLogger(__name__)

COORDINATE_DELTA = 0.3
RANKING_SIZE = 10
BEST_CITIES = 5
REVIEWS_PAGE_SIZE = 10


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = {name: count(1) for name in ("place", "user", "travel", "segment", "review")}
        self._places: Dict[int, Place] = {}
        self._airports: Dict[str, Airport] = {}
        self._users: Dict[int, User] = {}
        self._travels: Dict[int, TravelDetails] = {}
        self._reviews: Dict[int, Review] = {}
        self._aggregates: Dict[int, ReviewsAggregated] = {}

    def _next_id(self, kind: str) -> int:
        return next(self._ids[kind])

    # ------- places -------
    def add_place(
        self,
        name: str,
        latitude: float,
        longitude: float,
        *,
        iata: Optional[str] = None,
        country_name: Optional[str] = None,
        country_code: Optional[str] = None,
    ) -> Place:
        with self._lock:
            place = Place(
                place_id=self._next_id("place"),
                name=name,
                country_name=country_name,
                country_code=country_code,
                iata=iata,
                latitude=latitude,
                longitude=longitude,
            )
            self._places[place.place_id] = place
            return place

    def get_place(self, place_id: int) -> Place:
        with self._lock:
            try:
                return self._places[place_id]
            except KeyError:
                raise NotFoundError(f"place {place_id} not found") from None

    def find_place_by_name(self, name: str, latitude: float, longitude: float) -> Optional[Place]:
        """Closest place called ``name``, if any."""
        with self._lock:
            matches = [place for place in self._places.values() if place.name == name]
        if not matches:
            return None
        return min(matches, key=lambda p: haversine_km(latitude, longitude, p.latitude, p.longitude))

    def find_place_near(self, latitude: float, longitude: float, delta: float = COORDINATE_DELTA) -> Optional[Place]:
        with self._lock:
            nearby = [
                place
                for place in self._places.values()
                if abs(place.latitude - latitude) <= delta and abs(place.longitude - longitude) <= delta
            ]
        if not nearby:
            return None
        nearby.sort(key=lambda p: (p.latitude - latitude) ** 2 + (p.longitude - longitude) ** 2)
        for place in nearby:
            if place.iata:
                return place
        return nearby[0]

    def resolve_place(self, name: str, latitude: float, longitude: float, exact: bool = True) -> Place:
        place = self.find_place_by_name(name, latitude, longitude)
        if place is None and not exact:
            place = self.find_place_near(latitude, longitude)
        if place is not None:
            return place
        logger.debug("Creating place %s (%.4f, %.4f)", name, latitude, longitude)
        return self.add_place(name, latitude, longitude)

    def place_by_iata(self, iata: str, country_code: Optional[str] = None) -> Optional[Place]:
        with self._lock:
            for place in self._places.values():
                if place.iata == iata and (country_code is None or place.country_code == country_code):
                    return place
        return None

    # ------- airports -------
    def add_airport(self, name: str, iata: str, latitude: float, longitude: float, city: Place) -> Airport:
        airport = Airport(name=name, iata=iata, latitude=latitude, longitude=longitude, city=city)
        with self._lock:
            self._airports[iata] = airport
        return airport

    def airport_by_iata(self, iata: str) -> Optional[Airport]:
        with self._lock:
            return self._airports.get(iata)

    def register_locations(self, payload: LocationsPayload) -> int:
        """Record the cities and airports of an Amadeus locations answer.

        Cities are stored before airports so an airport can attach to a city
        listed in the same answer. Returns the number of airports added.
        """
        usable = [location for location in payload.data if _is_complete(location)]
        for location in usable:
            if location.sub_type != "CITY":
                continue
            address = location.address
            if self.place_by_iata(location.iata_code, address.country_code) is None:
                self.add_place(
                    _title(address.city_name or location.name),
                    location.geo_code.latitude,
                    location.geo_code.longitude,
                    iata=location.iata_code,
                    country_name=_title(address.country_name) if address.country_name else None,
                    country_code=address.country_code,
                )

        added = 0
        for location in usable:
            if location.sub_type != "AIRPORT" or self.airport_by_iata(location.iata_code):
                continue
            city = self.place_by_iata(location.address.city_code, location.address.country_code)
            if city is None:
                logger.debug("No city %s for airport %s", location.address.city_code, location.iata_code)
                continue
            self.add_airport(
                _title(location.name),
                location.iata_code,
                location.geo_code.latitude,
                location.geo_code.longitude,
                city,
            )
            added += 1
        return added

    # ------- users -------
    def add_user(self, data: UserCreate) -> User:
        with self._lock:
            user = User(user_id=self._next_id("user"), first_name=data.first_name, last_name=data.last_name)
            self._users[user.user_id] = user
            return user.model_copy()

    def get_user(self, user_id: int) -> User:
        with self._lock:
            user = self._require_user(user_id)
            return user.model_copy(update={"badges": self._badges_for(user_id)})

    def _require_user(self, user_id: int) -> User:
        try:
            return self._users[user_id]
        except KeyError:
            raise NotFoundError(f"user {user_id} not found") from None

    def _confirmed_travels(self, user_id: int) -> List[TravelDetails]:
        return [
            details
            for details in self._travels.values()
            if details.travel.user_id == user_id and details.travel.confirmed
        ]

    def _badges_for(self, user_id: int) -> List[Badge]:
        confirmed = self._confirmed_travels(user_id)
        distance = sum(details.total_distance for details in confirmed)
        emitted = sum(details.total_co2_emitted for details in confirmed)
        compensated = sum(details.travel.co2_compensated for details in confirmed)
        return compute_badges(distance, emitted, compensated, len(confirmed))

    # ------- travels -------
    def create_travel(self, details: TravelDetails) -> TravelDetails:
        travel = details.travel
        if travel.co2_compensated != 0:
            raise InvalidTravelError("a new travel cannot carry compensated CO2")
        if travel.confirmed:
            raise InvalidTravelError("a new travel cannot be confirmed")
        if not details.segments:
            raise InvalidTravelError("a travel needs at least one segment")
        _check_numbering(details)

        with self._lock:
            self._require_user(travel.user_id)
            for segment in details.segments:
                if segment.is_walk:
                    continue
                for ref in (segment.departure, segment.destination):
                    if ref is None or ref.place_id not in self._places:
                        raise InvalidTravelError(f"segment {segment.num_segment} references an unknown place")

            stored = details.model_copy(deep=True)
            stored.travel.travel_id = self._next_id("travel")
            for segment in stored.segments:
                segment.segment_id = self._next_id("segment")
                segment.travel_id = stored.travel.travel_id
            self._travels[stored.travel.travel_id] = stored
            logger.info("Created travel %s for user %s", stored.travel.travel_id, travel.user_id)
            return stored.model_copy(deep=True)

    def list_travels(self, user_id: int) -> List[TravelDetails]:
        with self._lock:
            self._require_user(user_id)
            return [
                details.model_copy(deep=True)
                for details in self._travels.values()
                if details.travel.user_id == user_id
            ]

    def get_travel(self, travel_id: int) -> TravelDetails:
        with self._lock:
            return self._require_travel(travel_id).model_copy(deep=True)

    def _require_travel(self, travel_id: int) -> TravelDetails:
        try:
            return self._travels[travel_id]
        except KeyError:
            raise NotFoundError(f"travel {travel_id} not found") from None

    def update_travel(self, travel_id: int, update: TravelUpdate) -> Travel:
        with self._lock:
            details = self._require_travel(travel_id)
            travel = details.travel

            compensated = travel.co2_compensated if update.co2_compensated is None else update.co2_compensated
            confirmed = travel.confirmed if update.confirmed is None else update.confirmed
            if compensated < travel.co2_compensated:
                raise InvalidTravelError("CO2 compensated can't decrease")
            if travel.confirmed and not confirmed:
                raise InvalidTravelError("travel is already confirmed")
            if compensated > 0 and not confirmed:
                raise InvalidTravelError("it is not possible to compensate before confirming")

            score = compute_score_delta(details, compensated, confirmed)
            if not score.ok:
                logger.warning("Travel %s has no scorable distance; score left unchanged", travel_id)
            self._apply_score(travel.user_id, score.delta, score.is_short_distance)

            travel.co2_compensated = compensated
            travel.confirmed = confirmed
            return travel.model_copy()

    def delete_travel(self, travel_id: int) -> None:
        with self._lock:
            details = self._require_travel(travel_id)
            score = compute_delete_delta(details)
            self._apply_score(details.travel.user_id, -score.delta, score.is_short_distance)
            del self._travels[travel_id]
            logger.info("Deleted travel %s", travel_id)

    def _apply_score(self, user_id: int, delta: float, is_short_distance: bool) -> None:
        if delta == 0:
            return
        user = self._users.get(user_id)
        if user is None:
            return
        if is_short_distance:
            user.score_short_distance += delta
        else:
            user.score_long_distance += delta

    # ------- rankings -------
    def ranking(self, user_id: int, limit: int = RANKING_SIZE) -> Ranking:
        with self._lock:
            self._require_user(user_id)
            return Ranking(
                short_distance=self._leaderboard(user_id, "score_short_distance", limit),
                long_distance=self._leaderboard(user_id, "score_long_distance", limit),
            )

    def _leaderboard(self, user_id: int, field: str, limit: int) -> List[RankingElement]:
        ordered = sorted(self._users.values(), key=lambda u: getattr(u, field), reverse=True)
        top = ordered[:limit]
        if all(user.user_id != user_id for user in top):
            top.append(self._users[user_id])
        return [self._ranking_element(user, getattr(user, field)) for user in top]

    def _ranking_element(self, user: User, score: float) -> RankingElement:
        confirmed = self._confirmed_travels(user.user_id)
        return RankingElement(
            user_id=user.user_id,
            first_name=user.first_name,
            last_name=user.last_name,
            score=score,
            total_distance=sum(details.total_distance for details in confirmed),
            total_duration=sum((details.total_duration for details in confirmed), timedelta(0)),
            total_co2_emitted=sum(details.total_co2_emitted for details in confirmed),
            total_co2_compensated=sum(details.travel.co2_compensated for details in confirmed),
            badges=self._badges_for(user.user_id),
        )

    # ------- reviews -------
    def create_review(self, data: ReviewInput) -> Review:
        with self._lock:
            self._require_user(data.user_id)
            if data.city_id not in self._places:
                raise NotFoundError(f"city {data.city_id} not found")
            review = Review(
                review_id=self._next_id("review"),
                date_time=datetime.now(timezone.utc),
                **data.model_dump(),
            )
            self._reviews[review.review_id] = review
            aggregate = self._aggregates.setdefault(data.city_id, ReviewsAggregated(city_id=data.city_id))
            _accumulate(aggregate, review, sign=1)
            return review.model_copy()

    def update_review(self, review_id: int, data: ReviewInput) -> Review:
        with self._lock:
            current = self._require_review(review_id)
            if data.user_id != current.user_id or data.city_id != current.city_id:
                raise InvalidReviewError("a review cannot move to another user or city")
            updated = current.model_copy(
                update={
                    "review_text": data.review_text,
                    "local_transport_rating": data.local_transport_rating,
                    "green_spaces_rating": data.green_spaces_rating,
                    "waste_bins_rating": data.waste_bins_rating,
                }
            )
            aggregate = self._aggregates[current.city_id]
            _accumulate(aggregate, current, sign=-1)
            _accumulate(aggregate, updated, sign=1)
            self._reviews[review_id] = updated
            return updated.model_copy()

    def delete_review(self, review_id: int) -> None:
        with self._lock:
            review = self._require_review(review_id)
            aggregate = self._aggregates[review.city_id]
            _accumulate(aggregate, review, sign=-1)
            if aggregate.number_ratings == 0:
                del self._aggregates[review.city_id]
            del self._reviews[review_id]

    def _require_review(self, review_id: int) -> Review:
        try:
            return self._reviews[review_id]
        except KeyError:
            raise NotFoundError(f"review {review_id} not found") from None

    def city_reviews(self, city_id: int, before_review_id: Optional[int] = None) -> CityReviewElement:
        """One page of a city's reviews, newest first, with the city averages."""
        with self._lock:
            aggregate = self._aggregates.get(city_id)
            if aggregate is None:
                raise NotFoundError(f"no reviews for city {city_id}")
            reviews = sorted(
                (review for review in self._reviews.values() if review.city_id == city_id),
                key=lambda r: (r.date_time, r.review_id),
                reverse=True,
            )
            if before_review_id is not None:
                anchor = self._require_review(before_review_id)
                if anchor.city_id != city_id:
                    raise InvalidReviewError("review does not belong to this city")
                reviews = [r for r in reviews if (r.date_time, r.review_id) < (anchor.date_time, anchor.review_id)]
            return _city_element(aggregate, reviews)

    def best_cities(self, limit: int = BEST_CITIES) -> List[CityReviewElement]:
        with self._lock:
            ranked = sorted(self._aggregates.values(), key=lambda a: a.total_average, reverse=True)[:limit]
            result = []
            for aggregate in ranked:
                reviews = sorted(
                    (r for r in self._reviews.values() if r.city_id == aggregate.city_id),
                    key=lambda r: (r.date_time, r.review_id),
                    reverse=True,
                )
                result.append(_city_element(aggregate, reviews))
            return result


def _title(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def _is_complete(location: AmadeusLocation) -> bool:
    address = location.address
    geo = location.geo_code
    return bool(
        location.iata_code
        and location.sub_type
        and address is not None
        and address.city_code
        and address.country_code
        and geo is not None
        and geo.latitude is not None
        and geo.longitude is not None
    )


def _check_numbering(details: TravelDetails) -> None:
    """Outward legs first, numbered 1..k, then return legs numbered 1..m."""
    outward = 0
    returning = 0
    for segment in details.segments:
        if segment.is_outward:
            if returning:
                raise InvalidTravelError("outward segments must precede return segments")
            outward += 1
            expected = outward
        else:
            returning += 1
            expected = returning
        if segment.num_segment != expected:
            raise InvalidTravelError(f"segment numbered {segment.num_segment}, expected {expected}")


def _accumulate(aggregate: ReviewsAggregated, review: Review, sign: int) -> None:
    aggregate.sum_local_transport_rating += sign * review.local_transport_rating
    aggregate.sum_green_spaces_rating += sign * review.green_spaces_rating
    aggregate.sum_waste_bins_rating += sign * review.waste_bins_rating
    aggregate.number_ratings += sign


def _city_element(aggregate: ReviewsAggregated, reviews: Iterable[Review]) -> CityReviewElement:
    reviews = list(reviews)
    page = reviews[:REVIEWS_PAGE_SIZE]
    return CityReviewElement(
        city_id=aggregate.city_id,
        reviews=[review.model_copy() for review in page],
        average_local_transport_rating=aggregate.average_local_transport_rating,
        average_green_spaces_rating=aggregate.average_green_spaces_rating,
        average_waste_bins_rating=aggregate.average_waste_bins_rating,
        num_reviews=aggregate.number_ratings,
        has_next=len(reviews) > REVIEWS_PAGE_SIZE,
    )
