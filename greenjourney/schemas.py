from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Vehicle = Literal["car", "bike", "plane", "train", "bus", "walk"]

# ------- Places -------
class Place(BaseModel):
    place_id: int
    name: str
    country_name: Optional[str] = None
    country_code: Optional[str] = None
    iata: Optional[str] = None
    latitude: float
    longitude: float

class PlaceRef(BaseModel):
    """What a segment keeps of a place: enough to display and to link back."""

    place_id: int
    name: str
    country: Optional[str] = None

    @classmethod
    def from_place(cls, place: Place) -> "PlaceRef":
        return cls(place_id=place.place_id, name=place.name, country=place.country_name)

class Airport(BaseModel):
    name: str
    iata: str
    latitude: float
    longitude: float
    city: Place

# ------- Segments & travels -------
class Segment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    segment_id: Optional[int] = None
    travel_id: Optional[int] = None
    num_segment: int = Field(..., ge=1)
    departure: Optional[PlaceRef] = None
    destination: Optional[PlaceRef] = None
    date_time: Optional[datetime] = None
    duration: timedelta = timedelta(0)
    vehicle: Vehicle
    description: str = ""
    price: float = Field(0.0, ge=0)
    co2_emitted: float = Field(0.0, ge=0)
    distance: float = Field(0.0, ge=0)
    is_outward: bool = True

    @property
    def is_walk(self) -> bool:
        return self.vehicle == "walk"

    def depart_from(self, place: Place) -> None:
        self.departure = PlaceRef.from_place(place)

    def arrive_at(self, place: Place) -> None:
        self.destination = PlaceRef.from_place(place)

class Travel(BaseModel):
    travel_id: Optional[int] = None
    user_id: int
    co2_compensated: float = Field(0.0, ge=0)
    confirmed: bool = False

class TravelDetails(BaseModel):
    travel: Travel
    segments: List[Segment] = Field(default_factory=list)

    @property
    def total_distance(self) -> float:
        return sum(s.distance for s in self.segments)

    @property
    def total_co2_emitted(self) -> float:
        return sum(s.co2_emitted for s in self.segments)

    @property
    def total_duration(self) -> timedelta:
        return sum((s.duration for s in self.segments), timedelta(0))

    def destination_segment(self) -> Optional[Segment]:
        """Last outward segment, i.e. the one that reaches the trip's destination."""
        outward = [s for s in self.segments if s.is_outward]
        if not outward:
            return None
        return max(outward, key=lambda s: s.num_segment)

class TravelUpdate(BaseModel):
    co2_compensated: Optional[float] = Field(None, ge=0)
    confirmed: Optional[bool] = None

class TravelOptions(BaseModel):
    options: List[List[Segment]] = Field(default_factory=list)

# ------- Scores & badges -------
class Badge(str, Enum):
    DISTANCE_LOW = "badge_distance_low"
    DISTANCE_MID = "badge_distance_mid"
    DISTANCE_HIGH = "badge_distance_high"
    ECOLOGICAL_CHOICE_LOW = "badge_ecological_choice_low"
    ECOLOGICAL_CHOICE_MID = "badge_ecological_choice_mid"
    ECOLOGICAL_CHOICE_HIGH = "badge_ecological_choice_high"
    COMPENSATION_LOW = "badge_compensation_low"
    COMPENSATION_MID = "badge_compensation_mid"
    COMPENSATION_HIGH = "badge_compensation_high"
    TRAVELS_NUMBER_LOW = "badge_travels_number_low"
    TRAVELS_NUMBER_MID = "badge_travels_number_mid"
    TRAVELS_NUMBER_HIGH = "badge_travels_number_high"

class ScoreDelta(BaseModel):
    delta: float = 0.0
    is_short_distance: bool = True
    ok: bool = True

# ------- Users & rankings -------
class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)

class User(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    score_short_distance: float = 0.0
    score_long_distance: float = 0.0
    badges: List[Badge] = Field(default_factory=list)

class RankingElement(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    score: float
    total_distance: float = 0.0
    total_duration: timedelta = timedelta(0)
    total_co2_emitted: float = 0.0
    total_co2_compensated: float = 0.0
    badges: List[Badge] = Field(default_factory=list)

class Ranking(BaseModel):
    short_distance: List[RankingElement] = Field(default_factory=list)
    long_distance: List[RankingElement] = Field(default_factory=list)

# ------- Reviews -------
class ReviewInput(BaseModel):
    city_id: int
    user_id: int
    review_text: str = ""
    local_transport_rating: int = Field(..., ge=1, le=5)
    green_spaces_rating: int = Field(..., ge=1, le=5)
    waste_bins_rating: int = Field(..., ge=1, le=5)

class Review(ReviewInput):
    review_id: int
    date_time: datetime

class ReviewsAggregated(BaseModel):
    city_id: int
    sum_local_transport_rating: int = 0
    sum_green_spaces_rating: int = 0
    sum_waste_bins_rating: int = 0
    number_ratings: int = 0

    def _average(self, total: int) -> float:
        return total / self.number_ratings if self.number_ratings else 0.0

    @property
    def average_local_transport_rating(self) -> float:
        return self._average(self.sum_local_transport_rating)

    @property
    def average_green_spaces_rating(self) -> float:
        return self._average(self.sum_green_spaces_rating)

    @property
    def average_waste_bins_rating(self) -> float:
        return self._average(self.sum_waste_bins_rating)

    @property
    def total_average(self) -> float:
        return (
            self.average_local_transport_rating
            + self.average_green_spaces_rating
            + self.average_waste_bins_rating
        )

class CityReviewElement(BaseModel):
    city_id: int
    reviews: List[Review] = Field(default_factory=list)
    average_local_transport_rating: float = 0.0
    average_green_spaces_rating: float = 0.0
    average_waste_bins_rating: float = 0.0
    num_reviews: int = 0
    has_next: bool = False
