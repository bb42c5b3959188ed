"""Typed shapes of the upstream routing and pricing responses.

Each provider response is modelled on its own and tagged with ``kind`` so the
normalizer can dispatch on it. Fields the providers sometimes omit are
``Optional`` here; deciding whether a gap is fatal is the normalizer's job.
"""
from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ------- Google Maps -------
class TextValue(_ProviderModel):
    text: str = ""
    value: Optional[int] = None


class LatLng(_ProviderModel):
    lat: float
    lng: float


class TransitStop(_ProviderModel):
    name: Optional[str] = None
    location: Optional[LatLng] = None


class TransitVehicle(_ProviderModel):
    name: str = ""
    type: Optional[str] = None


class TransitLine(_ProviderModel):
    name: str = ""
    short_name: str = ""
    vehicle: Optional[TransitVehicle] = None


class TransitDetails(_ProviderModel):
    departure_stop: Optional[TransitStop] = None
    arrival_stop: Optional[TransitStop] = None
    departure_time: Optional[TextValue] = None
    line: Optional[TransitLine] = None


class DirectionsStep(_ProviderModel):
    travel_mode: Optional[str] = None
    distance: Optional[TextValue] = None
    duration: Optional[TextValue] = None
    transit_details: Optional[TransitDetails] = None

    @property
    def is_walking(self) -> bool:
        return self.travel_mode == "WALKING"


class DirectionsLeg(_ProviderModel):
    steps: List[DirectionsStep] = Field(default_factory=list)


class DirectionsRoute(_ProviderModel):
    legs: List[DirectionsLeg] = Field(default_factory=list)


class TransitDirectionsPayload(_ProviderModel):
    kind: Literal["transit_directions"] = "transit_directions"
    status: str = "OK"
    routes: List[DirectionsRoute] = Field(default_factory=list)


class MatrixElement(_ProviderModel):
    status: str = "OK"
    distance: Optional[TextValue] = None
    duration: Optional[TextValue] = None


class MatrixRow(_ProviderModel):
    elements: List[MatrixElement] = Field(default_factory=list)


class DistanceMatrixPayload(_ProviderModel):
    kind: Literal["distance_matrix"] = "distance_matrix"
    status: str = "OK"
    origin_addresses: List[str] = Field(default_factory=list)
    destination_addresses: List[str] = Field(default_factory=list)
    rows: List[MatrixRow] = Field(default_factory=list)

    def first_element(self) -> Optional[MatrixElement]:
        if not self.rows or not self.rows[0].elements:
            return None
        return self.rows[0].elements[0]


# ------- Amadeus -------
class FlightEndpoint(_ProviderModel):
    iata_code: str = Field(..., validation_alias=AliasChoices("iataCode", "iata_code"))
    at: Optional[str] = None


class FlightLeg(_ProviderModel):
    departure: Optional[FlightEndpoint] = None
    arrival: Optional[FlightEndpoint] = None
    carrier_code: str = Field("", validation_alias=AliasChoices("carrierCode", "carrier_code"))
    number: str = ""
    duration: Optional[str] = None


class FlightItinerary(_ProviderModel):
    duration: Optional[str] = None
    segments: List[FlightLeg] = Field(default_factory=list)


class FlightPrice(_ProviderModel):
    currency: Optional[str] = None
    grand_total: Optional[str] = Field(None, validation_alias=AliasChoices("grandTotal", "grand_total"))


class FlightOffer(_ProviderModel):
    price: Optional[FlightPrice] = None
    itineraries: List[FlightItinerary] = Field(default_factory=list)

    def total_price(self) -> float:
        """Offer price as a float; unparsable or missing totals count as 0."""
        if self.price is None or self.price.grand_total is None:
            return 0.0
        try:
            return float(self.price.grand_total)
        except ValueError:
            return 0.0


class FlightOffersPayload(_ProviderModel):
    kind: Literal["flight_offers"] = "flight_offers"
    data: List[FlightOffer] = Field(default_factory=list)


class LocationAddress(_ProviderModel):
    city_name: Optional[str] = Field(None, validation_alias=AliasChoices("cityName", "city_name"))
    city_code: Optional[str] = Field(None, validation_alias=AliasChoices("cityCode", "city_code"))
    country_name: Optional[str] = Field(None, validation_alias=AliasChoices("countryName", "country_name"))
    country_code: Optional[str] = Field(None, validation_alias=AliasChoices("countryCode", "country_code"))


class GeoCode(_ProviderModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class AmadeusLocation(_ProviderModel):
    name: str = ""
    iata_code: Optional[str] = Field(None, validation_alias=AliasChoices("iataCode", "iata_code"))
    sub_type: str = Field("", validation_alias=AliasChoices("subType", "sub_type"))
    address: Optional[LocationAddress] = None
    geo_code: Optional[GeoCode] = Field(None, validation_alias=AliasChoices("geoCode", "geo_code"))


class LocationsPayload(_ProviderModel):
    data: List[AmadeusLocation] = Field(default_factory=list)


ProviderPayload = Annotated[
    Union[FlightOffersPayload, DistanceMatrixPayload, TransitDirectionsPayload],
    Field(discriminator="kind"),
]
