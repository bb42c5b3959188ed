# greenjourney/settings.py
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: Optional[str]
    google_maps_base_url: str
    amadeus_api_key: Optional[str]
    amadeus_api_secret: Optional[str]
    amadeus_base_url: str
    toll_api_url: str
    fuel_cost_api_url: str
    transit_cost_api_url: str
    provider_timeout: float
    allowed_origins: List[str]


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read provider endpoints and credentials from the environment."""
    raw_origins = os.getenv("GREEN_JOURNEY_ALLOWED_ORIGINS") or "*"
    allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    return Settings(
        google_maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY"),
        google_maps_base_url=os.getenv("GOOGLE_MAPS_BASE_URL", "https://maps.googleapis.com/maps/api"),
        amadeus_api_key=os.getenv("AMADEUS_API_KEY"),
        amadeus_api_secret=os.getenv("AMADEUS_API_SECRET"),
        amadeus_base_url=os.getenv("AMADEUS_BASE_URL", "https://test.api.amadeus.com"),
        toll_api_url=os.getenv("TOLL_API_URL", "http://localhost:8081/tollapi"),
        fuel_cost_api_url=os.getenv("FUEL_COST_API_URL", "http://localhost:8083/fuelcostapi"),
        transit_cost_api_url=os.getenv("TRANSIT_COST_API_URL", "http://localhost:8082/transitcostapi"),
        provider_timeout=_float_env("GREEN_JOURNEY_PROVIDER_TIMEOUT", 10.0),
        allowed_origins=allowed_origins or ["*"],
    )
