"""Exception types shared by the normalizer, the providers and the store."""
from __future__ import annotations


class ItineraryValidationError(ValueError):
    """Provider data for one itinerary option is incomplete or inconsistent."""


class ProviderError(RuntimeError):
    """An upstream routing/pricing API failed or returned an unusable payload."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class DegenerateScoreError(ArithmeticError):
    """The travel has no scorable distance, so no coefficient can be derived."""


class NotFoundError(LookupError):
    pass


class InvalidTravelError(ValueError):
    pass


class InvalidReviewError(ValueError):
    pass
