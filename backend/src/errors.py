"""Error taxonomy shared by the search, spin and persistence paths."""

from __future__ import annotations

from typing import List, Optional


class JustChooseError(Exception):
    """Base class for errors reported to callers."""

    code = "error"
    retryable = False


class ValidationError(JustChooseError):
    """Raised before any I/O when a request is malformed."""

    code = "validation_error"


class LocationNotFound(JustChooseError):
    """The location text could not be resolved to coordinates."""

    code = "location_not_found"

    def __init__(self, location_text: str, suggestions: Optional[List[str]] = None) -> None:
        self.location_text = location_text
        self.suggestions = list(suggestions or [])
        super().__init__(f"Location not found: {location_text}")


class ProviderError(JustChooseError):
    """A provider call failed permanently (bad request, denied, unreadable reply)."""

    code = "provider_error"

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderCapabilityError(ProviderError):
    """The operation is not offered by the provider, e.g. autocomplete on OpenStreetMap."""

    code = "provider_capability"


class ProviderQuotaOrTransientError(ProviderError):
    code = "provider_unavailable"
    retryable = True

    def __init__(self, provider: str, message: str, *, reason: str = "transient") -> None:
        self.reason = reason
        super().__init__(provider, message)

    @property
    def is_quota(self) -> bool:
        return self.reason == "quota"


class SearchFailed(JustChooseError):
    code = "search_failed"
    retryable = True

    def __init__(self, message: str = "Failed to search restaurants. Please try again.") -> None:
        super().__init__(message)


class PersistenceError(JustChooseError):
    code = "persistence_error"


class InsufficientOptions(JustChooseError):
    code = "insufficient_options"

    def __init__(self, count: int, minimum: int = 2) -> None:
        self.count = count
        self.minimum = minimum
        super().__init__(f"At least {minimum} options required, got {count}")
