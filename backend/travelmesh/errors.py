"""
Error taxonomy shared by the search and planning flows.
"""
from typing import Any


class TravelMeshError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    error_code = "InternalError"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TravelMeshError):
    """Request is missing or has malformed fields. Raised before any external call."""
    status_code = 400
    error_code = "ValidationError"


class ProviderError(TravelMeshError):
    """A single external provider call failed (timeout, network, rate limit, bad payload)."""
    status_code = 502
    error_code = "ProviderError"

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.reason = message


class NormalizationError(ValueError):
    """A raw provider item lacks a required field and cannot become an offer."""


class NoProviderAvailable(TravelMeshError):
    """Every selected provider (or modality) failed."""
    status_code = 502
    error_code = "NoProviderAvailable"
