"""Error kinds raised inside the guidance pipeline."""
from typing import Optional


class GuidanceError(Exception):
    """Base class for guidance pipeline errors."""


class GatewayUnavailable(GuidanceError):
    """The external model API could not produce a reply.

    Covers network failures, timeouts, auth/quota rejections and any other
    non-2xx status. ``status_code`` is set when the API answered at all.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedModelOutput(GuidanceError):
    """Model output could not be decoded into a JSON object."""


class NoFallbackAvailable(GuidanceError):
    """Recommendation generation failed and no stored baseline exists."""

    def __init__(self, disease_key: str):
        super().__init__(f"Guidance unavailable right now for '{disease_key}'")
        self.disease_key = disease_key
