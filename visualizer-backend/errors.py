"""
Exception types raised by the render pipeline and the job store.
"""

from typing import Optional


class VisualizerError(Exception):
    """Base class for every error a render job can settle with."""


class DecodeError(VisualizerError):
    """The image bytes or image reference could not be decoded."""


class ConfigurationError(VisualizerError):
    """A required setting (usually the API credential) is missing."""


class ServiceError(VisualizerError):
    """Transport failure or non-2xx answer from an external service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceTimeoutError(ServiceError):
    """The external service did not answer within the hard timeout."""


class ParseError(VisualizerError):
    """A structured response did not match the expected shape."""


class LayoutMismatchError(VisualizerError):
    def __init__(self, score: int, reason: str, label: str = "Layout mismatch detected"):
        self.score = score
        self.reason = reason
        super().__init__(f"{label} ({score}/100). {reason}")


class InvalidTransitionError(VisualizerError):
    """A render row update would break the status invariants."""
