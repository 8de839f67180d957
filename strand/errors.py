"""Strand error hierarchy and exceptions."""

from __future__ import annotations


class StrandError(Exception):
    """Base exception for all Strand errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(StrandError):
    """Raised when configuration is invalid or conflicting."""
    pass


class PropagationError(StrandError):
    """Raised when a carrier holds a missing or malformed span context."""
    pass


class UnsupportedFormatError(PropagationError):
    """Raised when no propagator is registered for a carrier format."""
    pass


class TransportError(StrandError):
    """Raised when a batch cannot be delivered to the agent."""
    pass


class QueueFullError(StrandError):
    """Internal signal: the reporter queue had no room for a span."""
    pass


class DoubleFinishError(StrandError):
    """Raised (and logged) when finish() is called on a finished span."""
    pass


class SamplingError(StrandError):
    """Raised when a sampling strategy cannot be parsed or applied."""
    pass
