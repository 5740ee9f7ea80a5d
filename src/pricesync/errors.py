"""Error taxonomy for a synchronization run."""
from enum import Enum


class ErrorCode(str, Enum):
    """Classified failure codes reported per property in the run summary."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_NETWORK_ERROR = "TRANSIENT_NETWORK_ERROR"
    PERMANENT_API_ERROR = "PERMANENT_API_ERROR"
    PRICE_LOOKUP_FAILED = "PRICE_LOOKUP_FAILED"
    SYNC_FAILED = "SYNC_FAILED"
    STALE_OPERATION = "STALE_OPERATION"
    CONCURRENT_EXECUTION = "CONCURRENT_EXECUTION"


# ── Exceptions ────────────────────────────────────────────────────────────────

class ConfigurationError(ValueError):
    """Property is missing data needed to build a payload (never retried)."""


class PriceLookupError(RuntimeError):
    """The price-computation collaborator failed or returned unusable rows."""


class InvalidTransitionError(RuntimeError):
    """A SyncOperation was moved out of order (e.g. completed twice)."""


class InvocationError(RuntimeError):
    """The whole invocation cannot run: bad configuration or malformed trigger."""
