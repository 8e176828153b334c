"""
Utilities module: Exceptions.
"""

from shared.utils.exceptions import (
    FeedError,
    MalformedInput,
    StoreUnavailable,
    PartialSwitchFailure,
    ConfigurationError,
)

__all__ = [
    "FeedError",
    "MalformedInput",
    "StoreUnavailable",
    "PartialSwitchFailure",
    "ConfigurationError",
]
