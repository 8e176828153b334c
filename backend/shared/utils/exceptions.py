"""
Centralized exceptions for consistent error handling.

Every error the comment feed raises on purpose derives from FeedError, logs
itself on construction and carries a status code plus a stable error code so
the trigger host can translate it without guessing.

Usage:
    from shared.utils.exceptions import MalformedInput, StoreUnavailable

    raise MalformedInput("body.channel must be a non-empty string")
    raise StoreUnavailable("query", cause=exc, channel=channel)
"""

from typing import Any

from fastapi import status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class FeedError(Exception):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"

    def __init__(
        self,
        detail: str,
        log_level: str = "warning",
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, error_code=self.error_code, **log_context)

        super().__init__(detail)
        self.detail = detail

    def to_response(self) -> dict[str, Any]:
        """Handler-level error body returned to the invoking host."""
        return {
            "statusCode": self.status_code,
            "error": self.error_code,
            "detail": self.detail,
        }


# =============================================================================
# 400 Malformed Input
# =============================================================================


class MalformedInput(FeedError):
    """
    Inbound payload failed to parse or validate.

    Fatal for the invocation, never retried.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "malformed_input"

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(detail, log_level="warning", **log_context)


# =============================================================================
# 503 Store Unavailable
# =============================================================================


class StoreUnavailable(FeedError):
    """
    A registry round trip failed.

    Propagated to the invocation host, which owns the retry policy.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "store_unavailable"

    def __init__(
        self,
        operation: str,
        cause: BaseException | None = None,
        **log_context: Any,
    ):
        detail = f"Connection store unavailable during {operation}"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(
            detail,
            log_level="error",
            operation=operation,
            cause=type(cause).__name__ if cause is not None else None,
            **log_context,
        )
        self.operation = operation
        self.cause = cause


# =============================================================================
# 500 Partial Switch Failure
# =============================================================================


class PartialSwitchFailure(FeedError):
    """
    A channel switch removed the old membership but failed to add the new one.

    The connection is registered nowhere until an operator (or the
    reconciliation sweep) puts it back. Never retried in-process.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "partial_switch_failure"

    def __init__(
        self,
        connection_id: str,
        from_channel: str,
        to_channel: str,
        failed_step: str = "register",
        cause: BaseException | None = None,
    ):
        detail = (
            f"Channel switch {from_channel!r} -> {to_channel!r} left the connection "
            f"unregistered (failed step: {failed_step})"
        )
        super().__init__(
            detail,
            log_level="critical",
            from_channel=from_channel,
            to_channel=to_channel,
            failed_step=failed_step,
            cause=type(cause).__name__ if cause is not None else None,
        )
        self.connection_id = connection_id
        self.from_channel = from_channel
        self.to_channel = to_channel
        self.failed_step = failed_step
        self.cause = cause


# =============================================================================
# 500 Configuration Error
# =============================================================================


class ConfigurationError(FeedError):
    """A setting the invocation needs is missing or invalid."""

    error_code = "configuration_error"

    def __init__(self, detail: str, setting: str | None = None, **log_context: Any):
        super().__init__(detail, log_level="error", setting=setting, **log_context)
        self.setting = setting
