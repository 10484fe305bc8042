"""Gateway exceptions.

Every error a caller can see derives from ``GatewayError`` and carries the
HTTP status the transports report it with. Cache failures are the one
exception type that never reaches a caller: the cache manager absorbs them.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for gateway errors surfaced to callers."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"{type(self).__name__}({self.message!r})"


class ConfigurationError(GatewayError):
    """Gateway configuration is invalid or incomplete."""

    status_code = 500


class RequestValidationError(GatewayError):
    """Malformed request shape, rejected before any side effect."""

    status_code = 400


class SecurityRejection(GatewayError):
    """Statement rejected by the allowlist.

    Attributes:
        sql: The rejected statement
    """

    status_code = 403

    def __init__(self, message: str, sql: str = ""):
        self.sql = sql
        super().__init__(message)


class UnsupportedBackendError(GatewayError):
    """No adapter is registered for the dialect/provider combination."""

    status_code = 500


class BackendExecutionError(GatewayError):
    """Driver, network, or SQL failure from the underlying engine."""

    status_code = 500


class HostedResponseError(BackendExecutionError):
    """The hosted execution endpoint returned a payload outside its schema."""

    status_code = 502


class InternalSourceOnlyError(GatewayError):
    """Operation requires the internal data source."""

    status_code = 400
    MESSAGE = "Function is only available for internal data source."

    def __init__(self, message: str = MESSAGE):
        super().__init__(message)


class RestError(GatewayError):
    """Resource request could not be translated into SQL."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


class CacheFailure(Exception):  # noqa: N818
    """Cache store read, write, or sweep failed.

    Never surfaced: CacheManager logs it and falls back to a miss or a no-op.
    """
