"""
Custom exceptions for the sync client.

Transport, codec, and storage code raise these exceptions; the client
components catch them at their boundary and turn them into operation
results or events, so none of them escape to the application.
"""


class SyncClientError(Exception):
    """Base exception for all sync client errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransportError(SyncClientError):
    """Raised when a request/reply or realtime transport call fails.

    Covers timeouts, refused connections and DNS failures. Named
    TransportError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Transport failed for {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class ProtocolError(SyncClientError):
    """Raised when a realtime frame cannot be decoded into an envelope."""

    def __init__(self, reason: str, raw: str | None = None):
        details = {"reason": reason}
        if raw is not None:
            details["raw"] = raw[:200]
        super().__init__(f"Protocol error: {reason}", details)
        self.reason = reason
        self.raw = raw


class CredentialStoreError(SyncClientError):
    """Raised when the local credential cache cannot be read or written."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Credential store error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class ConfigurationError(SyncClientError):
    """Raised when a configuration value is missing or invalid."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
