class BridgeError(Exception):
    """Base class for errors raised by the formula bridge."""


class AuthError(BridgeError):
    """Inbound API key missing or not matching the configured key."""

    message = "Unauthorized: Invalid or missing x-api-key"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)


class ManifestLoadError(BridgeError):
    """A manifest document could not be found, read or parsed."""

    def __init__(self, filename: str, reason: str = ""):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Error reading {filename}")


class RequestParseError(BridgeError):
    """The action request body is not valid JSON or misses required fields."""


class CallbackTransportError(BridgeError):
    """The callback could not be delivered (bad URL, DNS, connection, TLS)."""
