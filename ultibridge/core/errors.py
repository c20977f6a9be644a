"""Domain-specific errors for ultibridge."""


class UltibridgeError(Exception):
    """Base error for ultibridge."""


class ConfigError(UltibridgeError):
    """Base configuration error."""


class ConfigValidationError(ConfigError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(ConfigError):
    """Raised when reading a config source fails."""


class TransportError(UltibridgeError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE scan or connect failures."""


class TransportSendError(TransportError):
    """Raised when a characteristic operation fails."""


class TransportTimeoutError(TransportError):
    """Raised when the device does not answer in time."""


class TransportSetupFailure(TransportError):
    """Raised when the device lacks the read or write characteristic."""


class PublisherError(UltibridgeError):
    """Raised when the telemetry publisher cannot be started."""
