"""Domain-specific errors for fridactl."""


class FridactlError(Exception):
    """Base error for fridactl."""


class ConfigLoadError(FridactlError):
    """Raised when the configuration file cannot be read."""


class ConfigValidationError(FridactlError):
    """Raised when the configuration file does not conform to schema."""


class DeviceBridgeError(FridactlError):
    """Raised when an ADB operation on a device fails."""


class SessionError(FridactlError):
    """Raised when a Frida session cannot be opened or used."""


class ServerDownloadError(FridactlError):
    """Raised when the Frida server binary cannot be fetched."""


class UnknownArchitectureError(FridactlError):
    """Raised when none of a device's ABIs map to a known architecture."""

    def __init__(self, abis: list[str]) -> None:
        self.abis = tuple(abis)
        super().__init__(f"Did not recognize any device ABIs from {','.join(abis)}")


class AccessDeniedError(FridactlError):
    """Raised when root access cannot be obtained on a device."""


class ReadinessTimeoutError(FridactlError):
    """Raised when a readiness probe never succeeds within its attempt budget."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        if last_error is not None:
            message = f"{message} (last error: {last_error})"
        super().__init__(message)


class ServerLaunchError(ReadinessTimeoutError):
    """Raised when a launched Frida server never becomes available."""


class ActivationError(FridactlError):
    """Base error for rejected activation requests."""


class UnknownActionError(ActivationError):
    """Raised for activation actions outside setup/launch/intercept."""


class ActionValidationError(ActivationError):
    """Raised when a known activation action is missing required fields."""
