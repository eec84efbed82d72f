"""Custom exception hierarchy for buspresence."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Machine-readable failure category carried by every error."""

    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    STORE_UNAVAILABLE = "store_unavailable"
    INVALID_STATE = "invalid_state"
    CONFIG = "config"


class PresenceError(Exception):
    """Base exception for all buspresence errors."""

    kind: ErrorKind = ErrorKind.POSITION_UNAVAILABLE
    default_hint: str = ""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        self.hint = hint if hint is not None else self.default_hint
        super().__init__(message)


class PresenceConfigError(PresenceError):
    """Invalid or missing configuration."""

    kind = ErrorKind.CONFIG


class InvalidTransitionError(PresenceError):
    """A publisher state transition that the state machine does not allow."""

    kind = ErrorKind.INVALID_STATE


class LocationError(PresenceError):
    """The device could not produce a position fix."""


class PermissionDeniedError(LocationError):
    """The user or the platform refused location access.

    Permanent for the current session: callers should stop prompting and
    point the user at the browser or OS permission settings.
    """

    kind = ErrorKind.PERMISSION_DENIED
    default_hint = (
        "Allow location access for this site in the browser, enable Location Services "
        "in the system settings, then try again."
    )


class PositionUnavailableError(LocationError):
    """The sensor is working but has no usable fix right now."""

    kind = ErrorKind.POSITION_UNAVAILABLE
    default_hint = (
        "Check that Location Services and Wi-Fi are enabled and disable any VPN or proxy "
        "that hides your network location."
    )


class LocationTimeoutError(LocationError):
    """The sensor did not answer within the strategy's timeout."""

    kind = ErrorKind.TIMEOUT
    default_hint = "Getting a GPS fix is taking too long. Move to open sky or retry in a moment."


class UnsupportedContextError(LocationError):
    """Location is not available in this execution context.

    Raised before any acquisition is attempted, e.g. for plain HTTP origins
    that are not loopback or for a device without a location capability.
    """

    kind = ErrorKind.UNSUPPORTED
    default_hint = "Location requires a secure origin. Open the app over HTTPS or from localhost."


class UnauthorizedError(PresenceError):
    """The caller is not an approved, verified driver."""

    kind = ErrorKind.UNAUTHORIZED
    default_hint = "Only verified drivers can share their location. Wait for an administrator to approve you."


class StoreUnavailableError(PresenceError):
    """A read, write or subscription against the presence store failed."""

    kind = ErrorKind.STORE_UNAVAILABLE
    default_hint = "The live location service is unreachable. Updates will resume when the connection recovers."

    def __init__(
        self,
        message: str,
        *,
        driver_id: str = "",
        status_code: int | None = None,
        hint: str | None = None,
    ) -> None:
        self.driver_id = driver_id
        self.status_code = status_code
        super().__init__(message, hint=hint)


_PERMANENT_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.PERMISSION_DENIED, ErrorKind.UNAUTHORIZED})
_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.POSITION_UNAVAILABLE, ErrorKind.TIMEOUT, ErrorKind.STORE_UNAVAILABLE}
)


def is_permanent(error: PresenceError) -> bool:
    """Return ``True`` when retrying will give the same answer."""
    return error.kind in _PERMANENT_KINDS


def is_retryable(error: PresenceError) -> bool:
    """Return ``True`` for transient failures the caller may retry."""
    return error.kind in _RETRYABLE_KINDS


_GEOLOCATION_CODES: dict[int, type[LocationError]] = {
    1: PermissionDeniedError,
    2: PositionUnavailableError,
    3: LocationTimeoutError,
}


def error_from_geolocation_code(code: int, message: str = "") -> LocationError:
    """Map a W3C ``GeolocationPositionError.code`` to a classified error.

    Unknown codes are reported as :class:`PositionUnavailableError`.
    """
    cls = _GEOLOCATION_CODES.get(code, PositionUnavailableError)
    return cls(message or f"Geolocation error code {code}")
