"""
Error kinds raised by the tracking subsystem, and the single current-error
slot shown to users.

Which errors reach the user:
    CapabilityUnavailable, PermissionDenied, ProviderLoadFailure and the
    terminal GeocodeNoMatch surface as error state. SyncPushFailure surfaces
    as a transient message but never stops the scheduler.
    TrackingFetchFailure and reverse-geocode failures are always swallowed.
"""

import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)


class TrackingError(Exception):
    """Base class for tracking subsystem errors."""


class CapabilityUnavailable(TrackingError):
    """The platform has no positioning support."""


class PermissionDenied(TrackingError):
    """The user declined access to device position."""


class PositionUnavailable(TrackingError):
    """A fix could not be obtained (timeout, no signal)."""


class ProviderLoadFailure(TrackingError):
    """The map widget script failed to load or was rejected."""


class GeocodeError(TrackingError):
    """Base class for forward geocoding failures."""


class GeocodeNoMatch(GeocodeError):
    """The provider returned an empty result set."""


class GeocodeProviderError(GeocodeError):
    """Transport or parse failure talking to a geocoding provider."""


class SyncPushFailure(TrackingError):
    """Pushing a location record to the order service failed."""


class TrackingFetchFailure(TrackingError):
    """Fetching tracking history failed; callers treat this as a soft miss."""


class ErrorState:
    """
    Holds exactly one current error message.

    Reporting replaces whatever was shown before; the next successful
    operation of any kind clears it.
    """

    def __init__(self):
        self._message: Optional[str] = None
        self._kind: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return self._message

    @property
    def kind(self) -> Optional[str]:
        return self._kind

    def report(self, error: Union[Exception, str], prefix: str = "") -> None:
        text = str(error)
        self._message = f"{prefix}{text}" if prefix else text
        self._kind = type(error).__name__ if isinstance(error, Exception) else None
        logger.debug("Error state set: %s", self._message)

    def clear(self) -> None:
        self._message = None
        self._kind = None

    def __bool__(self) -> bool:
        return self._message is not None
