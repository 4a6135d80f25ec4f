"""Error types raised by the gday authentication core."""

from typing import Optional


class AuthError(Exception):
    """Base class for all authentication and token errors."""


class NotConfigured(AuthError):
    """No OAuth client credentials have been stored."""

    def __init__(self, message: str = "OAuth credentials not configured"):
        super().__init__(f"{message}. Run 'gday auth setup' to configure credentials")


class InvalidCredentials(NotConfigured):
    """The stored client descriptor cannot be used."""


class Unauthenticated(AuthError):
    """No usable token is cached and it cannot be refreshed."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(f"{message}. Run 'gday auth login' to authenticate")


class CallbackProtocolError(AuthError):
    """The browser redirect did not carry a usable authorization code."""


class Timeout(AuthError):
    """The interactive login was not completed in time."""


class Cancelled(AuthError):
    """The caller aborted a login flow."""


class DeviceAuthRequestFailed(AuthError):
    """The device/user code pair could not be obtained."""


class UserDenied(AuthError):
    """The user refused the authorization request."""


class GrantExpired(AuthError):
    """The device code expired before authorization completed."""


class TokenEndpointError(AuthError):
    """The token endpoint answered with an OAuth error."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"{error}: {description}" if description else error
        super().__init__(message)


class NetworkError(AuthError):
    """A transport failure while talking to Google endpoints."""


class CallbackPortUnavailable(NetworkError):
    """The local redirect listener could not bind its port."""


class PersistenceError(AuthError):
    """Reading or writing a file in the config directory failed."""


class PermissionDenied(PersistenceError):
    """The config directory or one of its files is not accessible."""


class TokenNotFound(AuthError):
    """No token file exists."""
