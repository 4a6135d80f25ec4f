"""Login, logout and status operations used by the command line."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests  # type: ignore

from gday.client import ClientFactory
from gday.config import AuthConfig, load_config
from gday.descriptor import load_descriptor, parse_descriptor
from gday.device import DeviceFlow
from gday.errors import AuthError, InvalidCredentials, NetworkError, NotConfigured
from gday.interactive import InteractiveFlow
from gday.store import CredentialStore
from gday.tokens import REQUEST_TIMEOUT, CachedToken, TokenManager

logger = logging.getLogger(__name__)


class AuthState(Enum):
    NOT_CONFIGURED = "not_configured"
    LOGGED_OUT = "logged_out"
    INVALID = "invalid"
    AUTHENTICATED = "authenticated"


@dataclass
class AuthStatus:
    state: AuthState
    message: str
    email: Optional[str] = None

    def to_dict(self):
        return {"status": self.state.value, "message": self.message, "email": self.email}


def _store(config: Optional[AuthConfig]) -> CredentialStore:
    return CredentialStore.from_config(config or load_config())


def setup(raw: str, config: Optional[AuthConfig] = None) -> CredentialStore:
    """Validate and save the OAuth client JSON pasted by the user."""
    config = config or load_config()
    raw = raw.strip()
    if not raw:
        raise InvalidCredentials("No credentials provided")

    # Parse first so a broken paste never replaces working credentials
    descriptor = parse_descriptor(raw, config)
    store = _store(config)
    store.save_credentials(raw.encode())
    logger.info(f"Configured OAuth client {descriptor.client_id}")
    return store


def _require_descriptor(config: AuthConfig):
    store = _store(config)
    if not store.credentials_exist():
        raise NotConfigured("OAuth credentials not configured")
    return store, load_descriptor(store, config)


def login(
    config: Optional[AuthConfig] = None, cancel: Optional[threading.Event] = None
) -> CachedToken:
    """Browser-based login."""
    config = config or load_config()
    store, descriptor = _require_descriptor(config)
    return InteractiveFlow.from_config(descriptor, store, config).run(cancel)


def login_device(
    config: Optional[AuthConfig] = None, cancel: Optional[threading.Event] = None
) -> CachedToken:
    """Device-code login for machines without a browser."""
    config = config or load_config()
    store, descriptor = _require_descriptor(config)
    return DeviceFlow.from_config(descriptor, store, config).run(cancel)


def logout(config: Optional[AuthConfig] = None) -> bool:
    """Remove the cached token. Returns False if nobody was logged in."""
    return _store(config).delete_token()


def status(config: Optional[AuthConfig] = None) -> AuthStatus:
    """Report whether credentials and a working token are present."""
    config = config or load_config()
    store = _store(config)

    if not store.credentials_exist():
        return AuthStatus(
            AuthState.NOT_CONFIGURED,
            "Not configured. Run 'gday auth setup' to configure OAuth credentials",
        )

    if not store.token_exists():
        return AuthStatus(
            AuthState.LOGGED_OUT,
            "Credentials configured, not logged in. Run 'gday auth login' to authenticate",
        )

    manager = TokenManager(store, config)
    session = ClientFactory(manager).session()
    try:
        response = session.get(config.profile_url, timeout=REQUEST_TIMEOUT)
    except NetworkError as e:
        return AuthStatus(AuthState.INVALID, f"Could not reach Google: {e}")
    except AuthError as e:
        logger.info(f"Token check failed: {e}")
        return AuthStatus(
            AuthState.INVALID,
            "Token expired or invalid. Run 'gday auth login' to re-authenticate",
        )
    except requests.RequestException as e:
        return AuthStatus(AuthState.INVALID, f"Could not reach Gmail: {e}")
    finally:
        session.close()

    if response.status_code != 200:
        return AuthStatus(
            AuthState.INVALID,
            "Token invalid. Run 'gday auth login' to re-authenticate",
        )

    try:
        email = response.json().get("emailAddress")
    except (ValueError, AttributeError):
        email = None
    return AuthStatus(AuthState.AUTHENTICATED, "Authenticated", email=email)
