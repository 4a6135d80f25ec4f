"""Cached OAuth2 tokens and the refresh-on-expiry token manager."""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import requests  # type: ignore

from gday.config import AuthConfig
from gday.descriptor import ClientDescriptor, load_descriptor
from gday.errors import (
    NetworkError,
    NotConfigured,
    TokenEndpointError,
    TokenNotFound,
    Unauthenticated,
)
from gday.store import CredentialStore

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

# Zero timestamp stored for tokens that never expire
_ZERO_TIME_PREFIX = "0001-01-01T00:00:00"
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_expiry(value: Any) -> Optional[datetime]:
    """Parse an expiry field into an aware UTC datetime.

    Accepts RFC3339 strings (``Z`` suffix and nanosecond fractions included)
    and unix timestamps. Empty values and the zero time mean "no expiry".
    """
    if value in (None, "", 0):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.startswith(_ZERO_TIME_PREFIX):
        return None
    text = _FRACTION_RE.sub(r".\1", text).replace("Z", "+00:00")
    try:
        expiry = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid token expiry: {value!r}")
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry.astimezone(timezone.utc)


def format_expiry(expiry: Optional[datetime]) -> Optional[str]:
    if expiry is None:
        return None
    return expiry.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class CachedToken:
    """An OAuth2 token as cached in ``token.json``."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self, now: Optional[datetime] = None, skew: timedelta = timedelta(0)) -> bool:
        """True if the access token can still be used.

        A token whose expiry equals ``now`` is already expired.
        """
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        now = now or utcnow()
        return self.expiry - skew > now

    @property
    def authorization(self) -> str:
        """Value for the Authorization header."""
        token_type = self.token_type or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return f"{token_type} {self.access_token}"

    def merged_with(self, refreshed: "CachedToken") -> "CachedToken":
        """Apply a refresh response, keeping our refresh token if none came back."""
        return CachedToken(
            access_token=refreshed.access_token,
            token_type=refreshed.token_type or self.token_type,
            refresh_token=refreshed.refresh_token or self.refresh_token,
            expiry=refreshed.expiry,
            extra={**self.extra, **refreshed.extra},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["access_token"] = self.access_token
        data["token_type"] = self.token_type
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry is not None:
            data["expiry"] = format_expiry(self.expiry)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedToken":
        if not data.get("access_token"):
            raise ValueError("Token is missing access_token")
        extra = {
            k: v
            for k, v in data.items()
            if k not in ("access_token", "token_type", "refresh_token", "expiry")
        }
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=parse_expiry(data.get("expiry")),
            extra=extra,
        )

    @classmethod
    def from_json(cls, raw: bytes) -> "CachedToken":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Token file must contain a JSON object")
        return cls.from_dict(data)

    def __repr__(self) -> str:
        return f"CachedToken(token_type={self.token_type!r}, expiry={self.expiry!r})"


def token_from_response(
    data: Dict[str, Any], now: Optional[datetime] = None
) -> CachedToken:
    """Build a token from a successful token endpoint response."""
    access_token = data.get("access_token")
    if not access_token:
        raise TokenEndpointError("invalid_response", "Token response has no access_token")

    expiry = None
    expires_in = data.get("expires_in")
    if expires_in:
        try:
            lifetime = timedelta(seconds=float(expires_in))
        except (TypeError, ValueError, OverflowError):
            raise TokenEndpointError(
                "invalid_response", f"Token response has invalid expires_in: {expires_in!r}"
            )
        expiry = (now or utcnow()) + lifetime

    extra = {}
    if data.get("scope"):
        extra["scope"] = data["scope"]
    if data.get("id_token"):
        extra["id_token"] = data["id_token"]

    return CachedToken(
        access_token=access_token,
        token_type=data.get("token_type") or "Bearer",
        refresh_token=data.get("refresh_token") or None,
        expiry=expiry,
        extra=extra,
    )


def parse_token_error(response: requests.Response) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(error, error_description)`` from an OAuth error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict) or not body.get("error"):
        return None, None
    return str(body["error"]), body.get("error_description")


def post_token_request(token_uri: str, data: Dict[str, str]) -> Dict[str, Any]:
    """POST a form to the token endpoint and return the decoded success body.

    Raises:
        NetworkError: On transport failures.
        TokenEndpointError: When the endpoint answers with an OAuth error or a
            non-JSON body.
    """
    try:
        response = requests.post(token_uri, data=data, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise NetworkError(f"Token request to {token_uri} failed: {e}") from e

    error, description = parse_token_error(response)
    if error:
        raise TokenEndpointError(error, description)

    if response.status_code != 200:
        raise TokenEndpointError(
            "http_error", f"{response.status_code} - {response.text}"
        )

    try:
        body = response.json()
    except ValueError:
        raise TokenEndpointError("invalid_response", "Token response is not JSON")
    if not isinstance(body, dict):
        raise TokenEndpointError("invalid_response", "Token response is not an object")
    return body


def refresh_access_token(
    descriptor: ClientDescriptor, refresh_token: str
) -> Dict[str, Any]:
    """Exchange a refresh token for a new access token."""
    data = {
        "client_id": descriptor.client_id,
        "client_secret": descriptor.client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    return post_token_request(descriptor.token_uri, data)


def exchange_code(
    descriptor: ClientDescriptor, code: str, redirect_uri: str
) -> Dict[str, Any]:
    """Exchange an authorization code for access and refresh tokens."""
    data = {
        "code": code,
        "client_id": descriptor.client_id,
        "client_secret": descriptor.client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }
    return post_token_request(descriptor.token_uri, data)


class TokenManager:
    """Owns the cached token: validity checks, refresh, persistence.

    The manager never starts a login flow. When it cannot produce a usable
    token it raises ``Unauthenticated`` and leaves the choice of flow to the
    caller.
    """

    def __init__(
        self,
        store: CredentialStore,
        config: Optional[AuthConfig] = None,
        descriptor: Optional[ClientDescriptor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or AuthConfig(config_dir=store.config_dir)
        self._descriptor = descriptor
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def descriptor(self) -> ClientDescriptor:
        if self._descriptor is None:
            self._descriptor = load_descriptor(self.store, self.config)
        return self._descriptor

    def _require_credentials(self) -> None:
        if self._descriptor is None and not self.store.credentials_exist():
            raise NotConfigured()

    def load_token(self) -> CachedToken:
        """Read the cached token or raise ``Unauthenticated``."""
        try:
            raw = self.store.read_token()
        except TokenNotFound:
            raise Unauthenticated("No cached token")
        try:
            return CachedToken.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable token file: {e}")
            raise Unauthenticated("Cached token is unreadable") from e

    def get_valid_token(self) -> CachedToken:
        """Return a usable token, refreshing and persisting it if it expired.

        Raises:
            NotConfigured: No client credentials are stored.
            Unauthenticated: No token, or it expired and cannot be refreshed.
            NetworkError: The token endpoint could not be reached.
            PersistenceError: The refreshed token could not be saved.
        """
        with self._lock:
            self._require_credentials()
            token = self.load_token()
            if token.is_valid(self._clock(), self.config.skew):
                return token
            logger.info("Cached access token expired, refreshing")
            return self._refresh(token)

    def refresh(self) -> CachedToken:
        """Refresh the cached token even if it has not expired yet."""
        with self._lock:
            self._require_credentials()
            return self._refresh(self.load_token())

    def _refresh(self, token: CachedToken) -> CachedToken:
        if not token.refresh_token:
            raise Unauthenticated("Token expired and no refresh token is available")

        try:
            data = refresh_access_token(self.descriptor, token.refresh_token)
            refreshed = token_from_response(data, self._clock())
        except TokenEndpointError as e:
            logger.error(f"Failed to refresh token: {e}")
            raise Unauthenticated(f"Token refresh was rejected ({e.error})") from e

        merged = token.merged_with(refreshed)
        self.store_token(merged)
        logger.info("Refreshed access token")
        return merged

    def store_token(self, token: CachedToken) -> None:
        """Persist a token minted by a login flow or a refresh."""
        self.store.save_token(token)
