"""Authenticated transports handed to Gmail and Calendar callers."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence, Tuple

import requests  # type: ignore
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from gday.config import AuthConfig
from gday.descriptor import ClientDescriptor
from gday.store import CredentialStore
from gday.tokens import CachedToken, TokenManager

logger = logging.getLogger(__name__)

# Lifetime assumed for a refreshed token whose response carried no expires_in
ASSUMED_TOKEN_LIFETIME = timedelta(hours=1)


class AuthorizedSession(requests.Session):
    """A requests session that signs every request with the cached token.

    A 401 answer triggers one forced refresh through the token manager and
    a single retry of the request.
    """

    def __init__(self, manager: TokenManager):
        super().__init__()
        self._manager = manager

    def request(self, method, url, *args, **kwargs):  # type: ignore[override]
        headers = dict(kwargs.pop("headers", None) or {})

        token = self._manager.get_valid_token()
        headers["Authorization"] = token.authorization
        response = super().request(method, url, *args, headers=headers, **kwargs)

        if response.status_code != 401:
            return response

        logger.info("API rejected access token, refreshing and retrying")
        response.close()
        token = self._manager.refresh()
        headers["Authorization"] = token.authorization
        return super().request(method, url, *args, headers=headers, **kwargs)


class ClientFactory:
    """Turns the token manager into transports for API collaborators.

    Callers get a session, google-auth credentials, or a discovery service;
    none of them exposes the refresh token.
    """

    def __init__(self, manager: TokenManager, descriptor: Optional[ClientDescriptor] = None):
        self.manager = manager
        self._descriptor = descriptor

    @property
    def descriptor(self) -> ClientDescriptor:
        if self._descriptor is None:
            self._descriptor = self.manager.descriptor
        return self._descriptor

    def session(self) -> AuthorizedSession:
        return AuthorizedSession(self.manager)

    def _refresh_handler(
        self, request: Any, scopes: Optional[Sequence[str]] = None
    ) -> Tuple[str, datetime]:
        token = self.manager.refresh()
        expiry = _naive_utc(token)
        if expiry is None:
            # google-auth rejects a refresh handler result without a datetime
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            expiry = now + ASSUMED_TOKEN_LIFETIME
        return token.access_token, expiry

    def credentials(self) -> Credentials:
        """Google credentials whose refreshes go through the token manager."""
        token = self.manager.get_valid_token()
        return Credentials(
            token=token.access_token,
            expiry=_naive_utc(token),
            scopes=list(self.descriptor.scopes),
            refresh_handler=self._refresh_handler,
        )

    def build_service(self, api: str, version: str) -> Any:
        """Build a googleapiclient service, e.g. ``("gmail", "v1")``."""
        service = build(api, version, credentials=self.credentials(), cache_discovery=False)
        logger.debug(f"Built {api} {version} service")
        return service


def _naive_utc(token: CachedToken):
    # google-auth compares expiry against a naive UTC clock
    if token.expiry is None:
        return None
    return token.expiry.astimezone(timezone.utc).replace(tzinfo=None)


def get_client(config: Optional[AuthConfig] = None) -> ClientFactory:
    """Wire store, descriptor and token manager into a ClientFactory.

    Raises:
        NotConfigured: No client credentials are stored.
        Unauthenticated: The caller has to run a login flow first.
    """
    config = config or AuthConfig()
    store = CredentialStore.from_config(config)
    manager = TokenManager(store, config)
    manager.get_valid_token()
    return ClientFactory(manager)
