"""Parsing of the OAuth client descriptor downloaded from Google Cloud Console."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from gday.config import AuthConfig
from gday.errors import InvalidCredentials
from gday.store import CredentialStore

logger = logging.getLogger(__name__)

_KNOWN_FIELDS = {
    "client_id",
    "client_secret",
    "auth_uri",
    "token_uri",
    "device_auth_uri",
    "redirect_uris",
}


@dataclass(frozen=True)
class ClientDescriptor:
    """OAuth client settings plus the scopes this tool requests."""

    client_id: str
    client_secret: str
    auth_uri: str
    token_uri: str
    device_auth_uri: str
    scopes: Tuple[str, ...]
    redirect_uris: Tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        """Scopes joined the way OAuth endpoints expect them."""
        return " ".join(self.scopes)

    def __repr__(self) -> str:
        return f"ClientDescriptor(client_id={self.client_id!r}, scopes={len(self.scopes)})"


def parse_descriptor(
    raw: Union[bytes, str], config: Optional[AuthConfig] = None
) -> ClientDescriptor:
    """Parse credentials JSON into a ClientDescriptor.

    Both the Console download format (``{"installed": {...}}`` or
    ``{"web": {...}}``) and a flat object are accepted. Endpoints missing from
    the file fall back to the configured Google endpoints.

    Raises:
        InvalidCredentials: If the JSON is malformed or lacks client_id or
            client_secret.
    """
    config = config or AuthConfig()

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidCredentials(f"Invalid JSON in credentials file: {e}")

    if not isinstance(data, dict):
        raise InvalidCredentials("Invalid credentials format: expected a JSON object")

    client_config: Dict[str, Any]
    if "installed" in data:
        client_config = data["installed"]
    elif "web" in data:
        client_config = data["web"]
    else:
        client_config = data

    if not isinstance(client_config, dict):
        raise InvalidCredentials("Invalid credentials format: expected a JSON object")

    client_id = client_config.get("client_id")
    client_secret = client_config.get("client_secret")
    if not client_id or not client_secret:
        raise InvalidCredentials("Missing client_id or client_secret in credentials")

    extra = {k: v for k, v in client_config.items() if k not in _KNOWN_FIELDS}

    return ClientDescriptor(
        client_id=client_id,
        client_secret=client_secret,
        auth_uri=client_config.get("auth_uri") or config.auth_uri,
        token_uri=client_config.get("token_uri") or config.token_uri,
        device_auth_uri=client_config.get("device_auth_uri") or config.device_auth_uri,
        scopes=tuple(config.scopes),
        redirect_uris=tuple(client_config.get("redirect_uris") or ()),
        extra=extra,
    )


def load_descriptor(
    store: CredentialStore, config: Optional[AuthConfig] = None
) -> ClientDescriptor:
    """Read the stored credentials and parse them.

    Raises:
        NotConfigured: If no credentials have been saved.
        InvalidCredentials: If the saved credentials cannot be parsed.
    """
    descriptor = parse_descriptor(store.read_credentials(), config)
    logger.debug(f"Loaded OAuth client descriptor for {descriptor.client_id}")
    return descriptor
