"""Credential and token lifecycle for the gday Gmail and Calendar CLI."""

from gday.client import AuthorizedSession, ClientFactory, get_client
from gday.config import AuthConfig, load_config
from gday.descriptor import ClientDescriptor, load_descriptor, parse_descriptor
from gday.device import DeviceFlow, DeviceGrant, PollState
from gday.interactive import InteractiveFlow
from gday.store import CredentialStore
from gday.tokens import CachedToken, TokenManager

__all__ = [
    "AuthConfig",
    "AuthorizedSession",
    "CachedToken",
    "ClientDescriptor",
    "ClientFactory",
    "CredentialStore",
    "DeviceFlow",
    "DeviceGrant",
    "InteractiveFlow",
    "PollState",
    "TokenManager",
    "get_client",
    "load_config",
    "load_descriptor",
    "parse_descriptor",
]
