"""Pytest fixtures for gday auth tests."""

import json
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import pytest

from gday.config import AuthConfig
from gday.descriptor import parse_descriptor
from gday.store import CredentialStore
from gday.tokens import CachedToken

from tests.helpers import NOW

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in (
        "GDAY_CONFIG_DIR",
        "GDAY_CALLBACK_PORT",
        "GDAY_CALLBACK_HOST",
        "GDAY_LOGIN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def credentials_data() -> Dict[str, Any]:
    """OAuth client JSON as downloaded from Google Cloud Console."""
    return {
        "installed": {
            "client_id": "mock_client_id.apps.googleusercontent.com",
            "client_secret": "mock_client_secret",
            "project_id": "mock-project",
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }


@pytest.fixture
def credentials_json(credentials_data) -> bytes:
    return json.dumps(credentials_data).encode()


@pytest.fixture
def config(tmp_path) -> AuthConfig:
    return AuthConfig(config_dir=tmp_path / "gday", callback_port=0)


@pytest.fixture
def store(config) -> CredentialStore:
    return CredentialStore.from_config(config)


@pytest.fixture
def configured_store(store, credentials_json) -> CredentialStore:
    store.save_credentials(credentials_json)
    return store


@pytest.fixture
def descriptor(credentials_json, config):
    return parse_descriptor(credentials_json, config)


@pytest.fixture
def make_token():
    """Factory for cached tokens relative to NOW."""

    def _make(
        expires_in: Optional[float] = 3600,
        refresh_token: Optional[str] = "mock_refresh_token",
        access_token: str = "mock_access_token",
    ) -> CachedToken:
        expiry = NOW + timedelta(seconds=expires_in) if expires_in is not None else None
        return CachedToken(
            access_token=access_token,
            token_type="Bearer",
            refresh_token=refresh_token,
            expiry=expiry,
        )

    return _make

