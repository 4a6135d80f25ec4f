"""Tests for the authorized transports."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from gday.client import AuthorizedSession, ClientFactory, get_client
from gday.errors import NotConfigured, Unauthenticated
from gday.tokens import TokenManager

from tests.helpers import NOW, mock_response, token_success

TEN_YEARS = 10 * 365 * 24 * 3600


@pytest.fixture
def manager(configured_store, config, make_token):
    configured_store.save_token(make_token(expires_in=TEN_YEARS))
    return TokenManager(configured_store, config)


class TestAuthorizedSession:
    def test_sets_authorization_header(self, manager):
        with patch("requests.Session.request", return_value=mock_response(200, {})) as mock_request:
            response = AuthorizedSession(manager).get(
                "https://gmail.googleapis.com/x", headers={"Accept": "application/json"}
            )

        assert response.status_code == 200
        headers = mock_request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer mock_access_token"
        assert headers["Accept"] == "application/json"

    def test_retries_once_after_401(self, manager):
        responses = [mock_response(401, {}), mock_response(200, {})]
        with patch("requests.Session.request", side_effect=responses) as mock_request:
            with patch("gday.tokens.requests.post", return_value=token_success()) as mock_post:
                response = AuthorizedSession(manager).get("https://gmail.googleapis.com/x")

        assert response.status_code == 200
        mock_post.assert_called_once()
        assert mock_request.call_count == 2
        retry_headers = mock_request.call_args_list[1][1]["headers"]
        assert retry_headers["Authorization"] == "Bearer new_access_token"
        responses[0].close.assert_called_once()

    def test_second_401_is_returned(self, manager):
        responses = [mock_response(401, {}), mock_response(401, {})]
        with patch("requests.Session.request", side_effect=responses) as mock_request:
            with patch("gday.tokens.requests.post", return_value=token_success()):
                response = AuthorizedSession(manager).get("https://gmail.googleapis.com/x")

        assert response.status_code == 401
        assert mock_request.call_count == 2

    def test_unauthenticated_sends_nothing(self, configured_store, config):
        manager = TokenManager(configured_store, config)

        with patch("requests.Session.request") as mock_request:
            with pytest.raises(Unauthenticated):
                AuthorizedSession(manager).get("https://gmail.googleapis.com/x")

        mock_request.assert_not_called()


class TestClientFactory:
    def test_credentials(self, manager):
        credentials = ClientFactory(manager).credentials()

        assert credentials.token == "mock_access_token"
        assert credentials.expiry.tzinfo is None
        assert credentials.expiry == (NOW + timedelta(seconds=TEN_YEARS)).replace(tzinfo=None)
        assert credentials.refresh_token is None
        assert "https://www.googleapis.com/auth/gmail.readonly" in credentials.scopes

    def test_credentials_refresh_goes_through_manager(self, manager, configured_store):
        credentials = ClientFactory(manager).credentials()

        with patch("gday.tokens.requests.post", return_value=token_success()) as mock_post:
            credentials.refresh(MagicMock())

        mock_post.assert_called_once()
        assert credentials.token == "new_access_token"
        assert credentials.expiry > datetime.now(timezone.utc).replace(tzinfo=None)
        assert b"new_access_token" in configured_store.read_token()

    def test_refresh_without_expires_in(self, configured_store, config):
        configured_store.save_token({"access_token": "a", "refresh_token": "r"})
        manager = TokenManager(configured_store, config)
        credentials = ClientFactory(manager).credentials()
        assert credentials.expiry is None

        response = mock_response(200, {"access_token": "no_expiry_token", "token_type": "Bearer"})
        with patch("gday.tokens.requests.post", return_value=response):
            credentials.refresh(MagicMock())

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        assert credentials.token == "no_expiry_token"
        assert now < credentials.expiry <= now + timedelta(hours=1)
        assert credentials.valid is True
        assert b"no_expiry_token" in configured_store.read_token()

    def test_build_service(self, manager):
        with patch("gday.client.build") as mock_build:
            service = ClientFactory(manager).build_service("gmail", "v1")

        assert service is mock_build.return_value
        args, kwargs = mock_build.call_args
        assert args == ("gmail", "v1")
        assert kwargs["cache_discovery"] is False
        assert kwargs["credentials"].token == "mock_access_token"


class TestGetClient:
    def test_not_configured(self, config):
        with pytest.raises(NotConfigured):
            get_client(config)

    def test_logged_out(self, configured_store, config):
        with pytest.raises(Unauthenticated):
            get_client(config)

    def test_ready(self, manager, config):
        factory = get_client(config)

        assert factory.descriptor.client_id == "mock_client_id.apps.googleusercontent.com"
