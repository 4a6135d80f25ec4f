"""Tests for the device authorization flow."""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from gday.device import DEVICE_CODE_GRANT_TYPE, DeviceFlow, DeviceGrant, PollState
from gday.errors import (
    Cancelled,
    DeviceAuthRequestFailed,
    GrantExpired,
    NetworkError,
    NotConfigured,
    TokenEndpointError,
    UserDenied,
)
from gday.tokens import CachedToken, TokenManager

from tests.helpers import mock_response, token_error, token_success


def device_code_response(interval=5, expires_in=1800):
    return mock_response(
        200,
        {
            "device_code": "mock_device_code",
            "user_code": "ABCD-EFGH",
            "verification_url": "https://www.google.com/device",
            "expires_in": expires_in,
            "interval": interval,
        },
    )


@pytest.fixture
def prompts():
    return []


@pytest.fixture
def flow(descriptor, configured_store, prompts):
    return DeviceFlow(descriptor, configured_store, on_prompt=prompts.append)


@pytest.fixture
def waits(flow):
    """Record poll intervals instead of sleeping."""
    recorded = []
    with patch.object(flow, "_wait", side_effect=lambda seconds, cancel: recorded.append(seconds) or False):
        yield recorded


def test_request_grant(flow):
    with patch("gday.device.requests.post", return_value=device_code_response()) as mock_post:
        grant = flow.request_grant()

    assert grant.device_code == "mock_device_code"
    assert grant.user_code == "ABCD-EFGH"
    assert grant.interval == 5
    url = mock_post.call_args[0][0]
    assert url == "https://oauth2.googleapis.com/device/code"
    assert mock_post.call_args[1]["data"] == {
        "client_id": "mock_client_id.apps.googleusercontent.com",
        "scope": " ".join(flow.descriptor.scopes),
    }


def test_grant_accepts_verification_uri():
    grant = DeviceGrant.from_response(
        {
            "device_code": "d",
            "user_code": "u",
            "verification_uri": "https://example.test/device",
            "expires_in": 600,
        },
        now=100.0,
    )

    assert grant.verification_url == "https://example.test/device"
    assert grant.expires_at == 700.0
    assert grant.interval == 0


@pytest.mark.parametrize(
    "response",
    [
        mock_response(400, {"error": "invalid_client"}),
        mock_response(200, {"device_code": "only"}),
        mock_response(200),
    ],
)
def test_request_grant_failures(flow, response):
    with patch("gday.device.requests.post", return_value=response):
        with pytest.raises(DeviceAuthRequestFailed):
            flow.request_grant()


def test_request_grant_network_failure(flow):
    with patch("gday.device.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(DeviceAuthRequestFailed):
            flow.request_grant()


def test_slow_down_increases_interval_once(flow, waits, prompts, configured_store):
    responses = [
        device_code_response(interval=5),
        token_error("authorization_pending"),
        token_error("authorization_pending"),
        token_error("slow_down"),
        token_error("authorization_pending"),
        token_success(refresh_token="device_refresh"),
    ]
    with patch("gday.device.requests.post", side_effect=responses) as mock_post:
        token = flow.run()

    assert waits == [5, 5, 5, 10, 10]
    assert mock_post.call_count == 6
    assert token.access_token == "new_access_token"
    assert token.refresh_token == "device_refresh"
    assert prompts[0].user_code == "ABCD-EFGH"
    assert CachedToken.from_json(configured_store.read_token()) == token

    poll_data = mock_post.call_args[1]["data"]
    assert poll_data["grant_type"] == DEVICE_CODE_GRANT_TYPE
    assert poll_data["device_code"] == "mock_device_code"
    assert poll_data["client_secret"] == "mock_client_secret"


def test_interval_has_floor(flow, waits):
    responses = [device_code_response(interval=1), token_success()]
    with patch("gday.device.requests.post", side_effect=responses):
        flow.run()

    assert waits == [5]


def test_access_denied_stops_polling(flow, waits, configured_store):
    responses = [
        device_code_response(),
        token_error("authorization_pending"),
        token_error("access_denied"),
        token_success(),
    ]
    with patch("gday.device.requests.post", side_effect=responses) as mock_post:
        with pytest.raises(UserDenied):
            flow.run()

    assert mock_post.call_count == 3
    assert configured_store.token_exists() is False


def test_expired_token(flow, waits):
    responses = [device_code_response(), token_error("expired_token")]
    with patch("gday.device.requests.post", side_effect=responses):
        with pytest.raises(GrantExpired):
            flow.run()


def test_other_error_fails_immediately(flow, waits):
    responses = [device_code_response(), token_error("invalid_client", "Unauthorized")]
    with patch("gday.device.requests.post", side_effect=responses) as mock_post:
        with pytest.raises(TokenEndpointError) as excinfo:
            flow.run()

    assert excinfo.value.error == "invalid_client"
    assert mock_post.call_count == 2


def test_network_error_while_polling(flow, waits):
    responses = [device_code_response(), requests.ConnectionError("reset")]
    with patch("gday.device.requests.post", side_effect=responses):
        with pytest.raises(NetworkError):
            flow.run()


def test_poll_once_states(flow):
    grant = DeviceGrant("d", "u", "https://www.google.com/device", 1e12, 5)
    cases = [
        (token_error("authorization_pending"), PollState.PENDING),
        (token_error("slow_down"), PollState.PENDING),
        (token_error("access_denied"), PollState.DENIED),
        (token_error("expired_token"), PollState.EXPIRED),
        (token_error("invalid_grant"), PollState.FAILED),
        (token_success(), PollState.SUCCESS),
    ]
    for response, expected in cases:
        with patch("gday.device.requests.post", return_value=response):
            assert flow.poll_once(grant).state is expected


def test_malformed_token_response_fails_with_endpoint_error(flow, waits, configured_store):
    responses = [
        device_code_response(),
        mock_response(200, {"access_token": "x", "expires_in": "soon"}),
    ]
    with patch("gday.device.requests.post", side_effect=responses):
        with pytest.raises(TokenEndpointError) as excinfo:
            flow.run()

    assert excinfo.value.error == "invalid_response"
    assert configured_store.token_exists() is False


def test_deadline_bounds_polling(descriptor, configured_store):
    now = [0.0]
    flow = DeviceFlow(descriptor, configured_store, clock=lambda: now[0], on_prompt=MagicMock())

    def fake_wait(seconds, cancel):
        now[0] += seconds
        return False

    grant = DeviceGrant("d", "u", "https://www.google.com/device", expires_at=12.0, interval=5)
    with patch.object(flow, "_wait", side_effect=fake_wait):
        with patch(
            "gday.device.requests.post",
            return_value=token_error("authorization_pending"),
        ) as mock_post:
            with pytest.raises(GrantExpired):
                flow.poll(grant)

    # Polls at t=5, t=10 and a final one at the deadline t=12
    assert mock_post.call_count == 3


def test_cancel_aborts_polling(flow, configured_store):
    cancel = threading.Event()
    cancel.set()

    with patch("gday.device.requests.post", return_value=device_code_response()) as mock_post:
        with pytest.raises(Cancelled):
            flow.run(cancel)

    assert mock_post.call_count == 1
    assert configured_store.token_exists() is False


def test_end_to_end_device_login(store, credentials_json, config):
    manager = TokenManager(store, config)
    assert store.credentials_exist() is False
    with pytest.raises(NotConfigured):
        manager.get_valid_token()

    store.save_credentials(credentials_json)
    descriptor = TokenManager(store, config).descriptor
    flow = DeviceFlow.from_config(descriptor, store, config, on_prompt=MagicMock())

    responses = [
        device_code_response(),
        token_error("authorization_pending"),
        token_error("authorization_pending"),
        token_success(refresh_token="device_refresh"),
    ]
    with patch.object(flow, "_wait", return_value=False):
        with patch("gday.device.requests.post", side_effect=responses):
            token = flow.run()

    assert token.access_token
    assert token.expiry > datetime.now(timezone.utc)

    with patch("gday.tokens.requests.post") as mock_post:
        cached = TokenManager(store, config).get_valid_token()

    mock_post.assert_not_called()
    assert cached == token
