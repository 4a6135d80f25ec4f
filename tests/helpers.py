"""Shared helpers for faking OAuth endpoint responses."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

NOW = datetime(2026, 10, 16, 12, 0, 0, tzinfo=timezone.utc)


def mock_response(status_code: int = 200, body: Any = None) -> MagicMock:
    """A stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
        response.text = ""
    else:
        response.json.return_value = body
        response.text = json.dumps(body)
    return response


def token_error(error: str, description: Optional[str] = None) -> MagicMock:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return mock_response(400 if error != "authorization_pending" else 428, body)


def token_success(
    access_token: str = "new_access_token",
    refresh_token: Optional[str] = None,
    expires_in: int = 3599,
) -> MagicMock:
    body: Dict[str, Any] = {
        "access_token": access_token,
        "expires_in": expires_in,
        "token_type": "Bearer",
        "scope": "https://www.googleapis.com/auth/gmail.readonly",
    }
    if refresh_token:
        body["refresh_token"] = refresh_token
    return mock_response(200, body)
