"""OAuth2 device authorization grant for headless environments (SSH, containers)."""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests  # type: ignore

from gday.config import (
    DEFAULT_DEVICE_MIN_INTERVAL,
    DEFAULT_DEVICE_SLOW_DOWN_STEP,
    AuthConfig,
)
from gday.descriptor import ClientDescriptor
from gday.errors import (
    Cancelled,
    DeviceAuthRequestFailed,
    GrantExpired,
    NetworkError,
    TokenEndpointError,
    UserDenied,
)
from gday.store import CredentialStore
from gday.tokens import (
    REQUEST_TIMEOUT,
    CachedToken,
    post_token_request,
    token_from_response,
)

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class PollState(Enum):
    """States of the polling loop. Only PENDING leads to another poll."""

    PENDING = "pending"
    SUCCESS = "success"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass
class DeviceGrant:
    """A device/user code pair. Lives only for one login attempt."""

    device_code: str
    user_code: str
    verification_url: str
    expires_at: float
    interval: float

    @classmethod
    def from_response(cls, data: Dict[str, Any], now: float) -> "DeviceGrant":
        verification_url = data.get("verification_url") or data.get("verification_uri")
        if not data.get("device_code") or not data.get("user_code") or not verification_url:
            raise ValueError("Device authorization response is missing fields")
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_url=verification_url,
            expires_at=now + int(data.get("expires_in", 1800)),
            interval=float(data.get("interval") or 0),
        )


@dataclass
class PollResult:
    state: PollState
    token: Optional[CachedToken] = None
    error: Optional[Exception] = None
    slow_down: bool = False


def print_device_prompt(grant: DeviceGrant) -> None:
    """Show the operator where to go and which code to enter."""
    print("\n" + "=" * 50)
    print("  Device Authentication")
    print("=" * 50)
    print()
    print("  1. Open this URL in any browser:")
    print(f"\n     {grant.verification_url}\n")
    print("  2. Enter this code:")
    print(f"\n     {grant.user_code}\n")
    print("=" * 50)
    print()
    print("Waiting for authorization...")


class DeviceFlow:
    """Requests a user code, shows it, then polls the token endpoint."""

    def __init__(
        self,
        descriptor: ClientDescriptor,
        store: CredentialStore,
        min_interval: float = DEFAULT_DEVICE_MIN_INTERVAL,
        slow_down_step: float = DEFAULT_DEVICE_SLOW_DOWN_STEP,
        clock: Callable[[], float] = time.monotonic,
        on_prompt: Callable[[DeviceGrant], None] = print_device_prompt,
    ):
        self.descriptor = descriptor
        self.store = store
        self.min_interval = min_interval
        self.slow_down_step = slow_down_step
        self.clock = clock
        self.on_prompt = on_prompt

    @classmethod
    def from_config(
        cls,
        descriptor: ClientDescriptor,
        store: CredentialStore,
        config: AuthConfig,
        **kwargs,
    ) -> "DeviceFlow":
        return cls(
            descriptor,
            store,
            min_interval=config.device_min_interval,
            slow_down_step=config.device_slow_down_step,
            **kwargs,
        )

    def request_grant(self) -> DeviceGrant:
        """Ask the authorization server for a device/user code pair."""
        data = {
            "client_id": self.descriptor.client_id,
            "scope": self.descriptor.scope,
        }
        try:
            response = requests.post(
                self.descriptor.device_auth_uri, data=data, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise DeviceAuthRequestFailed(f"Device auth request failed: {e}") from e

        if response.status_code != 200:
            raise DeviceAuthRequestFailed(
                f"Device auth request failed: {response.status_code} - {response.text}"
            )

        try:
            return DeviceGrant.from_response(response.json(), self.clock())
        except (ValueError, TypeError, AttributeError) as e:
            raise DeviceAuthRequestFailed(f"Invalid device auth response: {e}") from e

    def poll_once(self, grant: DeviceGrant) -> PollResult:
        """Make one token request for the grant and classify the answer."""
        data = {
            "client_id": self.descriptor.client_id,
            "client_secret": self.descriptor.client_secret,
            "device_code": grant.device_code,
            "grant_type": DEVICE_CODE_GRANT_TYPE,
        }
        try:
            body = post_token_request(self.descriptor.token_uri, data)
            return PollResult(PollState.SUCCESS, token=token_from_response(body))
        except NetworkError as e:
            return PollResult(PollState.FAILED, error=e)
        except TokenEndpointError as e:
            return self._classify(e)

    def _classify(self, e: TokenEndpointError) -> PollResult:
        if e.error == "authorization_pending":
            return PollResult(PollState.PENDING)
        if e.error == "slow_down":
            return PollResult(PollState.PENDING, slow_down=True)
        if e.error == "access_denied":
            return PollResult(PollState.DENIED, error=UserDenied("User denied access"))
        if e.error == "expired_token":
            return PollResult(
                PollState.EXPIRED,
                error=GrantExpired("Device code expired, please try again"),
            )
        return PollResult(PollState.FAILED, error=e)

    def _wait(self, seconds: float, cancel: Optional[threading.Event]) -> bool:
        """Sleep between polls. Returns True if the caller cancelled."""
        if cancel is None:
            time.sleep(seconds)
            return False
        return cancel.wait(seconds)

    def poll(
        self, grant: DeviceGrant, cancel: Optional[threading.Event] = None
    ) -> CachedToken:
        """Poll until the grant reaches a terminal state."""
        interval = max(grant.interval, self.min_interval)

        while True:
            remaining = grant.expires_at - self.clock()
            if remaining <= 0:
                raise GrantExpired("Device code expired before authorization completed")

            if self._wait(min(interval, remaining), cancel):
                raise Cancelled("Device authorization cancelled")

            result = self.poll_once(grant)
            if result.state is PollState.SUCCESS:
                return result.token
            if result.state is not PollState.PENDING:
                raise result.error

            if result.slow_down:
                interval += self.slow_down_step
                logger.debug(f"Server asked to slow down, polling every {interval}s")

    def run(self, cancel: Optional[threading.Event] = None) -> CachedToken:
        """Run the whole device login and persist the token.

        Raises:
            DeviceAuthRequestFailed: No device code could be obtained.
            UserDenied: The user refused access.
            GrantExpired: The code expired before the user approved it.
            Cancelled: ``cancel`` was set while waiting.
            TokenEndpointError, NetworkError: Any other polling failure.
        """
        grant = self.request_grant()
        self.on_prompt(grant)

        token = self.poll(grant, cancel)
        self.store.save_token(token)
        logger.info("Device authorization complete")
        return token
