"""Browser-based OAuth2 login with a local redirect callback."""

import logging
import secrets
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TextIO
from urllib.parse import urlencode

from flask import Flask, request
from werkzeug.serving import make_server

from gday.browser import attempt_open
from gday.config import (
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PATH,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_LOGIN_TIMEOUT,
    AuthConfig,
)
from gday.descriptor import ClientDescriptor
from gday.errors import (
    CallbackPortUnavailable,
    CallbackProtocolError,
    Cancelled,
    Timeout,
)
from gday.store import CredentialStore
from gday.tokens import CachedToken, exchange_code, token_from_response

logger = logging.getLogger(__name__)

# How often the waiting thread looks at the caller's cancel event
CANCEL_CHECK_INTERVAL = 0.2

SUCCESS_PAGE = """
<html>
<head><title>Authentication Successful</title></head>
<body>
    <h1>Success!</h1>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""

ERROR_PAGE = """
<html>
<head><title>Authentication Failed</title></head>
<body>
    <h1>Error</h1>
    <p>{message}</p>
    <p>Return to the terminal and run the login again.</p>
</body>
</html>
"""


class Outcome(Enum):
    """Ways a login attempt can end."""

    CODE = "code"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class SessionResult:
    outcome: Outcome
    code: Optional[str] = None
    error: Optional[str] = None


class AuthSession:
    """Single-use completion slot for one login attempt.

    The callback handler, the deadline timer and the waiting thread all
    report through ``resolve``; only the first report is kept.
    """

    def __init__(self, state: str, timeout: float):
        self.state = state
        self.timeout = timeout
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._result: Optional[SessionResult] = None
        self._timer = threading.Timer(
            timeout, self.resolve, args=(SessionResult(Outcome.TIMEOUT),)
        )
        self._timer.daemon = True

    def start(self) -> None:
        """Start the deadline timer."""
        self._timer.start()

    def close(self) -> None:
        self._timer.cancel()

    def resolve(self, result: SessionResult) -> bool:
        """Record the outcome. Returns False if another outcome already won."""
        with self._lock:
            if self._result is not None:
                logger.debug(f"Ignoring late {result.outcome.value} outcome")
                return False
            self._result = result
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[SessionResult]:
        if self._done.wait(timeout):
            return self._result
        return None

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    def state_matches(self, state: Optional[str]) -> bool:
        if not state:
            return False
        return secrets.compare_digest(state.encode(), self.state.encode())


def create_callback_app(session: AuthSession, callback_path: str) -> Flask:
    """Create the Flask app that receives the authorization redirect."""
    app = Flask(__name__)

    def fail(message: str):
        session.resolve(SessionResult(Outcome.ERROR, error=message))
        return ERROR_PAGE.format(message=message), 400

    @app.route(callback_path)
    def oauth2callback():
        error = request.args.get("error")
        if error:
            return fail(f"Authorization server returned an error: {error}")

        if not session.state_matches(request.args.get("state")):
            return fail("State parameter mismatch. The request was not started by gday.")

        code = request.args.get("code")
        if not code:
            return fail("No authorization code received.")

        session.resolve(SessionResult(Outcome.CODE, code=code))
        return SUCCESS_PAGE

    return app


class CallbackListener:
    """Serves the callback app on a background thread.

    Use as a context manager; the server is shut down exactly once when the
    block exits, whatever the reason.
    """

    def __init__(self, app: Flask, host: str, port: int):
        self.app = app
        self.host = host
        self.requested_port = port
        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Listener is not running")
        return self._server.server_address[1]

    def start(self) -> None:
        try:
            self._server = make_server(
                self.host, self.requested_port, self.app, threaded=True
            )
        except (OSError, SystemExit) as e:
            raise CallbackPortUnavailable(
                f"Could not listen on {self.host}:{self.requested_port}: {e}"
            ) from e
        self._server.timeout = 0.5

        self._thread = threading.Thread(
            target=self._serve, name="gday-oauth-callback", daemon=True
        )
        self._thread.start()
        logger.debug(f"Callback listener started on {self.host}:{self.port}")

    def _serve(self) -> None:
        while not self._stop.is_set():
            self._server.handle_request()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
        if self._server is not None:
            self._server.server_close()
        logger.debug("Callback listener stopped")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "CallbackListener":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class InteractiveFlow:
    """Authorization code flow: browser consent, local redirect, code exchange."""

    def __init__(
        self,
        descriptor: ClientDescriptor,
        store: CredentialStore,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
        opener: Callable[[str], bool] = attempt_open,
        out: Optional[TextIO] = None,
    ):
        self.descriptor = descriptor
        self.store = store
        self.host = host
        self.port = port
        self.callback_path = callback_path
        self.timeout = timeout
        self.opener = opener
        self.out = out

    @classmethod
    def from_config(
        cls,
        descriptor: ClientDescriptor,
        store: CredentialStore,
        config: AuthConfig,
        **kwargs,
    ) -> "InteractiveFlow":
        return cls(
            descriptor,
            store,
            host=config.callback_host,
            port=config.callback_port,
            callback_path=config.callback_path,
            timeout=config.login_timeout,
            **kwargs,
        )

    def redirect_uri(self, port: int) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{port}{self.callback_path}"

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": self.descriptor.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.descriptor.scope,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.descriptor.auth_uri}?{urlencode(params)}"

    def _print(self, *args) -> None:
        print(*args, file=self.out)

    def run(self, cancel: Optional[threading.Event] = None) -> CachedToken:
        """Run the login and persist the resulting token.

        Raises:
            Timeout: No redirect arrived before the deadline.
            CallbackProtocolError: The redirect was unusable.
            CallbackPortUnavailable: The local listener could not be started.
            Cancelled: ``cancel`` was set while waiting.
            TokenEndpointError, NetworkError: The code exchange failed.
        """
        session = AuthSession(secrets.token_urlsafe(16), self.timeout)
        app = create_callback_app(session, self.callback_path)

        with CallbackListener(app, self.host, self.port) as listener:
            redirect_uri = self.redirect_uri(listener.port)
            auth_url = self.authorization_url(redirect_uri, session.state)

            session.start()
            try:
                self._print("\nOpening browser for Google authentication...")
                self._print("\nIf the browser doesn't open, visit this URL:")
                self._print(f"\n  {auth_url}\n")
                if not self.opener(auth_url):
                    logger.info("Browser launch failed, waiting for manual visit")
                result = self._wait(session, cancel)
            finally:
                session.close()

        if result.outcome is Outcome.TIMEOUT:
            raise Timeout(
                f"Authentication timed out after {self.timeout:g} seconds. "
                "Please try again"
            )
        if result.outcome is Outcome.CANCELLED:
            raise Cancelled("Authentication cancelled")
        if result.outcome is Outcome.ERROR:
            raise CallbackProtocolError(f"OAuth callback error: {result.error}")

        logger.info("Received authorization code, exchanging for tokens")
        data = exchange_code(self.descriptor, result.code, redirect_uri)
        token = token_from_response(data)
        self.store.save_token(token)
        logger.info("Successfully obtained OAuth2 tokens")
        return token

    def _wait(
        self, session: AuthSession, cancel: Optional[threading.Event]
    ) -> SessionResult:
        while True:
            result = session.wait(CANCEL_CHECK_INTERVAL)
            if result is not None:
                return result
            if cancel is not None and cancel.is_set():
                session.resolve(SessionResult(Outcome.CANCELLED))
