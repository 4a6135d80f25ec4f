"""Configuration handling for the gday authentication core."""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Load environment variables from .env file if it exists
load_dotenv()

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_DEVICE_AUTH_URI = "https://oauth2.googleapis.com/device/code"
GMAIL_PROFILE_URL = "https://gmail.googleapis.com/gmail/v1/users/me/profile"

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]

DEFAULT_CONFIG_DIR = Path("~/.gday")
DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 8089
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_LOGIN_TIMEOUT = 5 * 60
DEFAULT_DEVICE_MIN_INTERVAL = 5
DEFAULT_DEVICE_SLOW_DOWN_STEP = 5

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")

CONFIG_FILE_NAME = "config.yaml"
CREDENTIALS_FILE_NAME = "credentials.json"
TOKEN_FILE_NAME = "token.json"


@dataclass
class AuthConfig:
    """Settings shared by the credential store, token manager and login flows."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    callback_host: str = DEFAULT_CALLBACK_HOST
    callback_port: int = DEFAULT_CALLBACK_PORT
    callback_path: str = DEFAULT_CALLBACK_PATH
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT
    device_min_interval: float = DEFAULT_DEVICE_MIN_INTERVAL
    device_slow_down_step: float = DEFAULT_DEVICE_SLOW_DOWN_STEP
    expiry_skew: float = 0
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI
    device_auth_uri: str = GOOGLE_DEVICE_AUTH_URI
    profile_url: str = GMAIL_PROFILE_URL

    def __post_init__(self):
        """Validate and normalize configuration values."""
        self.config_dir = Path(self.config_dir).expanduser()

        if self.callback_host not in LOOPBACK_HOSTS:
            raise ValueError(
                f"callback_host '{self.callback_host}' must be a loopback address "
                f"({', '.join(LOOPBACK_HOSTS)})"
            )
        if not (0 <= self.callback_port <= 65535):
            raise ValueError(f"Invalid callback_port: {self.callback_port}")
        if not self.callback_path.startswith("/"):
            raise ValueError(f"callback_path '{self.callback_path}' must start with '/'")
        if self.login_timeout <= 0:
            raise ValueError("login_timeout must be positive")
        if self.device_min_interval < 0 or self.device_slow_down_step < 0:
            raise ValueError("Device polling intervals must not be negative")
        if isinstance(self.scopes, str):
            self.scopes = self.scopes.split()
        if not isinstance(self.scopes, (list, tuple)) or not all(
            isinstance(scope, str) and scope for scope in self.scopes
        ):
            raise ValueError(f"scopes must be a list of scope strings: {self.scopes!r}")
        self.scopes = list(self.scopes)
        if not self.scopes:
            raise ValueError("scopes must contain at least one scope")

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / CREDENTIALS_FILE_NAME

    @property
    def token_path(self) -> Path:
        return self.config_dir / TOKEN_FILE_NAME

    @property
    def skew(self) -> timedelta:
        return timedelta(seconds=self.expiry_skew)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthConfig":
        """Create configuration from dictionary, letting environment variables win."""
        config_dir = os.environ.get("GDAY_CONFIG_DIR") or data.get(
            "config_dir", DEFAULT_CONFIG_DIR
        )
        callback_port = os.environ.get("GDAY_CALLBACK_PORT") or data.get(
            "callback_port", DEFAULT_CALLBACK_PORT
        )
        login_timeout = os.environ.get("GDAY_LOGIN_TIMEOUT") or data.get(
            "login_timeout", DEFAULT_LOGIN_TIMEOUT
        )

        try:
            return cls(
                config_dir=Path(config_dir),
                callback_host=os.environ.get("GDAY_CALLBACK_HOST")
                or data.get("callback_host", DEFAULT_CALLBACK_HOST),
                callback_port=int(callback_port),
                callback_path=data.get("callback_path", DEFAULT_CALLBACK_PATH),
                login_timeout=float(login_timeout),
                device_min_interval=float(
                    data.get("device_min_interval", DEFAULT_DEVICE_MIN_INTERVAL)
                ),
                device_slow_down_step=float(
                    data.get("device_slow_down_step", DEFAULT_DEVICE_SLOW_DOWN_STEP)
                ),
                expiry_skew=float(data.get("expiry_skew", 0)),
                scopes=data.get("scopes") or list(DEFAULT_SCOPES),
                auth_uri=data.get("auth_uri", GOOGLE_AUTH_URI),
                token_uri=data.get("token_uri", GOOGLE_TOKEN_URI),
                device_auth_uri=data.get("device_auth_uri", GOOGLE_DEVICE_AUTH_URI),
                profile_url=data.get("profile_url", GMAIL_PROFILE_URL),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid gday configuration: {e}")


def load_config(config_path: Optional[str] = None) -> AuthConfig:
    """Load configuration from a YAML file and environment variables.

    Args:
        config_path: Explicit path to a YAML configuration file. When omitted,
            ``config.yaml`` inside the config directory is used if present.

    Returns:
        Authentication configuration

    Raises:
        ValueError: If the configuration is invalid
    """
    if config_path:
        path = Path(config_path).expanduser()
    else:
        config_dir = os.environ.get("GDAY_CONFIG_DIR") or str(DEFAULT_CONFIG_DIR)
        path = Path(config_dir).expanduser() / CONFIG_FILE_NAME

    config_data: Dict[str, Any] = {}
    try:
        with open(path, "r") as f:
            config_data = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {path}")
    except FileNotFoundError:
        if config_path:
            logger.warning(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in configuration file {path}: {e}")

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    return AuthConfig.from_dict(config_data)
