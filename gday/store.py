"""File-backed storage for the OAuth client descriptor and the cached token."""

import errno
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from gday.config import CREDENTIALS_FILE_NAME, TOKEN_FILE_NAME, AuthConfig
from gday.errors import (
    NotConfigured,
    PermissionDenied,
    PersistenceError,
    TokenNotFound,
)

logger = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600


def _persistence_error(action: str, path: Path, exc: OSError) -> PersistenceError:
    if exc.errno in (errno.EACCES, errno.EPERM):
        return PermissionDenied(f"Permission denied while trying to {action} {path}")
    return PersistenceError(f"Failed to {action} {path}: {exc}")


class CredentialStore:
    """Reads and writes ``credentials.json`` and ``token.json`` in the config dir.

    Every file is written owner-only (0600) inside an owner-only (0700)
    directory. Writes go through a temporary file that is renamed over the
    target, so a reader never observes a half-written token. There is no
    locking: two processes saving at once leave whichever wrote last.
    """

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        if config_dir is None:
            config_dir = AuthConfig().config_dir
        self.config_dir = Path(config_dir).expanduser()

    @classmethod
    def from_config(cls, config: AuthConfig) -> "CredentialStore":
        return cls(config.config_dir)

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / CREDENTIALS_FILE_NAME

    @property
    def token_path(self) -> Path:
        return self.config_dir / TOKEN_FILE_NAME

    def _ensure_dir(self) -> None:
        try:
            self.config_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            os.chmod(self.config_dir, DIR_MODE)
        except OSError as e:
            raise _persistence_error("create", self.config_dir, e) from e

    def _write(self, path: Path, data: bytes) -> None:
        self._ensure_dir()
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, FILE_MODE)
            tmp_path.replace(path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.debug(f"Could not remove temporary file {tmp_path}")
            raise _persistence_error("write", path, e) from e

    def _read(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise _persistence_error("read", path, e) from e

    def save_credentials(self, data: bytes) -> None:
        """Persist the raw client descriptor JSON."""
        self._write(self.credentials_path, data)
        logger.info(f"Saved OAuth client credentials to {self.credentials_path}")

    def read_credentials(self) -> bytes:
        try:
            return self._read(self.credentials_path)
        except FileNotFoundError:
            raise NotConfigured(f"No credentials file at {self.credentials_path}")

    def credentials_exist(self) -> bool:
        return self.credentials_path.is_file()

    def save_token(self, token: Union[bytes, Mapping[str, Any], Any]) -> None:
        """Persist a token, overwriting any previously cached one.

        Accepts raw JSON bytes, a mapping, or any object with ``to_dict()``.
        """
        if isinstance(token, (bytes, bytearray)):
            data = bytes(token)
        else:
            payload = token if isinstance(token, Mapping) else token.to_dict()
            data = json.dumps(payload, indent=2).encode()
        self._write(self.token_path, data)
        logger.debug(f"Saved token to {self.token_path}")

    def read_token(self) -> bytes:
        try:
            return self._read(self.token_path)
        except FileNotFoundError:
            raise TokenNotFound(f"No token file at {self.token_path}")

    def token_exists(self) -> bool:
        return self.token_path.is_file()

    def delete_token(self) -> bool:
        """Remove the cached token. Returns False if there was none."""
        try:
            self.token_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise _persistence_error("delete", self.token_path, e) from e
        logger.info(f"Deleted cached token {self.token_path}")
        return True
