"""Bearer credential persistence for chatsync.

Signing in happens elsewhere; this module only stores and reads the access
token that the REST client presents, plus the signed-in user's id so the
shell can tell its own messages apart. Both live in the system keyring under
service ``chatsync`` (keys ``access_token`` and ``user_id``).

Functions:
  - save_token(token: str, user_id: Optional[int]) -> None
  - load_token() -> Optional[str]
  - load_user_id() -> Optional[int]
  - clear_token() -> None
"""

from __future__ import annotations

from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import KEYRING_SERVICE, TOKEN_KEY, USER_ID_KEY
from .debug_log import get_logger
from .errors import ConfigError

logger = get_logger("auth_storage")


def save_token(token: str, user_id: Optional[int] = None) -> None:
    """Persist the access token (and optionally the user id) in keyring.

    Raises ConfigError when the keyring backend refuses the write so the
    caller can surface it immediately.
    """
    if not token:
        raise ConfigError("refusing to store an empty token")
    try:
        keyring.set_password(KEYRING_SERVICE, TOKEN_KEY, token)
        if user_id is not None:
            keyring.set_password(KEYRING_SERVICE, USER_ID_KEY, str(user_id))
    except KeyringError as e:
        logger.exception("auth_storage: failed to write token to keyring")
        raise ConfigError("keyring backend is not available") from e
    logger.debug("auth_storage: wrote token to keyring")


def load_token() -> Optional[str]:
    """Return the stored access token, or None if absent or unreadable."""
    try:
        return keyring.get_password(KEYRING_SERVICE, TOKEN_KEY)
    except KeyringError:
        logger.warning("auth_storage: could not read token from keyring", exc_info=True)
        return None


def load_user_id() -> Optional[int]:
    try:
        raw = keyring.get_password(KEYRING_SERVICE, USER_ID_KEY)
    except KeyringError:
        return None
    try:
        return int(raw) if raw else None
    except ValueError:
        logger.warning("auth_storage: ignoring malformed user id %r", raw)
        return None


def clear_token() -> None:
    """Remove stored token and user id (best-effort)."""
    for key in (TOKEN_KEY, USER_ID_KEY):
        try:
            keyring.delete_password(KEYRING_SERVICE, key)
        except PasswordDeleteError:
            # nothing stored under this key
            pass
        except KeyringError:
            logger.warning("auth_storage: failed to delete %s", key, exc_info=True)
