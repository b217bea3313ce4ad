"""Runtime settings for chatsync.

Values come from the environment (and a local ``.env`` file when present).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv(override=True)

# Backend
DEFAULT_BACKEND_URL = "http://localhost:3001/api"
DEFAULT_TIMEOUT = 5.0

# Poll cadence (seconds)
DEFAULT_LIST_INTERVAL = 5.0
DEFAULT_THREAD_INTERVAL = 3.0

# Storage settings
KEYRING_SERVICE = "chatsync"
TOKEN_KEY = "access_token"
USER_ID_KEY = "user_id"

# Local settings
MIN_SEARCH_LENGTH = 2
PREVIEW_SCHEME = "preview"
DEBUG_LOG_FILE = Path.home() / ".chatsync_debug.log"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _user_id_env(name: str):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    backend_url: str = DEFAULT_BACKEND_URL
    timeout: float = DEFAULT_TIMEOUT
    list_interval: float = DEFAULT_LIST_INTERVAL
    thread_interval: float = DEFAULT_THREAD_INTERVAL
    debug: bool = False
    user_id: Optional[int] = None

    @classmethod
    def from_env(cls) -> "Settings":
        backend_url = (
            os.environ.get("CHATSYNC_BACKEND_URL")
            or os.environ.get("BACKEND_URL")
            or DEFAULT_BACKEND_URL
        )
        return cls(
            backend_url=backend_url.rstrip("/"),
            timeout=_float_env("CHATSYNC_TIMEOUT", DEFAULT_TIMEOUT),
            list_interval=_float_env("CHATSYNC_LIST_INTERVAL", DEFAULT_LIST_INTERVAL),
            thread_interval=_float_env("CHATSYNC_THREAD_INTERVAL", DEFAULT_THREAD_INTERVAL),
            debug=bool(os.environ.get("CHATSYNC_DEBUG")),
            user_id=_user_id_env("CHATSYNC_USER_ID"),
        )
