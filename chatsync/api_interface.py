from typing import List, Optional, Dict, Any, Sequence
from datetime import datetime, timezone
from pathlib import Path
import mimetypes
import threading

import requests
from requests import Session

from .config import Settings
from .data_models import Attachment, Message, ServerId, Thread, UserSummary, utc
from .debug_log import get_logger
from .errors import ServerRejected, TransportError
from . import auth_storage

logger = get_logger("api")


class APIInterface:
    """Backend operations the sync engine consumes.

    Implementations block; the engine runs them off the event loop.
    Failures are raised as TransportError or ServerRejected.
    """
    def get_threads(self) -> List[Thread]: ...
    def get_messages(self, thread_id: int) -> List[Message]: ...
    def send_message(self, thread_id: int, content: str, files: Sequence[Path]) -> Message: ...
    def delete_message(self, thread_id: int, message_id: ServerId) -> None: ...
    def mark_read(self, thread_id: int) -> None: ...
    def block_user(self, user_id: int) -> None: ...
    def unblock_user(self, user_id: int) -> None: ...
    def search_users(self, query: str) -> List[UserSummary]: ...
    def start_thread(self, user_id: int) -> int: ...


def attachment_kind(name: str, mime: Optional[str] = None) -> str:
    """Classify a file as image, video or file from its MIME type."""
    if mime is None:
        mime, _ = mimetypes.guess_type(name)
    mime = mime or ""
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    return "file"


class RealAPI(APIInterface):
    """Real API client that talks to the chat REST backend.

    It expects a base_url like http://localhost:3001/api and bearer-token
    auth installed with set_token().

    The engine calls it from worker threads concurrently, so each thread
    gets its own requests.Session carrying the shared headers.
    """
    def __init__(self, base_url: str, token: str | None = None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers: Dict[str, str] = {}
        self._local = threading.local()
        self.token = None
        if token:
            self.set_token(token)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RealAPI":
        return cls(settings.backend_url, token=auth_storage.load_token(), timeout=settings.timeout)

    # --- helpers ---
    def set_token(self, token: str) -> None:
        self.token = token
        self.headers["Authorization"] = f"Bearer {self.token}"

    @property
    def session(self) -> Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        session.headers.update(self.headers)
        return session

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.debug("%s %s failed: %s", method, url, e)
            raise TransportError(str(e)) from e

        if not resp.ok:
            raise ServerRejected(resp.status_code, self._error_text(resp))
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"invalid JSON from {method} {path}") from e

    @staticmethod
    def _error_text(resp: requests.Response) -> Optional[str]:
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            for key in ("message", "error", "detail"):
                if isinstance(body.get(key), str) and body[key]:
                    return body[key]
        return None

    def get_threads(self) -> List[Thread]:
        data = self._request("GET", "/chats") or []
        try:
            return [self._convert_thread(t) for t in data]
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"malformed thread list: {e}") from e

    def get_messages(self, thread_id: int) -> List[Message]:
        data = self._request("GET", f"/chats/{thread_id}/messages") or []
        try:
            return [self._convert_message(m, thread_id) for m in data]
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"malformed message list: {e}") from e

    def send_message(self, thread_id: int, content: str, files: Sequence[Path] = ()) -> Message:
        handles = []
        try:
            upload = []
            for path in files:
                path = Path(path)
                fh = path.open("rb")
                handles.append(fh)
                mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
                upload.append(("files", (path.name, fh, mime)))
            data = self._request(
                "POST",
                f"/chats/{thread_id}/messages",
                data={"content": content},
                files=upload or None,
            )
        except OSError as e:
            raise TransportError(f"could not read attachment: {e}") from e
        finally:
            for fh in handles:
                fh.close()
        if not isinstance(data, dict):
            raise TransportError("send returned no message")
        try:
            return self._convert_message(data, thread_id)
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"malformed message: {e}") from e

    def delete_message(self, thread_id: int, message_id: ServerId) -> None:
        self._request("DELETE", f"/chats/{thread_id}/messages/{message_id.value}")

    def mark_read(self, thread_id: int) -> None:
        self._request("POST", f"/chats/{thread_id}/read")

    def block_user(self, user_id: int) -> None:
        self._request("POST", "/users/block", json={"userId": user_id})

    def unblock_user(self, user_id: int) -> None:
        self._request("DELETE", f"/users/block/{user_id}")

    def search_users(self, query: str) -> List[UserSummary]:
        data = self._request("GET", "/users/search", params={"query": query}) or []
        try:
            return [
                UserSummary(
                    id=int(u["id"]),
                    username=u.get("username") or "",
                    display_name=u.get("name") or u.get("username") or "",
                    avatar_ref=u.get("avatar") or "",
                )
                for u in data
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"malformed search results: {e}") from e

    def start_thread(self, user_id: int) -> int:
        data = self._request("POST", "/chats", json={"targetUserId": user_id})
        if not isinstance(data, dict) or "id" not in data:
            raise TransportError("start thread returned no id")
        return int(data["id"])

    # --- conversion helpers ---
    @staticmethod
    def _parse_time(value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return utc(value)
        if not value:
            return None
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return utc(datetime.fromisoformat(text))

    def _convert_thread(self, t: Dict[str, Any]) -> Thread:
        return Thread(
            id=int(t["id"]),
            kind=t.get("type") or "direct",
            display_name=t.get("name") or "",
            avatar_ref=t.get("avatar") or "",
            last_message_preview=t.get("last_message") or "",
            last_message_time=self._parse_time(t.get("last_message_time")),
            unread_count=max(0, int(t.get("unread_count") or 0)),
            online=bool(t.get("online") or False),
            blocked=bool(t.get("is_blocked") or False),
            peer_user_id=int(t["otherUserId"]) if t.get("otherUserId") is not None else None,
            bio=t.get("bio"),
            birthdate=t.get("birthdate"),
        )

    def _convert_message(self, m: Dict[str, Any], thread_id: int) -> Message:
        """Convert backend message response to Message dataclass"""
        return Message(
            id=ServerId(int(m["id"])),
            thread_id=int(m.get("chat_id") or thread_id),
            sender_id=int(m.get("sender_id") or 0),
            content=m.get("content") or "",
            created_at=self._parse_time(m.get("created_at")) or datetime.now(timezone.utc),
            attachments=tuple(
                Attachment(
                    id=int(a.get("id") or 0),
                    url=a.get("url") or "",
                    kind=a.get("type") or attachment_kind(a.get("name") or ""),
                    display_name=a.get("name") or "",
                )
                for a in (m.get("attachments") or [])
            ),
            read=bool(m.get("is_read") or False),
            sender_name=m.get("name") or m.get("username") or "",
        )
