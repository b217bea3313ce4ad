"""Attachment staging and local preview references.

Files picked for the next message wait in a StagingArea. Committing a send
takes the whole collection and leaves the area empty. While the message is
provisional its attachments point at ``preview://`` references issued by a
PreviewRegistry; those references stop resolving once the provisional
message is settled.
"""
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from .api_interface import attachment_kind
from .config import PREVIEW_SCHEME
from .data_models import Attachment, LocalId
from .debug_log import get_logger
from .errors import PreconditionError

logger = get_logger("attachments")


@dataclass(frozen=True)
class StagedFile:
    path: Path
    display_name: str
    kind: str


class StagingArea:
    def __init__(self):
        self._files: List[StagedFile] = []

    @property
    def files(self) -> Tuple[StagedFile, ...]:
        return tuple(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def stage(self, file: Union[str, Path]) -> StagedFile:
        path = Path(file).expanduser()
        if not path.is_file():
            raise PreconditionError(f"no such file: {path}")
        staged = StagedFile(path=path, display_name=path.name, kind=attachment_kind(path.name))
        self._files.append(staged)
        return staged

    def unstage(self, index: int) -> StagedFile:
        if not 0 <= index < len(self._files):
            raise IndexError(f"no staged file at position {index}")
        return self._files.pop(index)

    def commit(self) -> Tuple[StagedFile, ...]:
        """Hand over everything staged and clear the area."""
        files = tuple(self._files)
        self._files = []
        return files


def is_preview(url: str) -> bool:
    return url.startswith(f"{PREVIEW_SCHEME}://")


class PreviewRegistry:
    """Issues preview references, each owned by one provisional message."""

    def __init__(self):
        self._live: Dict[str, Path] = {}
        self._owners: Dict[LocalId, List[str]] = {}

    def issue(self, owner: LocalId, files: Sequence[StagedFile]) -> Tuple[Attachment, ...]:
        if owner in self._owners:
            raise ValueError(f"previews already issued for {owner}")
        attachments = []
        urls = []
        for index, staged in enumerate(files):
            url = f"{PREVIEW_SCHEME}://{uuid.uuid4().hex}/{quote(staged.display_name)}"
            self._live[url] = staged.path
            urls.append(url)
            attachments.append(Attachment(index, url, staged.kind, staged.display_name))
        self._owners[owner] = urls
        return tuple(attachments)

    def resolve(self, url: str) -> Optional[Path]:
        """Local file behind a live preview reference, None once released."""
        return self._live.get(url)

    def is_live(self, url: str) -> bool:
        return url in self._live

    def release(self, owner: LocalId) -> None:
        for url in self._owners.pop(owner, []):
            self._live.pop(url, None)
        logger.debug("released previews of %s", owner)

    def __len__(self) -> int:
        return len(self._live)
