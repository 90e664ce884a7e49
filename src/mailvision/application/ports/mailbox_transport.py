from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

from mailvision.application.cancellation import CancellationToken
from mailvision.domain.events import FolderEvent

IMAGE_EXTENSIONS = (".jpg", ".png")

EventSink = Callable[[FolderEvent], None]


@dataclass(frozen=True)
class FolderInfo:
    name: str
    count: int
    uidvalidity: int = 0


@dataclass(frozen=True)
class BodyPart:
    # IMAP part specifier: "1", "2.1", ...
    specifier: str
    content_type: str
    filename: Optional[str] = None
    disposition: Optional[str] = None
    encoding: Optional[str] = None
    size: int = 0
    # Single-part message: its MIME headers are the message header
    top_level: bool = False

    @property
    def is_attachment(self) -> bool:
        return (self.disposition or "").lower() == "attachment"

    @property
    def is_image_file(self) -> bool:
        return bool(self.filename) and self.filename.lower().endswith(IMAGE_EXTENSIONS)

    @property
    def header_section(self) -> str:
        return "HEADER" if self.top_level else f"{self.specifier}.MIME"


@dataclass(frozen=True)
class MessageSummary:
    uid: int
    internal_date: Optional[datetime]
    envelope_date: Optional[datetime] = None
    subject: str = ""
    body_parts: list[BodyPart] = field(default_factory=list)

    @property
    def attachments(self) -> list[BodyPart]:
        return [p for p in self.body_parts if p.is_attachment]

    @property
    def date(self) -> Optional[datetime]:
        return self.internal_date or self.envelope_date


class MailboxTransport(Protocol):
    """Stateful IMAP session bound to a single folder.

    Adapters raise ConnectivityError for I/O and protocol faults and
    AuthenticationError when credentials are rejected.
    """

    @property
    def is_connected(self) -> bool: ...

    @property
    def is_authenticated(self) -> bool: ...

    @property
    def supports_idle(self) -> bool: ...

    @property
    def message_count(self) -> int: ...

    def connect(self) -> None: ...

    def login(self) -> None: ...

    def open_folder(self, name: Optional[str]) -> FolderInfo: ...

    def idle(self, scope: CancellationToken, emit: EventSink) -> None:
        """Block in IDLE until ``scope`` is cancelled, forwarding push events to ``emit``."""
        ...

    def noop(self, emit: EventSink) -> None: ...

    def search_since(self, since: datetime) -> list[int]: ...

    def fetch_after(self, uid: int) -> list[MessageSummary]: ...

    def fetch_summaries(self, uids: list[int]) -> list[MessageSummary]: ...

    def fetch_part(self, uid: int, part: BodyPart) -> bytes:
        """Raw part entity: MIME header section followed by the encoded body."""
        ...

    def drop(self) -> None:
        """Forget a broken connection without talking to the server."""
        ...

    def disconnect(self) -> None: ...
