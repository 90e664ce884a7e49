"""Shared fixtures: a scriptable fake IMAP transport, a fake analyzer and a temp store."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import pytest

from mailvision.application.cancellation import CancellationToken
from mailvision.application.hub import PublishHub
from mailvision.application.ports.mailbox_transport import BodyPart, EventSink, FolderInfo, MessageSummary
from mailvision.application.session_manager import Backoff, SessionManager
from mailvision.application.telemetry import LoggingTelemetry
from mailvision.domain.errors import AnalysisServiceError, AuthenticationError, ConnectivityError, DecodeError
from mailvision.domain.models import AnalysisResult, Caption, Tag
from mailvision.infrastructure.sqlite import SQLiteImageStore

EMAIL = "alice@example.com"
START_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def image_entity(data: bytes, filename: str = "photo.png", attachment: bool = False) -> bytes:
    """A MIME part entity (headers, blank line, base64 body) as IMAP returns it."""
    disposition = "attachment" if attachment else "inline"
    encoded = base64.b64encode(data).decode("ascii")
    lines = [encoded[i:i + 76] for i in range(0, len(encoded), 76)]
    header = (
        f'Content-Type: image/png; name="{filename}"\r\n'
        f"Content-Transfer-Encoding: base64\r\n"
        f'Content-Disposition: {disposition}; filename="{filename}"\r\n'
        f"\r\n"
    )
    return (header + "\r\n".join(lines) + "\r\n").encode("ascii")


@dataclass
class FakeMessage:
    summary: MessageSummary
    parts: dict[str, bytes] = field(default_factory=dict)


class FakeTransport:
    """In-memory MailboxTransport with scripted failures and push events."""

    def __init__(self, supports_idle: bool = True):
        self.messages: dict[int, FakeMessage] = {}
        self._supports_idle = supports_idle
        self.connected = False
        self.authenticated = False
        self.count = 0
        self.folder = "Sent Items"

        self.reject_login = False
        # op name -> number of ConnectivityErrors still to raise
        self.failures: dict[str, int] = {}
        # each idle() call pops one batch; an Exception instance is raised instead
        self.idle_script: list = []
        self.noop_script: list = []

        self.calls: list[str] = []

    # helpers

    def add_message(
        self,
        uid: int,
        date: Optional[datetime] = None,
        images: Optional[dict[str, bytes]] = None,
        attachments: Optional[dict[str, bytes]] = None,
        subject: str = "",
    ) -> FakeMessage:
        body_parts = [BodyPart(specifier="1", content_type="text/plain")]
        parts: dict[str, bytes] = {}
        for i, (name, data) in enumerate((images or {}).items(), start=2):
            spec = str(i)
            body_parts.append(BodyPart(spec, "image/png", filename=name, disposition="inline", encoding="base64"))
            parts[spec] = image_entity(data, name)
        offset = len(body_parts) + 1
        for i, (name, data) in enumerate((attachments or {}).items(), start=offset):
            spec = str(i)
            body_parts.append(BodyPart(spec, "image/png", filename=name, disposition="attachment", encoding="base64"))
            parts[spec] = image_entity(data, name, attachment=True)

        summary = MessageSummary(
            uid=uid,
            internal_date=date or datetime(2024, 2, 1, tzinfo=timezone.utc),
            subject=subject or f"message {uid}",
            body_parts=body_parts,
        )
        message = FakeMessage(summary, parts)
        self.messages[uid] = message
        self.count = len(self.messages)
        return message

    def fail(self, op: str, times: int = 1) -> None:
        self.failures[op] = self.failures.get(op, 0) + times

    def _record(self, op: str) -> None:
        self.calls.append(op)
        if self.failures.get(op):
            self.failures[op] -= 1
            self.connected = False
            self.authenticated = False
            raise ConnectivityError(f"{op} dropped")

    def calls_to(self, op: str) -> int:
        return self.calls.count(op)

    # MailboxTransport

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def is_authenticated(self) -> bool:
        return self.connected and self.authenticated

    @property
    def supports_idle(self) -> bool:
        return self._supports_idle

    @property
    def message_count(self) -> int:
        return self.count

    def connect(self) -> None:
        self._record("connect")
        self.connected = True

    def login(self) -> None:
        self._record("login")
        if self.reject_login:
            raise AuthenticationError("bad credentials")
        self.authenticated = True

    def open_folder(self, name: Optional[str]) -> FolderInfo:
        self._record("open_folder")
        return FolderInfo(name=name or self.folder, count=self.count)

    def _play(self, script: list, emit: EventSink) -> None:
        if not script:
            return
        batch = script.pop(0)
        if isinstance(batch, Exception):
            self.connected = False
            self.authenticated = False
            raise batch
        for event in batch:
            emit(event)

    def idle(self, scope: CancellationToken, emit: EventSink) -> None:
        self._record("idle")
        self._play(self.idle_script, emit)
        while not scope.cancelled:
            scope.wait(0.01)

    def noop(self, emit: EventSink) -> None:
        self._record("noop")
        self._play(self.noop_script, emit)

    def search_since(self, since: datetime) -> list[int]:
        self._record("search_since")
        return sorted(
            uid for uid, m in self.messages.items()
            if m.summary.date is not None and m.summary.date.date() >= since.date()
        )

    def fetch_after(self, uid: int) -> list[MessageSummary]:
        self._record("fetch_after")
        return [self.messages[u].summary for u in sorted(self.messages) if u > uid]

    def fetch_summaries(self, uids: list[int]) -> list[MessageSummary]:
        self._record("fetch_summaries")
        return [self.messages[u].summary for u in sorted(uids) if u in self.messages]

    def fetch_part(self, uid: int, part: BodyPart) -> bytes:
        self._record("fetch_part")
        try:
            return self.messages[uid].parts[part.specifier]
        except KeyError:
            raise DecodeError(f"no part {part.specifier} in {uid}") from None

    def drop(self) -> None:
        self.calls.append("drop")
        self.connected = False
        self.authenticated = False

    def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.connected = False
        self.authenticated = False


class FakeAnalyzer:
    """ImageAnalyzer returning a canned caption, or raising ``error`` when set."""

    def __init__(self, error: Optional[AnalysisServiceError] = None):
        self.error = error
        self.calls: list[bytes] = []
        self.closed = 0

    def analyze(self, data: bytes) -> AnalysisResult:
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return AnalysisResult(
            captions=[Caption(text="a cat on a sofa", confidence=0.91)],
            tags=[Tag(name="cat", confidence=0.99)],
        )

    def close(self) -> None:
        self.closed += 1


class RecordingSubscriber:
    def __init__(self, session_id: Optional[str] = "session-1", fail: bool = False):
        self.session_id = session_id
        self.fail = fail
        self.received = []

    def on_next(self, analysis) -> None:
        if self.fail:
            raise RuntimeError("subscriber exploded")
        self.received.append(analysis)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return SQLiteImageStore(tmp_path / "mailvision.db")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def telemetry():
    return LoggingTelemetry()


@pytest.fixture
def hub():
    return PublishHub()


@pytest.fixture
def session(transport, telemetry):
    return SessionManager(transport, backoff=Backoff(base_delay=0.0, jitter=False), telemetry=telemetry)


@pytest.fixture
def stop():
    return CancellationToken()
