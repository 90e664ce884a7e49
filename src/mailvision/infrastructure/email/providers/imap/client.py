from __future__ import annotations
import ssl
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Type

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError
from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.ports.mailbox_transport import (
    BodyPart,
    EventSink,
    FolderInfo,
    MailboxTransport,
    MessageSummary,
)
from mailvision.domain.errors import ConnectivityError, DecodeError, FolderNotFoundError, MailVisionError
from mailvision.domain.events import MessageExpunged, MessagesArrived
from mailvision.infrastructure.email.providers.imap.auth import ImapAuthenticator, ImapCredentials
from mailvision.infrastructure.email.providers.imap.mapper import fetch_to_summary, untagged_to_events

SENT_FLAG = rb"\Sent"
SENT_FOLDER_CANDIDATES = ("Sent Items", "Sent", "Sent Messages", "INBOX.Sent")
SUMMARY_FIELDS = [b"INTERNALDATE", b"ENVELOPE", b"BODYSTRUCTURE"]


def _join_entity(header: bytes, body: bytes) -> bytes:
    """Header section and body separated by exactly one blank line."""
    header = header.rstrip(b"\r\n")
    if not header:
        return b"\r\n" + body
    return header + b"\r\n\r\n" + body


@dataclass
class ImapConfig:
    host: str
    login: str
    password: str
    port: int = 993
    timeout: Optional[float] = 60.0
    # Longest single blocking read while in IDLE
    idle_check_interval: float = 1.0


class ImapMailboxTransport(MailboxTransport):
    """IMAPS session on one folder, opened read-only, backed by IMAPClient."""

    def __init__(self, cfg: ImapConfig) -> None:
        self.cfg = cfg
        self._auth = ImapAuthenticator(ImapCredentials(cfg.login, cfg.password))
        self._client: Optional[IMAPClient] = None
        self._authenticated = False
        self._idle_supported = False
        self._count = 0

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def is_authenticated(self) -> bool:
        return self._client is not None and self._authenticated

    @property
    def supports_idle(self) -> bool:
        return self._idle_supported

    @property
    def message_count(self) -> int:
        return self._count

    @contextmanager
    def _guard(self, action: str, command_error: Type[MailVisionError] = ConnectivityError) -> Iterator[None]:
        """Map IMAPClient and socket failures onto the domain error types.

        An aborted session or an I/O fault drops the connection. A plain
        command failure (NO/BAD) raises ``command_error``.
        """
        try:
            yield
        except IMAPClientError as e:
            if isinstance(e, IMAPClientAbortError) or command_error is ConnectivityError:
                self.drop()
                raise ConnectivityError(f"IMAP {action} failed: {e}") from e
            raise command_error(f"IMAP {action} failed: {e}") from e
        except OSError as e:
            self.drop()
            raise ConnectivityError(f"IMAP {action} failed: {e}") from e

    def _require(self) -> IMAPClient:
        if self._client is None:
            raise ConnectivityError("IMAP session is not connected")
        return self._client

    def connect(self) -> None:
        logger.debug(f"Connecting to {self.cfg.host}:{self.cfg.port}")
        with self._guard("connect"):
            client = IMAPClient(
                self.cfg.host,
                port=self.cfg.port,
                ssl=True,
                ssl_context=ssl.create_default_context(),
                timeout=self.cfg.timeout,
            )
        # Keep server timezone offsets on INTERNALDATE
        client.normalise_times = False
        self._client = client
        self._authenticated = False

    def login(self) -> None:
        client = self._require()
        with self._guard("login"):
            self._auth.login(client)
            self._idle_supported = client.has_capability("IDLE")
        self._authenticated = True
        logger.info(f"Logged in as {self.cfg.login} (IDLE {'supported' if self._idle_supported else 'not supported'})")

    def _find_sent_folder(self, client: IMAPClient) -> str:
        special = client.find_special_folder(SENT_FLAG)
        if special:
            return special
        for name in SENT_FOLDER_CANDIDATES:
            if client.folder_exists(name):
                return name
        raise FolderNotFoundError("no Sent folder found on server")

    def open_folder(self, name: Optional[str]) -> FolderInfo:
        client = self._require()
        with self._guard("select"):
            if name and not client.folder_exists(name):
                raise FolderNotFoundError(f"folder {name!r} does not exist")
            folder = name or self._find_sent_folder(client)
            info = client.select_folder(folder, readonly=True)

        self._count = int(info.get(b"EXISTS", 0))
        return FolderInfo(name=folder, count=self._count, uidvalidity=int(info.get(b"UIDVALIDITY", 0)))

    def _dispatch(self, responses, emit: EventSink) -> None:
        for event in untagged_to_events(responses):
            if isinstance(event, MessagesArrived):
                self._count = event.count
            elif isinstance(event, MessageExpunged):
                self._count = max(0, self._count - 1)
            emit(event)

    def idle(self, scope: CancellationToken, emit: EventSink) -> None:
        client = self._require()
        with self._guard("idle"):
            client.idle()
            while not scope.cancelled:
                check = self.cfg.idle_check_interval
                remaining = scope.remaining
                if remaining is not None:
                    check = min(check, remaining)
                self._dispatch(client.idle_check(timeout=check), emit)
            _, responses = client.idle_done()
            self._dispatch(responses, emit)

    def noop(self, emit: EventSink) -> None:
        client = self._require()
        with self._guard("noop"):
            _, responses = client.noop()
        self._dispatch(responses, emit)

    def search_since(self, since: datetime) -> list[int]:
        client = self._require()
        with self._guard("search"):
            uids = client.search(["SINCE", since.date()])
        return sorted(int(u) for u in uids)

    def fetch_after(self, uid: int) -> list[MessageSummary]:
        client = self._require()
        with self._guard("search"):
            found = client.search(["UID", f"{uid + 1}:*"])
        # "n:*" always matches the newest message, even below n
        return self.fetch_summaries(sorted(int(u) for u in found if int(u) > uid))

    def fetch_summaries(self, uids: list[int]) -> list[MessageSummary]:
        if not uids:
            return []
        client = self._require()
        with self._guard("fetch"):
            data = client.fetch(uids, SUMMARY_FIELDS)
        return [fetch_to_summary(uid, data[uid]) for uid in sorted(data)]

    def fetch_part(self, uid: int, part: BodyPart) -> bytes:
        client = self._require()
        header_key = f"BODY[{part.header_section}]"
        body_key = f"BODY[{part.specifier}]"
        with self._guard("fetch", command_error=DecodeError):
            data = client.fetch([uid], [f"BODY.PEEK[{part.header_section}]", f"BODY.PEEK[{part.specifier}]"])

        item = data.get(uid)
        if not item:
            raise DecodeError(f"message {uid} returned no data for part {part.specifier}")
        header = item.get(header_key.encode())
        body = item.get(body_key.encode())
        if body is None:
            raise DecodeError(f"message {uid} returned no body for part {part.specifier}")

        return _join_entity(header or b"", body)

    def drop(self) -> None:
        client, self._client = self._client, None
        self._authenticated = False
        if client is None:
            return
        try:
            client.shutdown()
        except (IMAPClientError, OSError) as e:
            logger.debug(f"Ignoring error while closing broken IMAP socket: {e}")

    def disconnect(self) -> None:
        client, self._client = self._client, None
        self._authenticated = False
        if client is None:
            return
        try:
            client.logout()
        except (IMAPClientError, OSError) as e:
            logger.debug(f"Logout failed, closing anyway: {e}")
