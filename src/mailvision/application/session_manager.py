"""IMAP session lifecycle: connect, authenticate, open the Sent folder, recover drops."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.ports.mailbox_transport import FolderInfo, MailboxTransport
from mailvision.application.telemetry import Telemetry
from mailvision.domain.errors import ConnectivityError, OperationCancelled

T = TypeVar("T")


@dataclass
class Backoff:
    """Exponential backoff with jitter. Attempts are unbounded."""

    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= 1 + random.random() * 0.5
        return delay


class SessionManager:
    """Owns the transport connection for one mailbox folder.

    Every folder operation goes through :meth:`call`, which turns a
    ConnectivityError into a reconnect followed by a retry of the same
    operation. AuthenticationError is never retried.
    """

    def __init__(
        self,
        transport: MailboxTransport,
        folder: Optional[str] = None,
        backoff: Optional[Backoff] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        self.transport = transport
        self.folder = folder
        self.backoff = backoff or Backoff()
        self.telemetry = telemetry
        self._folder_info: Optional[FolderInfo] = None

    @property
    def is_authenticated(self) -> bool:
        return self.transport.is_authenticated

    @property
    def message_count(self) -> int:
        return self.transport.message_count

    @property
    def folder_name(self) -> str:
        if self._folder_info is not None:
            return self._folder_info.name
        return self.folder or "Sent"

    def ensure_connected(self) -> None:
        """Connect, log in and open the folder read-only, doing only what is missing."""
        if not self.transport.is_connected:
            self.transport.connect()

        if not self.transport.is_authenticated:
            self.transport.login()
            self._folder_info = self.transport.open_folder(self.folder)
            logger.info(f"Opened {self._folder_info.name} ({self._folder_info.count} messages)")

    def recover(self, stop: CancellationToken) -> None:
        """Reconnect until it works or ``stop`` is cancelled."""
        attempt = 0
        while True:
            stop.raise_if_cancelled()
            try:
                self.ensure_connected()
                return
            except ConnectivityError as e:
                self.transport.drop()
                delay = self.backoff.delay(attempt)
                attempt += 1
                logger.warning(f"Connection attempt {attempt} failed, retrying in {delay:.1f}s: {e}")
                if stop.wait(delay):
                    raise OperationCancelled() from e

    def call(self, operation: Callable[[], T], stop: CancellationToken) -> T:
        """Run a folder operation, reconnecting and retrying it on transport faults."""
        while True:
            stop.raise_if_cancelled()
            try:
                return operation()
            except ConnectivityError as e:
                logger.warning(f"Transport fault, reconnecting: {e}")
                self.reconnect(stop)

    def reconnect(self, stop: CancellationToken) -> None:
        """Drop the broken connection and recover a fresh one."""
        self.transport.drop()
        self.recover(stop)
        if self.telemetry is not None:
            self.telemetry.reconnected()

    def disconnect(self) -> None:
        if self.transport.is_connected:
            logger.info("Disconnecting IMAP session")
        self.transport.disconnect()
        self._folder_info = None
