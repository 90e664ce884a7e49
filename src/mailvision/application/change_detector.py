"""Classify server push events and keep the pending-activity flag."""

from __future__ import annotations

import queue
from typing import Optional

from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.ports.image_store import ImageStore
from mailvision.domain.events import FlagsChanged, FolderEvent, MessageExpunged, MessagesArrived


class ChangeDetector:
    """Single-consumer channel of folder events.

    The transport posts events while the watcher waits; the run loop
    drains them once the wait returns and is the only place where
    MailboxState is mutated. An arrival also interrupts the current wait
    so harvesting starts without sitting out the idle timeout.

    Arrival versus expunge is inferred from the count delta against the
    stored processed count, which cannot tell the two apart when both
    land in the same notification batch.
    """

    def __init__(self, store: ImageStore, email: str, folder: str = "Sent"):
        self.store = store
        self.email = email
        self.folder = folder
        self.pending = False
        self._channel: queue.SimpleQueue[FolderEvent] = queue.SimpleQueue()
        self._attached = False
        self._scope: Optional[CancellationToken] = None

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self, scope: Optional[CancellationToken] = None) -> None:
        self._attached = True
        self._scope = scope

    def detach(self) -> None:
        self._attached = False
        self._scope = None

    def stored_count(self) -> int:
        state = self.store.get_mailbox_state(self.email)
        return state.messages_count if state else 0

    def arrived(self, new_count: int) -> int:
        return max(0, new_count - self.stored_count())

    def post(self, event: FolderEvent) -> None:
        if not self._attached:
            logger.debug(f"Ignoring {event} received while detached")
            return

        self._channel.put(event)

        if isinstance(event, MessagesArrived) and self._scope is not None:
            if self.arrived(event.count) > 0:
                self._scope.cancel()

    def drain(self) -> int:
        """Apply every queued event in arrival order. Returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self._channel.get_nowait()
            except queue.Empty:
                return handled
            handled += 1
            self._apply(event)

    def reset(self) -> None:
        self.pending = False

    def _apply(self, event: FolderEvent) -> None:
        if isinstance(event, MessagesArrived):
            self._on_count_changed(event)
        elif isinstance(event, MessageExpunged):
            self._on_expunged(event)
        elif isinstance(event, FlagsChanged):
            logger.debug(f"{self.folder}: flags have changed for message #{event.index} ({' '.join(event.flags)})")

    def _on_count_changed(self, event: MessagesArrived) -> None:
        arrived = self.arrived(event.count)
        if arrived <= 0:
            return

        if arrived > 1:
            logger.info(f"{self.folder}: {arrived} new messages have arrived")
        else:
            logger.info(f"{self.folder}: 1 new message has arrived")
        self.pending = True

    def _on_expunged(self, event: MessageExpunged) -> None:
        state = self.store.get_mailbox_state(self.email)
        # IMAP sequence numbers start at 1, so the last counted message is #messages_count
        if state is not None and 1 <= event.index <= state.messages_count:
            state.messages_count -= 1
            self.store.save_mailbox_state(state)
            logger.info(f"{self.folder}: message #{event.index} expunged, count now {state.messages_count}")
        else:
            logger.info(f"{self.folder}: message #{event.index} has been expunged")
