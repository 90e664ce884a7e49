"""Cooperative cancellation shared by the run loop and each individual wait."""

from __future__ import annotations

import threading
import time
from typing import Callable

from mailvision.domain.errors import OperationCancelled


class CancellationToken:
    """A cancellable flag with an optional deadline and any number of parents.

    A child created with :meth:`linked` or :meth:`merge` is cancelled when
    any parent is, when its own deadline passes, or when :meth:`cancel` is
    called on it. Cancelling a child never affects its parents.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        # Reentrant: cancel() may run from a signal handler on the same thread
        self._lock = threading.RLock()
        self._children: list[CancellationToken] = []
        self._parents: list[CancellationToken] = []
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    @classmethod
    def merge(cls, *parents: "CancellationToken", timeout: float | None = None) -> "CancellationToken":
        """Create a token cancelled as soon as any of ``parents`` is."""
        clock = parents[0]._clock if parents else time.monotonic
        child = cls(timeout, clock=clock)
        for parent in parents:
            child._parents.append(parent)
            with parent._lock:
                parent._children.append(child)
                if parent._event.is_set():
                    child._event.set()
        return child

    @property
    def cancelled(self) -> bool:
        if self._event.is_set() or self.expired:
            return True
        return any(p.cancelled for p in self._parents)

    @property
    def expired(self) -> bool:
        """True once this token's own deadline has passed."""
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def remaining(self) -> float | None:
        """Seconds until the nearest deadline in the chain, or None without one."""
        limits = [p.remaining for p in self._parents]
        if self._deadline is not None:
            limits.append(max(0.0, self._deadline - self._clock()))
        limits = [r for r in limits if r is not None]
        return min(limits) if limits else None

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    def linked(self, timeout: float | None = None) -> "CancellationToken":
        """Create a child token scoped to one operation."""
        return CancellationToken.merge(self, timeout=timeout)

    def close(self) -> None:
        """Detach from every parent."""
        for parent in self._parents:
            with parent._lock:
                if self in parent._children:
                    parent._children.remove(self)
        self._parents = []

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses. Returns ``cancelled``."""
        limit = timeout
        remaining = self.remaining
        if remaining is not None:
            limit = remaining if limit is None else min(limit, remaining)
        self._event.wait(limit)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled()

    def __enter__(self) -> "CancellationToken":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
