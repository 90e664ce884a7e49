"""Block until the server reports folder activity, a wait times out, or a stop is requested."""

from __future__ import annotations

from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.change_detector import ChangeDetector
from mailvision.application.session_manager import SessionManager
from mailvision.domain.errors import ConnectivityError, OperationCancelled

# Servers may drop idle sessions well before the 30 minutes RFC 2177 allows
DEFAULT_IDLE_TIMEOUT = 9 * 60
DEFAULT_NOOP_INTERVAL = 60


class ActivityWaiter:
    """IDLE-based wait with a NOOP polling fallback."""

    def __init__(
        self,
        session: SessionManager,
        detector: ChangeDetector,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        noop_interval: float = DEFAULT_NOOP_INTERVAL,
    ):
        self.session = session
        self.detector = detector
        self.idle_timeout = idle_timeout
        self.noop_interval = noop_interval

    def wait_for_activity(self, stop: CancellationToken) -> None:
        """Return after activity or timeout; raise OperationCancelled on stop.

        Transport faults reconnect and re-enter the wait.
        """
        transport = self.session.transport
        while True:
            stop.raise_if_cancelled()
            try:
                if transport.supports_idle:
                    self._idle(stop)
                else:
                    self._poll(stop)
                break
            except ConnectivityError as e:
                logger.warning(f"Connection lost while waiting: {e}")
                self.session.reconnect(stop)

        stop.raise_if_cancelled()

    def _idle(self, stop: CancellationToken) -> None:
        with stop.linked(timeout=self.idle_timeout) as scope:
            self.detector.attach(scope)
            try:
                self.session.transport.idle(scope, self.detector.post)
            finally:
                self.detector.detach()

            if scope.expired and not stop.cancelled:
                logger.debug(f"IDLE timed out after {self.idle_timeout}s, renewing")

    def _poll(self, stop: CancellationToken) -> None:
        if stop.wait(self.noop_interval):
            raise OperationCancelled()

        self.detector.attach()
        try:
            self.session.transport.noop(self.detector.post)
        finally:
            self.detector.detach()
