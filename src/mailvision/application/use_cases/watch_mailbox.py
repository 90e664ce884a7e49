"""Long-running watcher over one mailbox's Sent folder."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.change_detector import ChangeDetector
from mailvision.application.hub import PublishHub, Subscription
from mailvision.application.ports.image_analyzer import ImageAnalyzer
from mailvision.application.ports.subscriber import Subscriber
from mailvision.application.rate_limiter import RateLimiter
from mailvision.application.session_manager import SessionManager
from mailvision.application.telemetry import LoggingTelemetry, Telemetry
from mailvision.application.use_cases.harvest_images import HarvestResult, MessageHarvester
from mailvision.application.wait_loop import ActivityWaiter
from mailvision.domain.errors import AnalysisServiceError, OperationCancelled, PersistenceError


class MailboxWatcher:
    """Connect, catch up, then wait → drain → gate → harvest until stopped.

    Flow:
    1. Recover the session (authentication failures propagate)
    2. Catch-up harvest from the resume cursor
    3. Wait for activity; drain the detector's events
    4. If arrivals are pending and the rate limiter admits, harvest
    5. On cancellation disconnect gracefully

    ``request_stop`` may be called from a signal handler or another thread.
    """

    def __init__(
        self,
        session: SessionManager,
        detector: ChangeDetector,
        waiter: ActivityWaiter,
        limiter: RateLimiter,
        harvester: MessageHarvester,
        hub: PublishHub,
        analyzer: ImageAnalyzer,
        telemetry: Optional[Telemetry] = None,
    ):
        self.session = session
        self.detector = detector
        self.waiter = waiter
        self.limiter = limiter
        self.harvester = harvester
        self.hub = hub
        self.analyzer = analyzer
        self.telemetry = telemetry or LoggingTelemetry()
        self._stop = CancellationToken()
        self._disposed = False

    @property
    def message_count(self) -> int:
        return self.session.message_count

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def stop_requested(self) -> bool:
        return self._stop.cancelled

    def subscribe(self, subscriber: Subscriber) -> Subscription:
        return self.hub.subscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        return self.hub.unsubscribe(subscriber)

    def run(self, stop: Optional[CancellationToken] = None) -> None:
        """Block until ``stop`` or :meth:`request_stop` cancels the watcher."""
        parents = [self._stop] if stop is None else [self._stop, stop]
        with CancellationToken.merge(*parents) as token:
            try:
                self._run(token)
            except OperationCancelled:
                logger.info("Watcher cancelled")
            finally:
                self.session.disconnect()

    def harvest_once(self, stop: Optional[CancellationToken] = None) -> HarvestResult:
        """Connect and run a single catch-up harvest."""
        parents = [self._stop] if stop is None else [self._stop, stop]
        with CancellationToken.merge(*parents) as token:
            try:
                self.session.recover(token)
                return self.harvester.harvest(token)
            finally:
                self.session.disconnect()

    def _run(self, token: CancellationToken) -> None:
        self.session.recover(token)
        self._harvest(token)

        while True:
            self.waiter.wait_for_activity(token)
            self.detector.drain()

            if not self.detector.pending:
                continue

            if not self.limiter.admit():
                self.telemetry.cycle_discarded()
                continue

            if self._harvest(token):
                self.detector.reset()

    def _harvest(self, token: CancellationToken) -> bool:
        try:
            self.harvester.harvest(token)
            return True
        except (PersistenceError, AnalysisServiceError) as e:
            logger.error(f"Harvest cycle aborted: {e}")
            return False

    def request_stop(self) -> None:
        logger.info("Stop requested")
        if self._stop.cancelled:
            logger.info("A stop has already been requested, nothing to do")
            return
        self._stop.cancel()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        logger.info("Disposing the watcher")
        self.session.disconnect()
        self.analyzer.close()
