"""Mailbox watcher worker - waits on the Sent folder and analyses sent images."""

from __future__ import annotations

import os
import signal
import sys
from dataclasses import asdict
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from mailvision.application.change_detector import ChangeDetector
from mailvision.application.hub import PublishHub
from mailvision.application.rate_limiter import RateLimiter
from mailvision.application.session_manager import Backoff, SessionManager
from mailvision.application.telemetry import LoggingTelemetry
from mailvision.application.use_cases.harvest_images import ImageExtractor, MessageHarvester
from mailvision.application.use_cases.watch_mailbox import MailboxWatcher
from mailvision.application.wait_loop import ActivityWaiter
from mailvision.domain.errors import AuthenticationError, FolderNotFoundError, PersistenceError
from mailvision.infrastructure.email.providers.imap.client import ImapConfig, ImapMailboxTransport
from mailvision.infrastructure.settings import Settings, get_settings
from mailvision.infrastructure.sqlite import SQLiteImageStore
from mailvision.infrastructure.vision import AzureVisionAnalyzer

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=level or os.getenv("LOG_LEVEL", "INFO"),
    )


def build_watcher(settings: Settings, telemetry: Optional[LoggingTelemetry] = None) -> MailboxWatcher:
    """Wire a watcher from settings."""
    telemetry = telemetry or LoggingTelemetry()

    transport = ImapMailboxTransport(
        ImapConfig(
            host=settings.imap_host,
            port=settings.imap_port,
            login=settings.email_login,
            password=settings.email_password.get_secret_value(),
            timeout=settings.imap_timeout_seconds,
            idle_check_interval=settings.idle_check_seconds,
        )
    )
    session = SessionManager(
        transport,
        folder=settings.sent_folder,
        backoff=Backoff(base_delay=settings.reconnect_base_delay, max_delay=settings.reconnect_max_delay),
        telemetry=telemetry,
    )

    store = SQLiteImageStore(settings.sqlite_db_path)
    analyzer = AzureVisionAnalyzer(
        endpoint=settings.vision_endpoint,
        api_key=settings.vision_api_key.get_secret_value(),
        features=settings.visual_features,
        timeout=settings.vision_timeout_seconds,
        retries=settings.vision_retries,
    )
    hub = PublishHub()

    extractor = ImageExtractor(
        session,
        store,
        analyzer,
        hub,
        telemetry=telemetry,
        failure_policy=settings.failure_policy,
    )
    harvester = MessageHarvester(
        session,
        store,
        extractor,
        email=settings.email_login,
        start_date=settings.start_date,
        telemetry=telemetry,
    )
    detector = ChangeDetector(store, settings.email_login, folder=settings.sent_folder or "Sent")
    waiter = ActivityWaiter(
        session,
        detector,
        idle_timeout=settings.idle_timeout_seconds,
        noop_interval=settings.noop_interval_seconds,
    )

    return MailboxWatcher(
        session=session,
        detector=detector,
        waiter=waiter,
        limiter=RateLimiter(settings.max_calls_per_minute),
        harvester=harvester,
        hub=hub,
        analyzer=analyzer,
        telemetry=telemetry,
    )


def load_settings() -> Optional[Settings]:
    try:
        return get_settings()
    except ValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]).upper() for err in e.errors())
        logger.error(f"Invalid or missing configuration: {missing}")
        return None


def main() -> int:
    """Entry point for the mailbox watcher."""
    configure_logging()

    logger.info("=" * 60)
    logger.info("MailVision Watcher")
    logger.info("=" * 60)

    settings = load_settings()
    if settings is None:
        return 1
    configure_logging(settings.log_level)

    try:
        watcher = build_watcher(settings)
    except (PersistenceError, ValueError) as e:
        logger.error(f"Failed to initialize watcher: {e}")
        return 1

    def _handle_shutdown(signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        watcher.request_stop()

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info(f"Watching {settings.sent_folder or 'Sent'} of {settings.email_login} on {settings.imap_host}")
    if settings.max_calls_per_minute:
        logger.info(f"Rate ceiling: {settings.max_calls_per_minute} calls/minute")

    try:
        watcher.run()
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        return 1
    except FolderNotFoundError as e:
        logger.error(f"Folder not found: {e}")
        return 1
    finally:
        watcher.dispose()

    logger.info("Worker shutdown complete")
    if isinstance(watcher.telemetry, LoggingTelemetry):
        logger.info(f"Worker stats: {asdict(watcher.telemetry.stats)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
