"""Telemetry sink injected into the watcher and harvester."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

from loguru import logger

from mailvision.application.ports.mailbox_transport import BodyPart, MessageSummary
from mailvision.domain.entities.image_analysis import ImageAnalysis


@dataclass
class WatcherStats:
    """Track watcher statistics."""
    messages_seen: int = 0
    images_stored: int = 0
    analysis_failures: int = 0
    decode_failures: int = 0
    discarded_cycles: int = 0
    harvest_cycles: int = 0
    reconnects: int = 0
    last_harvest: datetime | None = None


class Telemetry(Protocol):
    def message_seen(self, folder: str, summary: MessageSummary) -> None: ...
    def image_processed(self, analysis: ImageAnalysis) -> None: ...
    def decode_failed(self, summary: MessageSummary, part: BodyPart, error: Exception) -> None: ...
    def cycle_discarded(self) -> None: ...
    def harvest_completed(self, fetched: int, images: int) -> None: ...
    def reconnected(self) -> None: ...


class LoggingTelemetry:
    """Telemetry that logs through loguru and keeps running counters."""

    def __init__(self) -> None:
        self.stats = WatcherStats()

    def message_seen(self, folder: str, summary: MessageSummary) -> None:
        self.stats.messages_seen += 1
        logger.info(f"{folder}: new message UID {summary.uid}: {summary.subject[:80]}")
        logger.debug(f"  Parts: {len(summary.body_parts)}, attachments: {len(summary.attachments)}")

    def image_processed(self, analysis: ImageAnalysis) -> None:
        record = analysis.record
        self.stats.images_stored += 1
        if analysis.result is None:
            self.stats.analysis_failures += 1
            logger.warning(f"Stored image {record.name} (UID {record.uid}) without analysis: {analysis.error}")
        else:
            logger.info(
                f"Analysed image {record.name} (UID {record.uid}, {record.size_bytes} bytes): "
                f"{analysis.result.caption or 'no caption'}"
            )

    def decode_failed(self, summary: MessageSummary, part: BodyPart, error: Exception) -> None:
        self.stats.decode_failures += 1
        logger.warning(f"Skipping part {part.specifier} ({part.filename}) of UID {summary.uid}: {error}")

    def cycle_discarded(self) -> None:
        self.stats.discarded_cycles += 1

    def harvest_completed(self, fetched: int, images: int) -> None:
        self.stats.harvest_cycles += 1
        self.stats.last_harvest = datetime.now()
        logger.info(f"Harvest complete: fetched={fetched}, images={images}")
        logger.debug(f"Watcher stats: {asdict(self.stats)}")

    def reconnected(self) -> None:
        self.stats.reconnects += 1
