"""Harvest new Sent messages and turn their image parts into analysed records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Literal, Optional

from loguru import logger

from mailvision.application.cancellation import CancellationToken
from mailvision.application.hub import PublishHub
from mailvision.application.ports.image_analyzer import ImageAnalyzer
from mailvision.application.ports.image_store import ImageStore
from mailvision.application.ports.mailbox_transport import BodyPart, MessageSummary
from mailvision.application.session_manager import SessionManager
from mailvision.application.telemetry import LoggingTelemetry, Telemetry
from mailvision.domain.entities.image_analysis import ImageAnalysis
from mailvision.domain.entities.image_record import ImageRecord
from mailvision.domain.entities.mailbox_state import MailboxState
from mailvision.domain.errors import AnalysisServiceError, DecodeError, PersistenceError
from mailvision.infrastructure.email.rfc822 import decode_attachment, decode_inline_base64

FailurePolicy = Literal["skip", "abort"]
MessagePredicate = Callable[[MessageSummary], bool]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ResumeCursor:
    """Where the next harvest starts: a UID high-water mark or, before any, a date."""

    last_uid: Optional[int] = None
    start_date: Optional[datetime] = None

    @property
    def by_uid(self) -> bool:
        return self.last_uid is not None

    @classmethod
    def resolve(cls, store: ImageStore, state: MailboxState, start_date: datetime) -> "ResumeCursor":
        """Derived from persisted data on every call, never cached."""
        last_uid = max(store.max_image_uid(state.email) or 0, state.last_seen_uid)
        if last_uid > 0:
            return cls(last_uid=last_uid)
        return cls(start_date=start_date)

    def __str__(self) -> str:
        if self.by_uid:
            return f"UID > {self.last_uid}"
        return f"since {self.start_date:%Y-%m-%d}"


def should_process_message(
    summary: MessageSummary,
    *,
    store: ImageStore,
    email: str,
    start_date: datetime,
) -> bool:
    """No image stored for this UID yet and the message date is on or after ``start_date``."""
    if store.has_image(email, summary.uid):
        logger.debug(f"UID {summary.uid} already has images, skipping")
        return False

    date = summary.date
    if date is None:
        return False
    return _as_utc(date) >= _as_utc(start_date)


@dataclass
class HarvestResult:
    cursor: ResumeCursor
    fetched: int = 0
    accepted: int = 0
    images: int = 0
    failures: int = 0


class ImageExtractor:
    """Decode image parts of one message and drive store, analysis and publish."""

    def __init__(
        self,
        session: SessionManager,
        store: ImageStore,
        analyzer: ImageAnalyzer,
        hub: PublishHub,
        telemetry: Optional[Telemetry] = None,
        failure_policy: FailurePolicy = "skip",
    ):
        self.session = session
        self.store = store
        self.analyzer = analyzer
        self.hub = hub
        self.telemetry = telemetry or LoggingTelemetry()
        self.failure_policy = failure_policy

    @staticmethod
    def candidate_parts(summary: MessageSummary) -> list[BodyPart]:
        """Image files among the attachments, or among all body parts when there are none."""
        attachments = summary.attachments
        parts = attachments if attachments else summary.body_parts
        return [p for p in parts if p.is_image_file]

    @staticmethod
    def decode(part: BodyPart, raw: bytes) -> bytes:
        if part.is_attachment:
            return decode_attachment(raw)
        return decode_inline_base64(raw)

    def extract(self, summary: MessageSummary, state: MailboxState, stop: CancellationToken) -> tuple[int, int]:
        """Returns ``(images stored, parts that failed)``."""
        parts = self.candidate_parts(summary)
        if not parts:
            logger.debug(f"UID {summary.uid}: no image parts")
            return 0, 0

        stored = failed = 0
        for part in parts:
            try:
                raw = self.session.call(partial(self.session.transport.fetch_part, summary.uid, part), stop)
                data = self.decode(part, raw)
            except DecodeError as e:
                self.telemetry.decode_failed(summary, part, e)
                failed += 1
                continue

            record = ImageRecord(
                email=state.email,
                uid=summary.uid,
                data=data,
                message_date=summary.date,
                name=part.filename,
            )
            try:
                self.sink(record, state)
                stored += 1
            except (PersistenceError, AnalysisServiceError) as e:
                if self.failure_policy == "abort":
                    raise
                logger.error(f"Skipping image {record.name} of UID {summary.uid}: {e}")
                failed += 1
        return stored, failed

    def sink(self, record: ImageRecord, state: MailboxState) -> ImageAnalysis:
        """Store the image, analyse it, record the outcome and publish it."""
        self.store.insert_image(record)
        state.size += record.size_bytes
        self.store.save_mailbox_state(state)

        try:
            result = self.analyzer.analyze(record.data)
            error = None
        except AnalysisServiceError as e:
            kind = "retriable" if e.retriable else "terminal"
            logger.warning(f"Analysis of {record.name} failed ({kind}): {e}")
            self.store.save_analysis(record, None, str(e))
            if self.failure_policy == "abort":
                raise
            result, error = None, str(e)
        else:
            self.store.save_analysis(record, result)

        analysis = ImageAnalysis(record=record, result=result, error=error)
        self.telemetry.image_processed(analysis)
        self.hub.publish(analysis)
        return analysis


class MessageHarvester:
    """Fetch summaries past the resume cursor and feed qualifying ones to the extractor.

    A summary is counted once per UID before extraction, and its UID becomes
    the resume point only after extraction returns. A crash or an aborted
    cycle leaves the message to be fetched again on the next harvest, while
    a repeated harvest with nothing new neither re-counts nor re-extracts.
    """

    def __init__(
        self,
        session: SessionManager,
        store: ImageStore,
        extractor: ImageExtractor,
        email: str,
        start_date: datetime,
        predicate: Optional[MessagePredicate] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        self.session = session
        self.store = store
        self.extractor = extractor
        self.email = email
        self.start_date = _as_utc(start_date)
        self.predicate = predicate or partial(
            should_process_message, store=store, email=email, start_date=self.start_date
        )
        self.telemetry = telemetry or LoggingTelemetry()

    def resolve_state(self) -> MailboxState:
        state = self.store.get_mailbox_state(self.email)
        if state is None:
            state = MailboxState(email=self.email)
            self.store.save_mailbox_state(state)
            logger.info(f"Created mailbox state for {self.email}")
        return state

    def _fetch(self, cursor: ResumeCursor, stop: CancellationToken) -> list[MessageSummary]:
        transport = self.session.transport

        if cursor.by_uid:
            return self.session.call(lambda: transport.fetch_after(cursor.last_uid), stop)
        return self.session.call(lambda: transport.fetch_summaries(transport.search_since(cursor.start_date)), stop)

    def harvest(self, stop: CancellationToken) -> HarvestResult:
        """Process everything past the cursor.

        Passes repeat from the advanced cursor until one finds nothing new,
        which picks up messages that arrived while the previous pass ran.
        """
        state = self.resolve_state()
        cursor = ResumeCursor.resolve(self.store, state, self.start_date)
        result = HarvestResult(cursor=cursor)

        while True:
            logger.debug(f"Harvesting {self.session.folder_name} {cursor}")
            summaries = [
                s for s in sorted(self._fetch(cursor, stop), key=lambda s: s.uid)
                if s.uid > state.last_seen_uid
            ]
            if not summaries:
                break

            result.fetched += len(summaries)
            self._process(summaries, state, result, stop)
            cursor = ResumeCursor.resolve(self.store, state, self.start_date)

        self.telemetry.harvest_completed(result.fetched, result.images)
        return result

    def _process(
        self,
        summaries: list[MessageSummary],
        state: MailboxState,
        result: HarvestResult,
        stop: CancellationToken,
    ) -> None:
        for summary in summaries:
            stop.raise_if_cancelled()

            # A message retried after an aborted extraction is not counted twice
            if summary.uid > state.last_counted_uid:
                state.messages_count += 1
                state.last_counted_uid = summary.uid
                self.store.save_mailbox_state(state)
                self.telemetry.message_seen(self.session.folder_name, summary)

            if self.predicate(summary):
                result.accepted += 1
                images, failures = self.extractor.extract(summary, state, stop)
                result.images += images
                result.failures += failures

            state.last_seen_uid = summary.uid
            self.store.save_mailbox_state(state)
