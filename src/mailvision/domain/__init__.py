"""Domain models and entities."""

from mailvision.domain.entities.image_analysis import ImageAnalysis
from mailvision.domain.entities.image_record import ImageRecord
from mailvision.domain.entities.mailbox_state import MailboxState
from mailvision.domain.events import FlagsChanged, FolderEvent, MessageExpunged, MessagesArrived
from mailvision.domain.models import (
    AnalysisResult,
    AnalysisStatus,
    Caption,
    Category,
    DetectedObject,
    Tag,
)

__all__ = [
    "MailboxState",
    "ImageRecord",
    "ImageAnalysis",
    "AnalysisResult",
    "AnalysisStatus",
    "Caption",
    "Category",
    "DetectedObject",
    "Tag",
    "FolderEvent",
    "MessagesArrived",
    "MessageExpunged",
    "FlagsChanged",
]
