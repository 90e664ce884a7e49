from __future__ import annotations
from typing import Optional, Protocol

from mailvision.domain.entities.image_record import ImageRecord
from mailvision.domain.entities.mailbox_state import MailboxState
from mailvision.domain.models import AnalysisResult

class ImageStore(Protocol):
    def get_mailbox_state(self, email: str) -> Optional[MailboxState]: ...
    def save_mailbox_state(self, state: MailboxState) -> None: ...
    def insert_image(self, record: ImageRecord) -> None: ...
    def max_image_uid(self, email: str) -> Optional[int]: ...
    def has_image(self, email: str, uid: int) -> bool: ...
    def save_analysis(self, record: ImageRecord, result: Optional[AnalysisResult], error: Optional[str] = None) -> None: ...
    def get_analysis(self, image_id: str) -> Optional[dict]: ...
    def list_images(self, email: str, limit: int = 20) -> list[ImageRecord]: ...
