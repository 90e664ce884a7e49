from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

@dataclass(frozen=True)
class ImageRecord:
    email: str
    uid: int
    data: bytes
    message_date: Optional[datetime]
    name: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def size_bytes(self) -> int:
        return len(self.data)
