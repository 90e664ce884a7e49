from __future__ import annotations
from typing import Optional, Protocol
from mailvision.domain.entities.image_analysis import ImageAnalysis

class Subscriber(Protocol):
    """Observer of completed analyses, keyed by the client session it belongs to."""

    session_id: Optional[str]

    def on_next(self, analysis: ImageAnalysis) -> None: ...
