from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from mailvision.domain.entities.image_record import ImageRecord
from mailvision.domain.models import AnalysisResult, AnalysisStatus

@dataclass(frozen=True)
class ImageAnalysis:
    """An extracted image paired with what the vision service said about it."""
    record: ImageRecord
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def status(self) -> AnalysisStatus:
        return AnalysisStatus.SUCCEEDED if self.result is not None else AnalysisStatus.FAILED
