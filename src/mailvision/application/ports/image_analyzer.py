from __future__ import annotations
from typing import Protocol
from mailvision.domain.models import AnalysisResult

class ImageAnalyzer(Protocol):
    def analyze(self, data: bytes) -> AnalysisResult: ...
    def close(self) -> None: ...
