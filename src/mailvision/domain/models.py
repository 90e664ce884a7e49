"""Domain models for image analysis results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AnalysisStatus(str, Enum):
    """Outcome of a single analysis call."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Caption(BaseModel):
    """A natural-language description of the image."""

    text: str
    confidence: float = 0.0


class Tag(BaseModel):
    """A content tag recognised in the image."""

    name: str
    confidence: float = 0.0


class Category(BaseModel):
    """A taxonomy category with its score."""

    name: str
    score: float = 0.0


class DetectedObject(BaseModel):
    """An object located in the image."""

    name: str
    confidence: float = 0.0
    x: int = 0
    y: int = 0
    w: int = 0
    h: int = 0


class AnalysisResult(BaseModel):
    """Result returned by the vision service for one image."""

    captions: list[Caption] = Field(default_factory=list)
    tags: list[Tag] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    objects: list[DetectedObject] = Field(default_factory=list)
    width: int | None = None
    height: int | None = None
    image_format: str | None = None
    model_version: str | None = None
    request_id: str | None = None
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def caption(self) -> str | None:
        """Best caption, if any."""
        if not self.captions:
            return None
        return max(self.captions, key=lambda c: c.confidence).text

    @classmethod
    def from_azure(cls, payload: dict[str, Any]) -> "AnalysisResult":
        """Build a result from an Azure Computer Vision ``analyze`` response."""
        description = payload.get("description") or {}
        metadata = payload.get("metadata") or {}

        objects = []
        for obj in payload.get("objects") or []:
            rect = obj.get("rectangle") or {}
            objects.append(
                DetectedObject(
                    name=obj.get("object", ""),
                    confidence=obj.get("confidence", 0.0),
                    x=rect.get("x", 0),
                    y=rect.get("y", 0),
                    w=rect.get("w", 0),
                    h=rect.get("h", 0),
                )
            )

        return cls(
            captions=[Caption(**c) for c in description.get("captions") or []],
            tags=[Tag(**t) for t in payload.get("tags") or []],
            categories=[Category(**c) for c in payload.get("categories") or []],
            objects=objects,
            width=metadata.get("width"),
            height=metadata.get("height"),
            image_format=metadata.get("format"),
            model_version=payload.get("modelVersion"),
            request_id=payload.get("requestId"),
            raw=payload,
        )
