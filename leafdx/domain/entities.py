"""
Domain entities for the diagnostics pipeline.

Plain dataclasses: the orchestrator builds and mutates them during one
pipeline run, then hands them to the caller as a read model.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InferenceResult:
    """Result of one inference round trip, already post-processed.

    Attributes:
        image: Resized source image (JPEG)
        leaf_mask: Leaf segmentation mask (JPEG, single channel)
        lesion_mask: Lesion segmentation mask (JPEG, single channel)
        leaf_confidence: Mean above-threshold leaf probability (0.0 - 1.0)
        lesion_confidence: Mean above-threshold lesion probability (0.0 - 1.0)
        severity: Percentage of leaf overlapped by lesion (0.0 - 100.0)
    """

    image: bytes
    leaf_mask: bytes
    lesion_mask: bytes
    leaf_confidence: float
    lesion_confidence: float
    severity: float


@dataclass
class User:
    id: UUID
    username: str
    email: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Label:
    """Severity band. Lowest weight wins when bands overlap."""

    id: int
    name: str
    min: float
    max: float
    weight: int
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def contains(self, severity: float) -> bool:
        return self.min <= severity <= self.max


@dataclass
class MarkType:
    id: int
    name: str
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PredictionMark:
    """Derived artifact attached to a prediction (e.g. a mask)."""

    data: dict[str, Any]
    mark_type: MarkType
    prediction_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Image:
    user_id: UUID
    filename: str
    filepath: str
    prediction_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Prediction:
    user: User
    image: Image
    label: Label
    presence_confidence: float
    absence_confidence: float
    severity: float
    marks: list[PredictionMark] = field(default_factory=list)
    plot_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RawPredictionMark:
    """Mask returned inline by anonymous predictions."""

    data: bytes
    mark_type: str


@dataclass
class RawPrediction:
    """Anonymous prediction: nothing persisted, artifacts returned inline."""

    image: bytes
    filename: str
    label: Label
    presence_confidence: float
    absence_confidence: float
    severity: float
    marks: list[RawPredictionMark] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
