"""
Pydantic response models for the diagnostics API.

Entities are dataclasses; these models are built from them with
from_attributes. Binary artifacts of anonymous predictions are base64.
"""

import base64
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from leafdx.domain.entities import Prediction, RawPrediction


class LabelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    min: float
    max: float
    weight: int
    description: str | None = None


class MarkTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None


class PredictionMarkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    data: dict[str, Any] = Field(description='filepath and filename of the mask blob')
    mark_type: MarkTypeResponse
    prediction_id: UUID | None = None
    created_at: datetime


class ImageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    filename: str
    filepath: str
    prediction_id: UUID | None = None
    created_at: datetime


class PredictionResponse(BaseModel):
    """Persisted diagnosis with its image and masks."""

    id: UUID
    user_id: UUID
    image: ImageResponse
    label: LabelResponse
    presence_confidence: float = Field(ge=0.0, le=1.0)
    absence_confidence: float = Field(ge=0.0, le=1.0)
    severity: float = Field(ge=0.0, le=100.0, description='Percent of leaf covered by lesion')
    marks: list[PredictionMarkResponse] = Field(default_factory=list)
    plot_id: UUID | None = None
    created_at: datetime

    @classmethod
    def from_entity(cls, prediction: Prediction) -> 'PredictionResponse':
        return cls(
            id=prediction.id,
            user_id=prediction.user.id,
            image=ImageResponse.model_validate(prediction.image),
            label=LabelResponse.model_validate(prediction.label),
            presence_confidence=prediction.presence_confidence,
            absence_confidence=prediction.absence_confidence,
            severity=prediction.severity,
            marks=[PredictionMarkResponse.model_validate(m) for m in prediction.marks],
            plot_id=prediction.plot_id,
            created_at=prediction.created_at,
        )


class RawPredictionMarkResponse(BaseModel):
    mark_type: str
    data: str = Field(description='Base64-encoded JPEG mask')


class RawPredictionResponse(BaseModel):
    """Anonymous diagnosis; nothing was stored."""

    filename: str
    image: str = Field(description='Base64-encoded JPEG of the resized input')
    label: LabelResponse
    presence_confidence: float
    absence_confidence: float
    severity: float
    marks: list[RawPredictionMarkResponse]
    created_at: datetime

    @classmethod
    def from_entity(cls, raw: RawPrediction) -> 'RawPredictionResponse':
        return cls(
            filename=raw.filename,
            image=base64.b64encode(raw.image).decode('ascii'),
            label=LabelResponse.model_validate(raw.label),
            presence_confidence=raw.presence_confidence,
            absence_confidence=raw.absence_confidence,
            severity=raw.severity,
            marks=[
                RawPredictionMarkResponse(
                    mark_type=m.mark_type, data=base64.b64encode(m.data).decode('ascii')
                )
                for m in raw.marks
            ],
            created_at=raw.created_at,
        )


class StatusResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    code: int
    message: str
