"""API request/response schemas."""

from leafdx.schemas.prediction import (
    ErrorResponse,
    ImageResponse,
    LabelResponse,
    MarkTypeResponse,
    PredictionMarkResponse,
    PredictionResponse,
    RawPredictionMarkResponse,
    RawPredictionResponse,
    StatusResponse,
)


__all__ = [
    'ErrorResponse',
    'ImageResponse',
    'LabelResponse',
    'MarkTypeResponse',
    'PredictionMarkResponse',
    'PredictionResponse',
    'RawPredictionMarkResponse',
    'RawPredictionResponse',
    'StatusResponse',
]
