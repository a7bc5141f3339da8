"""
Public Router - anonymous diagnosis.

Runs the same inference and severity scoring as the per-user endpoint but
stores nothing; the image and masks come back base64-encoded.
"""

from typing import Annotated

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import ORJSONResponse

from leafdx.core.dependencies import PredictionServiceDep
from leafdx.routers.predictions import read_upload
from leafdx.schemas import RawPredictionResponse


router = APIRouter(
    prefix='/public',
    tags=['Public'],
    default_response_class=ORJSONResponse,
)


@router.post('/predict', response_model=RawPredictionResponse)
async def predict(
    service: PredictionServiceDep,
    file: Annotated[UploadFile, File(description='Leaf image (JPEG/PNG)')],
):
    image_bytes = await read_upload(file)
    raw = await service.predict(image_bytes, file.filename or 'uploaded_image')
    return RawPredictionResponse.from_entity(raw)
