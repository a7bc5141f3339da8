"""
Predictions Router - per-user diagnoses and their artifacts.

Endpoints:
- POST   /users/{user_id}/predictions                   - Diagnose and store an image
- GET    /users/{user_id}/predictions/{prediction_id}   - Fetch a stored diagnosis
- DELETE /users/{user_id}/predictions/{prediction_id}   - Delete diagnosis and artifacts
- GET    /users/{user_id}/blobs/{path}                  - Download an artifact
"""

import mimetypes
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Response, UploadFile
from fastapi.responses import ORJSONResponse

from leafdx.core.dependencies import PredictionServiceDep
from leafdx.core.exceptions import NotFoundError, ValidationError
from leafdx.schemas import PredictionResponse, StatusResponse


router = APIRouter(
    prefix='/users/{user_id}',
    tags=['Predictions'],
    default_response_class=ORJSONResponse,
)


async def read_upload(image: UploadFile) -> bytes:
    image_bytes = await image.read()
    if not image_bytes:
        raise ValidationError('Empty image file')
    return image_bytes


@router.post('/predictions', response_model=PredictionResponse, status_code=201)
async def create_prediction(
    user_id: UUID,
    service: PredictionServiceDep,
    file: Annotated[UploadFile, File(description='Leaf image (JPEG/PNG)')],
):
    """
    Segment a leaf image, score its severity and store the result.

    The resized image and both masks are stored under
    {user_id}/images/{timestamp}/ and linked from the returned prediction.
    """
    image_bytes = await read_upload(file)
    prediction = await service.predict_and_create(
        user_id, image_bytes, file.filename or 'uploaded_image'
    )
    return PredictionResponse.from_entity(prediction)


@router.get('/predictions/{prediction_id}', response_model=PredictionResponse)
async def get_prediction(user_id: UUID, prediction_id: UUID, service: PredictionServiceDep):
    prediction = await service.get_by_user_id_and_id(user_id, prediction_id)
    if prediction is None:
        raise NotFoundError('Prediction not found')
    return PredictionResponse.from_entity(prediction)


@router.delete('/predictions/{prediction_id}', response_model=StatusResponse)
async def delete_prediction(user_id: UUID, prediction_id: UUID, service: PredictionServiceDep):
    deleted = await service.delete(user_id, prediction_id)
    return StatusResponse(message=f'Prediction {deleted.id} deleted')


@router.get('/blobs/{path:path}', response_class=Response)
async def read_blob(user_id: UUID, path: str, service: PredictionServiceDep):
    """Download an artifact; path must lie under the user's own directory."""
    content = await service.read_blob(user_id, path)
    media_type, _ = mimetypes.guess_type(path)
    return Response(content=content, media_type=media_type or 'application/octet-stream')
