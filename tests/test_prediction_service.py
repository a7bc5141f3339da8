"""Tests for the prediction orchestrator."""

from uuid import uuid4

import httpx
import numpy as np
import pytest
from conftest import make_image_bytes, make_result

from leafdx.clients.http_client import RetryableHttpClient
from leafdx.clients.model_serving.tensorflow_http import TensorFlowServingClient
from leafdx.clients.storage.memory import InMemoryBlobStorage
from leafdx.core.dependencies import build_prediction_service
from leafdx.core.exceptions import (
    ForbiddenError,
    IntegrationError,
    IntegrationTimeoutError,
    NotFoundError,
    UnknownError,
)
from leafdx.domain.entities import Label, User
from leafdx.repositories.memory import InMemoryDatabase, default_mark_types


class FailingStorage(InMemoryBlobStorage):
    """In-memory storage that fails uploads ending with fail_suffix."""

    def __init__(self, fail_suffix: str | None = None, delete_error: Exception | None = None):
        super().__init__()
        self.fail_suffix = fail_suffix
        self.delete_error = delete_error

    async def upload(self, content: bytes, destination: str) -> str:
        if self.fail_suffix and destination.endswith(self.fail_suffix):
            raise IntegrationError('memory_storage', f'upload failed: {destination}')
        return await super().upload(content, destination)

    async def delete_directory(self, prefix: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        await super().delete_directory(prefix)


# =============================================================================
# End-to-end through the REST client
# =============================================================================
@pytest.mark.anyio
async def test_end_to_end_with_zero_probability_maps(db, user, storage):
    zeros = np.zeros((256, 256, 1)).tolist()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={'predictions': [{'output_0': zeros, 'output_1': zeros}]})

    model_client = TensorFlowServingClient(
        base_url='http://tf-serving:8501',
        model_name='leaf_segmentation',
        image_size=256,
        http_client=RetryableHttpClient(transport=httpx.MockTransport(handler)),
    )
    service = build_prediction_service(db, model_client, storage)

    prediction = await service.predict_and_create(user.id, make_image_bytes(256, 256), 'leaf.png')

    assert prediction.severity == 0.0
    assert prediction.label.name == 'healthy'
    assert prediction.presence_confidence == 0.0
    assert prediction.absence_confidence == 1.0
    assert storage.count() == 3
    assert len(db.images) == 1
    assert len(db.predictions) == 1
    assert len(db.marks) == 2
    assert prediction.image.prediction_id == prediction.id
    assert all(mark.prediction_id == prediction.id for mark in prediction.marks)


# =============================================================================
# predict_and_create
# =============================================================================
@pytest.mark.anyio
async def test_artifacts_share_one_prefix(service, user, storage, png_bytes):
    prediction = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    prefix = prediction.image.filepath.rsplit('/', 1)[0]
    assert prefix.startswith(f'{user.id}/images/')
    assert prediction.image.filepath == f'{prefix}/image.jpg'
    assert prediction.image.filename == 'leaf.png'
    assert storage.keys() == sorted(
        [f'{prefix}/image.jpg', f'{prefix}/leaf_mask.jpg', f'{prefix}/lt_blg_lesion_mask.jpg']
    )
    assert [m.data for m in prediction.marks] == [
        {'filepath': f'{prefix}/leaf_mask.jpg', 'filename': 'leaf_mask.jpg'},
        {'filepath': f'{prefix}/lt_blg_lesion_mask.jpg', 'filename': 'lt_blg_lesion_mask.jpg'},
    ]
    assert [m.mark_type.name for m in prediction.marks] == ['leaf_mask', 'lt_blg_lesion_mask']


@pytest.mark.anyio
async def test_confidences_follow_lesion_confidence(service, user, png_bytes):
    prediction = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert prediction.severity == 45.0
    assert prediction.label.name == 'severe'
    assert prediction.presence_confidence == pytest.approx(0.75)
    assert prediction.absence_confidence == pytest.approx(0.25)


@pytest.mark.anyio
@pytest.mark.parametrize(
    ('raw', 'clamped', 'label'),
    [(-5.0, 0.0, 'healthy'), (150.0, 100.0, 'severe'), (10.0, 10.0, 'low')],
)
async def test_severity_is_clamped_before_label_lookup(
    service, model_client, user, png_bytes, raw, clamped, label
):
    model_client.push_response(make_result(severity=raw))

    prediction = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert prediction.severity == clamped
    assert prediction.label.name == label


@pytest.mark.anyio
async def test_overlapping_bands_prefer_lowest_weight(model_client, storage, png_bytes):
    db = InMemoryDatabase(
        labels=[
            Label(id=1, name='wide', min=0.0, max=50.0, weight=1),
            Label(id=2, name='narrow', min=40.0, max=60.0, weight=0),
        ]
    )
    user = db.add_user(User(id=uuid4(), username='grower'))
    service = build_prediction_service(db, model_client, storage)

    prediction = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert prediction.label.name == 'narrow'


@pytest.mark.anyio
async def test_unknown_user_fails_before_inference(service, model_client, storage, png_bytes):
    with pytest.raises(NotFoundError):
        await service.predict_and_create(uuid4(), png_bytes, 'leaf.png')

    assert model_client.call_count == 0
    assert storage.count() == 0


@pytest.mark.anyio
async def test_inference_error_propagates_unchanged(service, model_client, user, db, storage, png_bytes):
    error = IntegrationTimeoutError('tensorflow_serving', 'HTTP request timed out')
    model_client.push_response(error)

    with pytest.raises(IntegrationTimeoutError) as exc_info:
        await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert exc_info.value is error
    assert storage.count() == 0
    assert db.images == {}


@pytest.mark.anyio
async def test_label_gap_is_unknown_error(model_client, storage, png_bytes):
    db = InMemoryDatabase(labels=[Label(id=1, name='severe', min=50.0, max=100.0, weight=0)])
    user = db.add_user(User(id=uuid4(), username='grower'))
    service = build_prediction_service(db, model_client, storage)

    with pytest.raises(UnknownError):
        await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert db.predictions == {}


@pytest.mark.anyio
async def test_missing_mark_type_is_unknown_error(model_client, storage, png_bytes):
    db = InMemoryDatabase(mark_types=default_mark_types()[:1])
    user = db.add_user(User(id=uuid4(), username='grower'))
    service = build_prediction_service(db, model_client, storage)

    with pytest.raises(UnknownError, match='lt_blg_lesion_mask'):
        await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert db.images == {}


@pytest.mark.anyio
async def test_mask_upload_failure_aborts_before_records(db, user, model_client, png_bytes):
    storage = FailingStorage(fail_suffix='lt_blg_lesion_mask.jpg')
    service = build_prediction_service(db, model_client, storage)

    with pytest.raises(IntegrationError):
        await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    assert db.images == {}
    assert db.predictions == {}


# =============================================================================
# get / delete
# =============================================================================
@pytest.mark.anyio
async def test_get_returns_linked_prediction(service, user, png_bytes):
    created = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    fetched = await service.get_by_user_id_and_id(user.id, created.id)

    assert fetched.id == created.id
    assert fetched.image.prediction_id == created.id
    assert len(fetched.marks) == 2
    assert await service.get_by_user_id_and_id(uuid4(), created.id) is None


@pytest.mark.anyio
async def test_delete_removes_records_and_artifacts(service, user, db, storage, png_bytes):
    created = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    deleted = await service.delete(user.id, created.id)

    assert deleted.id == created.id
    assert storage.count() == 0
    assert db.predictions == {}
    assert db.marks == {}
    assert await service.get_by_user_id_and_id(user.id, created.id) is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    'error',
    [
        IntegrationError('memory_storage', 'storage offline'),
        ConnectionResetError('storage socket reset'),
    ],
    ids=['integration-error', 'os-error'],
)
async def test_delete_survives_storage_failure(db, user, model_client, png_bytes, error):
    storage = FailingStorage(delete_error=error)
    service = build_prediction_service(db, model_client, storage)
    created = await service.predict_and_create(user.id, png_bytes, 'leaf.png')

    deleted = await service.delete(user.id, created.id)

    assert deleted.id == created.id
    assert db.predictions == {}
    assert storage.count() == 3


@pytest.mark.anyio
async def test_delete_unknown_or_foreign_prediction_is_not_found(service, user, db, png_bytes):
    created = await service.predict_and_create(user.id, png_bytes, 'leaf.png')
    other = db.add_user(User(id=uuid4(), username='neighbour'))

    with pytest.raises(NotFoundError):
        await service.delete(user.id, uuid4())
    with pytest.raises(NotFoundError):
        await service.delete(other.id, created.id)

    assert created.id in db.predictions


# =============================================================================
# Anonymous predict and blob reads
# =============================================================================
@pytest.mark.anyio
async def test_raw_predict_persists_nothing(service, model_client, storage, db, png_bytes):
    model_client.push_response(make_result(severity=20.0, lesion_confidence=0.6))

    raw = await service.predict(png_bytes, 'leaf.png')

    assert raw.filename == 'leaf.png'
    assert raw.label.name == 'mild'
    assert raw.presence_confidence == pytest.approx(0.6)
    assert raw.absence_confidence == pytest.approx(0.4)
    assert raw.image == b'image-jpeg'
    assert [(m.mark_type, m.data) for m in raw.marks] == [
        ('leaf_mask', b'leaf-jpeg'),
        ('lt_blg_lesion_mask', b'lesion-jpeg'),
    ]
    assert storage.count() == 0
    assert db.predictions == {}


@pytest.mark.anyio
async def test_read_blob_enforces_ownership(service, user, db, png_bytes):
    created = await service.predict_and_create(user.id, png_bytes, 'leaf.png')
    other = db.add_user(User(id=uuid4(), username='neighbour'))

    assert await service.read_blob(user.id, created.image.filepath) == bytes(100)

    with pytest.raises(ForbiddenError):
        await service.read_blob(other.id, created.image.filepath)
    with pytest.raises(ForbiddenError):
        await service.read_blob(other.id, f'{other.id}/../{created.image.filepath}')
    with pytest.raises(NotFoundError):
        await service.read_blob(user.id, f'{user.id}/images/missing.jpg')
