"""HTTP surface tests with the mock model client and in-memory storage."""

import base64
from uuid import uuid4

import pytest
import structlog
from conftest import make_result
from fastapi.testclient import TestClient

from leafdx.clients.model_serving.mock import MockModelClient
from leafdx.clients.storage.memory import InMemoryBlobStorage
from leafdx.config import Settings
from leafdx.core.dependencies import app_state
from leafdx.core.exceptions import IntegrationError, IntegrationUnavailableError, UnknownError
from leafdx.main import create_app


USER_ID = uuid4()


def make_settings(**overrides) -> Settings:
    values = {
        'model_serving_provider': 'mock',
        'storage_provider': 'memory',
        'seed_user_id': USER_ID,
        'json_logs': False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def client():
    app = create_app(make_settings())
    with TestClient(app) as test_client:
        yield test_client
    assert not app_state.initialized


def upload(client, png_bytes, user_id=USER_ID):
    return client.post(
        f'/users/{user_id}/predictions',
        files={'file': ('leaf.png', png_bytes, 'image/png')},
    )


# =============================================================================
# Health
# =============================================================================
def test_health_reports_integrations(client):
    response = client.get('/health')

    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'healthy'
    assert body['services'] == {
        'mock_model_client': {'status': 'healthy'},
        'memory_storage': {'status': 'healthy'},
    }
    assert 'memory_mb' in body['resources']
    assert response.headers['X-Request-ID']


def test_request_id_is_echoed(client):
    response = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert response.headers['X-Request-ID'] == 'abc123'


def test_request_id_is_bound_to_log_context():
    app = create_app(make_settings())

    @app.get('/log-context')
    async def log_context():
        return structlog.contextvars.get_contextvars()

    with TestClient(app) as test_client:
        response = test_client.get('/log-context', headers={'X-Request-ID': 'abc123'})

    assert response.json() == {'request_id': 'abc123'}


def test_startup_fails_when_integration_unhealthy():
    class DownStorage(InMemoryBlobStorage):
        async def health_check(self) -> None:
            raise IntegrationError('memory_storage', 'down')

    app_state.initialize(make_settings(), storage_client=DownStorage())
    app = create_app(make_settings())

    with pytest.raises(RuntimeError, match='health check failed'):
        with TestClient(app):
            pass

    assert not app_state.initialized


# =============================================================================
# Predictions
# =============================================================================
def test_create_get_and_delete_prediction(client, png_bytes):
    created = upload(client, png_bytes)

    assert created.status_code == 201
    body = created.json()
    assert body['user_id'] == str(USER_ID)
    assert body['severity'] == 45.0
    assert body['label']['name'] == 'severe'
    assert body['image']['prediction_id'] == body['id']
    assert body['image']['filename'] == 'leaf.png'
    assert [m['mark_type']['name'] for m in body['marks']] == ['leaf_mask', 'lt_blg_lesion_mask']

    fetched = client.get(f'/users/{USER_ID}/predictions/{body["id"]}')
    assert fetched.status_code == 200
    assert fetched.json()['id'] == body['id']

    deleted = client.delete(f'/users/{USER_ID}/predictions/{body["id"]}')
    assert deleted.status_code == 200
    assert deleted.json()['success'] is True

    gone = client.get(f'/users/{USER_ID}/predictions/{body["id"]}')
    assert gone.status_code == 404
    assert gone.json() == {'success': False, 'code': 404, 'message': 'NOT_FOUND: Prediction not found'}


def test_unknown_user_is_404(client, png_bytes):
    missing = uuid4()
    response = upload(client, png_bytes, user_id=missing)

    assert response.status_code == 404
    assert response.json()['message'] == f'NOT_FOUND: User {missing} not found'


def test_empty_upload_is_400(client):
    response = upload(client, b'')

    assert response.status_code == 400
    assert response.json()['message'] == 'VALIDATION_ERROR: Empty image file'


@pytest.mark.parametrize(
    ('error', 'status', 'message'),
    [
        (IntegrationUnavailableError('tensorflow_serving', 'Failed to connect'), 503,
         'INTEGRATION_UNAVAILABLE: Failed to connect'),
        (IntegrationError('tensorflow_serving', 'Model returned no predictions'), 502,
         'INTEGRATION_ERROR: External service error: Model returned no predictions'),
        (UnknownError('No label found for severity 12.00'), 500, 'INTERNAL_ERROR: Unexpected error'),
    ],
)
def test_errors_map_to_status_codes(client, png_bytes, error, status, message):
    model_client: MockModelClient = app_state.model_client
    model_client.push_response(error)

    response = upload(client, png_bytes)

    assert response.status_code == status
    assert response.json() == {'success': False, 'code': status, 'message': message}


# =============================================================================
# Blobs
# =============================================================================
def test_blob_download_is_scoped_to_owner(client, png_bytes):
    body = upload(client, png_bytes).json()
    path = body['image']['filepath']

    own = client.get(f'/users/{USER_ID}/blobs/{path}')
    assert own.status_code == 200
    assert own.headers['content-type'] == 'image/jpeg'
    assert own.content == bytes(100)

    foreign = client.get(f'/users/{uuid4()}/blobs/{path}')
    assert foreign.status_code == 403
    assert foreign.json()['message'] == 'FORBIDDEN: Unauthorized access'

    missing = client.get(f'/users/{USER_ID}/blobs/{USER_ID}/images/none.jpg')
    assert missing.status_code == 404


# =============================================================================
# Public
# =============================================================================
def test_public_predict_returns_inline_artifacts(client, png_bytes):
    app_state.model_client.push_response(make_result(severity=5.0, lesion_confidence=0.4))

    response = client.post('/public/predict', files={'file': ('leaf.png', png_bytes, 'image/png')})

    assert response.status_code == 200
    body = response.json()
    assert body['label']['name'] == 'low'
    assert body['absence_confidence'] == pytest.approx(0.6)
    assert base64.b64decode(body['image']) == b'image-jpeg'
    assert [base64.b64decode(m['data']) for m in body['marks']] == [b'leaf-jpeg', b'lesion-jpeg']
    assert app_state.storage_client.count() == 0
