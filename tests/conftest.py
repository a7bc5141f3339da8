"""Shared fixtures for the diagnostics test suite."""

import io
from uuid import uuid4

import numpy as np
import pytest
from PIL import Image as PILImage

from leafdx.clients.model_serving.mock import MockModelClient
from leafdx.clients.storage.memory import InMemoryBlobStorage
from leafdx.core.dependencies import build_prediction_service
from leafdx.domain.entities import InferenceResult, User
from leafdx.repositories.memory import InMemoryDatabase


@pytest.fixture
def anyio_backend():
    # asyncio only, no trio
    return 'asyncio'


# =============================================================================
# Images
# =============================================================================
def make_image_bytes(width: int = 300, height: int = 200, fmt: str = 'PNG', mode: str = 'RGB') -> bytes:
    """Encode a gradient test image."""
    rng = np.random.default_rng(seed=width * height)
    channels = {'RGB': 3, 'RGBA': 4, 'L': 1}[mode]
    pixels = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    if channels == 1:
        pixels = pixels[..., 0]
    buffer = io.BytesIO()
    PILImage.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


def make_result(severity: float = 45.0, lesion_confidence: float = 0.75) -> InferenceResult:
    return InferenceResult(
        image=b'image-jpeg',
        leaf_mask=b'leaf-jpeg',
        lesion_mask=b'lesion-jpeg',
        leaf_confidence=0.85,
        lesion_confidence=lesion_confidence,
        severity=severity,
    )


# =============================================================================
# Pipeline
# =============================================================================
@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def user(db) -> User:
    return db.add_user(User(id=uuid4(), username='grower'))


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def model_client() -> MockModelClient:
    return MockModelClient()


@pytest.fixture
def service(db, model_client, storage):
    return build_prediction_service(db, model_client, storage)
