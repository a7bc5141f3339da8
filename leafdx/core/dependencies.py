"""
Dependency wiring.

Builds integration clients and repositories from settings, holds them for
the app lifetime, and exposes them to routers through FastAPI Depends.
"""

import asyncio
from typing import Annotated, Any

from fastapi import Depends

from leafdx.config import Settings, get_settings
from leafdx.core.exceptions import AppError
from leafdx.core.logging import get_logger
from leafdx.domain.entities import User
from leafdx.domain.ports import BlobStorageClient, IntegrationClient, ModelPredictionClient
from leafdx.repositories.memory import (
    InMemoryDatabase,
    InMemoryImageRepository,
    InMemoryLabelRepository,
    InMemoryMarkTypeRepository,
    InMemoryPredictionMarkRepository,
    InMemoryPredictionRepository,
    InMemoryUserRepository,
)
from leafdx.services.prediction import PredictionService


logger = get_logger(__name__)


# =============================================================================
# Client Factories
# =============================================================================
def build_model_client(settings: Settings) -> ModelPredictionClient:
    """Create the inference client selected by model_serving_provider."""
    provider = settings.model_serving_provider

    if provider == 'tensorflow':
        from leafdx.clients.model_serving.tensorflow_http import TensorFlowServingClient

        return TensorFlowServingClient(
            base_url=settings.model_serving_url,
            model_name=settings.model_serving_model_name,
            timeout_seconds=settings.model_serving_timeout_seconds,
            image_size=settings.model_serving_image_size,
            concurrency_limit=settings.model_serving_concurrency_limit,
            max_retries=settings.model_serving_max_retries,
        )

    if provider == 'tensorflow_grpc':
        # Imports tensorflow protos; only loaded when selected
        from leafdx.clients.model_serving.tensorflow_grpc import TensorFlowServingGrpcClient

        return TensorFlowServingGrpcClient(
            target=settings.grpc_target,
            model_name=settings.model_serving_model_name,
            model_version=settings.model_serving_model_version,
            timeout_seconds=settings.model_serving_timeout_seconds,
            image_size=settings.model_serving_image_size,
            concurrency_limit=settings.model_serving_concurrency_limit,
            keepalive_time_ms=settings.grpc_keepalive_time_ms,
            keepalive_timeout_ms=settings.grpc_keepalive_timeout_ms,
        )

    if provider == 'mock':
        from leafdx.clients.model_serving.mock import MockModelClient

        return MockModelClient(
            image_size=settings.model_serving_image_size,
            concurrency_limit=settings.model_serving_concurrency_limit,
        )

    raise ValueError(f'Unknown model serving provider: {provider}')


def build_storage_client(settings: Settings) -> BlobStorageClient:
    """Create the blob storage client selected by storage_provider."""
    provider = settings.storage_provider

    if provider == 'local':
        from leafdx.clients.storage.local import LocalFileSystemClient

        return LocalFileSystemClient(settings.storage_local_base_path)

    if provider == 'memory':
        from leafdx.clients.storage.memory import InMemoryBlobStorage

        return InMemoryBlobStorage()

    if provider == 's3':
        if not settings.s3_bucket:
            raise ValueError('S3_BUCKET is required for the s3 storage provider')
        from leafdx.clients.storage.s3 import S3StorageClient

        return S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )

    raise ValueError(f'Unknown storage provider: {provider}')


def build_prediction_service(
    db: InMemoryDatabase,
    model_client: ModelPredictionClient,
    storage_client: BlobStorageClient,
) -> PredictionService:
    return PredictionService(
        prediction_repo=InMemoryPredictionRepository(db),
        user_repo=InMemoryUserRepository(db),
        image_repo=InMemoryImageRepository(db),
        label_repo=InMemoryLabelRepository(db),
        mark_repo=InMemoryPredictionMarkRepository(db),
        mark_type_repo=InMemoryMarkTypeRepository(db),
        storage_client=storage_client,
        model_client=model_client,
    )


# =============================================================================
# Health Checks
# =============================================================================
async def run_health_checks(clients: list[IntegrationClient]) -> dict[str, dict[str, Any]]:
    """
    Run every client's health_check() concurrently.

    Returns:
        {client.name: {'status': 'healthy'} or {'status': 'unhealthy', 'error': ...}}
    """
    outcomes = await asyncio.gather(
        *(client.health_check() for client in clients), return_exceptions=True
    )

    report = {}
    for client, outcome in zip(clients, outcomes):
        if isinstance(outcome, AppError):
            report[client.name] = {'status': 'unhealthy', 'error': str(outcome)}
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            report[client.name] = {'status': 'healthy'}
    return report


# =============================================================================
# Application State (managed by lifespan)
# =============================================================================
class AppState:
    """Container for resources shared across requests."""

    def __init__(self):
        self.database: InMemoryDatabase | None = None
        self.model_client: ModelPredictionClient | None = None
        self.storage_client: BlobStorageClient | None = None
        self.prediction_service: PredictionService | None = None

    @property
    def initialized(self) -> bool:
        return self.prediction_service is not None

    def initialize(
        self,
        settings: Settings | None = None,
        model_client: ModelPredictionClient | None = None,
        storage_client: BlobStorageClient | None = None,
    ) -> None:
        """Build clients from settings unless given explicitly."""
        settings = settings or get_settings()

        self.database = InMemoryDatabase()
        if settings.seed_user_id is not None:
            self.database.add_user(User(id=settings.seed_user_id, username='demo'))

        self.model_client = model_client or build_model_client(settings)
        self.storage_client = storage_client or build_storage_client(settings)
        self.prediction_service = build_prediction_service(
            self.database, self.model_client, self.storage_client
        )

        logger.info(
            'app_state_initialized',
            model_client=self.model_client.name,
            storage_client=self.storage_client.name,
        )

    def integrations(self) -> list[IntegrationClient]:
        return [c for c in (self.model_client, self.storage_client) if c is not None]

    async def close(self) -> None:
        for client in self.integrations():
            try:
                await client.close()
            except Exception as e:
                logger.warning('integration_close_error', integration=client.name, error=str(e))
        self.model_client = None
        self.storage_client = None
        self.prediction_service = None
        self.database = None


app_state = AppState()


# =============================================================================
# FastAPI Dependencies
# =============================================================================
def get_app_state() -> AppState:
    if not app_state.initialized:
        raise RuntimeError('Application state not initialized. Call during lifespan.')
    return app_state


def get_prediction_service(
    state: Annotated[AppState, Depends(get_app_state)],
) -> PredictionService:
    return state.prediction_service


AppStateDep = Annotated[AppState, Depends(get_app_state)]
PredictionServiceDep = Annotated[PredictionService, Depends(get_prediction_service)]
