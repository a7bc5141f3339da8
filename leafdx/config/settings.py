"""
Centralized configuration using Pydantic Settings.

All configuration is loaded from environment variables with sensible defaults.
Use get_settings() to access the singleton settings instance.
"""

from functools import lru_cache
from typing import Literal
from uuid import UUID

from pydantic import Field
from pydantic_settings import BaseSettings


class DiagnosticsConfig:
    """Stable names shared between the model, blob layout and mark types."""

    # Mark types (looked up by name)
    LEAF_MASK_TYPE = 'leaf_mask'
    LESION_MASK_TYPE = 'lt_blg_lesion_mask'

    # Artifact filenames inside {user_id}/images/{timestamp}/
    IMAGE_FILENAME = 'image.jpg'
    LEAF_MASK_FILENAME = 'leaf_mask.jpg'
    LESION_MASK_FILENAME = 'lt_blg_lesion_mask.jpg'

    # Model signature
    INPUT_NAME = 'input_1'
    LEAF_OUTPUT = 'output_0'
    LESION_OUTPUT = 'output_1'


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables.
    Example: MODEL_SERVING_PROVIDER=tensorflow_grpc MODEL_SERVING_URL=localhost:8500 uvicorn leafdx.main:app
    """

    # ==========================================================================
    # Model Serving Configuration
    # ==========================================================================
    model_serving_provider: Literal['tensorflow', 'tensorflow_grpc', 'mock'] = Field(
        default='tensorflow', description='Inference backend: REST, gRPC or mock'
    )

    model_serving_url: str = Field(
        default='http://tf-serving:8501',
        description='TensorFlow Serving REST base URL, or gRPC host:port',
    )

    model_serving_model_name: str = Field(
        default='leaf_segmentation', description='Served model name'
    )

    model_serving_model_version: int | None = Field(
        default=None, description='Pinned model version (gRPC only)'
    )

    model_serving_timeout_seconds: float = Field(
        default=30.0, gt=0, description='Request timeout per attempt (REST) or per call (gRPC)'
    )

    model_serving_image_size: int = Field(
        default=256, ge=32, le=2048, description='Square model input size'
    )

    model_serving_concurrency_limit: int = Field(
        default=10, ge=1, description='Max in-flight inference calls per client'
    )

    model_serving_max_retries: int = Field(
        default=3, ge=0, description='Retries on transport failure (REST only)'
    )

    grpc_keepalive_time_ms: int = Field(
        default=30000, description='HTTP/2 keepalive ping interval'
    )

    grpc_keepalive_timeout_ms: int = Field(
        default=10000, description='Wait for keepalive ack before closing'
    )

    # ==========================================================================
    # Blob Storage Configuration
    # ==========================================================================
    storage_provider: Literal['local', 'memory', 's3'] = Field(
        default='local', description='Blob storage backend'
    )

    storage_local_base_path: str = Field(
        default='/tmp/spl-blobs', description='Root directory for the local provider'
    )

    s3_bucket: str | None = Field(default=None, description='S3 bucket (s3 provider)')

    s3_region: str = Field(default='eu-west-1', description='S3 region')

    s3_endpoint_url: str | None = Field(
        default=None, description='Custom S3 endpoint (MinIO, LocalStack)'
    )

    # ==========================================================================
    # Service Configuration
    # ==========================================================================
    seed_user_id: UUID | None = Field(
        default=None, description='Create this user at startup (in-memory repositories)'
    )

    startup_health_check: bool = Field(
        default=True, description='Fail startup when an integration is unhealthy'
    )

    max_file_size_mb: int = Field(default=20, description='Maximum upload file size in MB')

    slow_request_threshold_ms: int = Field(
        default=2000, description='Log requests slower than this threshold'
    )

    log_level: str = Field(default='INFO', description='Root log level')

    json_logs: bool = Field(default=True, description='Render logs as JSON')

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_title: str = Field(default='Leaf Diagnostics API', description='API title for OpenAPI docs')

    api_description: str = Field(
        default='Leaf disease segmentation, severity scoring and prediction records',
        description='API description for OpenAPI docs',
    )

    api_version: str = Field(default='1.0.0', description='API version')

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def max_file_size_bytes(self) -> int:
        """Maximum file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def grpc_target(self) -> str:
        """Model serving URL without scheme, as gRPC expects."""
        url = self.model_serving_url
        for scheme in ('http://', 'https://', 'grpc://'):
            if url.startswith(scheme):
                url = url[len(scheme):]
        return url.rstrip('/')

    class Config:
        env_prefix = ''  # No prefix for env vars
        case_sensitive = False
        extra = 'ignore'
        protected_namespaces = ()  # model_serving_* fields


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance (singleton pattern).

    Returns:
        Settings: Application settings
    """
    return Settings()
