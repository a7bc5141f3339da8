"""
Client modules for external services.

Model serving:
- TensorFlowServingClient: REST/JSON (retry + backoff via RetryableHttpClient)
- TensorFlowServingGrpcClient: gRPC/protobuf (leafdx.clients.model_serving.tensorflow_grpc)
- MockModelClient: canned results for development and tests

Blob storage:
- LocalFileSystemClient, InMemoryBlobStorage, S3StorageClient (leafdx.clients.storage.s3)
"""

from leafdx.clients.http_client import RetryableHttpClient
from leafdx.clients.model_serving import MockModelClient, TensorFlowServingClient
from leafdx.clients.storage import InMemoryBlobStorage, LocalFileSystemClient


__all__ = [
    'InMemoryBlobStorage',
    'LocalFileSystemClient',
    'MockModelClient',
    'RetryableHttpClient',
    'TensorFlowServingClient',
]
