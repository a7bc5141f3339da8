"""
Amazon S3 (or S3-compatible) blob storage.

boto3 is synchronous; every call runs in a worker thread. botocore failures
are classified into the integration error taxonomy.
"""

import asyncio
import logging
import mimetypes

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from leafdx.core.exceptions import (
    AppError,
    IntegrationError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
    NotFoundError,
)
from leafdx.domain.ports import BlobStorageClient


logger = logging.getLogger(__name__)

S3_INTEGRATION = 's3'
MISSING_KEY_CODES = {'NoSuchKey', 'NotFound', '404'}
DELETE_BATCH_SIZE = 1000  # DeleteObjects limit


def classify_s3_error(error: Exception, path: str) -> AppError:
    """Map a botocore failure for path onto the error taxonomy."""
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        if code in MISSING_KEY_CODES:
            return NotFoundError(f'File not found: {path}')
        return IntegrationError(S3_INTEGRATION, f'{code or "ClientError"}: {error}')
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
        return IntegrationTimeoutError(S3_INTEGRATION, f'S3 request timed out: {error}')
    if isinstance(error, EndpointConnectionError):
        return IntegrationUnavailableError(S3_INTEGRATION, f'Failed to connect to S3: {error}')
    return IntegrationError(S3_INTEGRATION, str(error))


class S3StorageClient(BlobStorageClient):
    """Blob storage in a single S3 bucket; blob paths are object keys."""

    name = S3_INTEGRATION

    def __init__(
        self,
        bucket: str,
        region: str = 'eu-west-1',
        endpoint_url: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.s3_client = client or boto3.client(
            's3', region_name=region, endpoint_url=endpoint_url
        )
        logger.info(f'S3 storage: bucket={bucket} region={region} endpoint={endpoint_url}')

    @staticmethod
    def _key(path: str) -> str:
        return path.lstrip('/')

    async def _call(self, path: str, operation: str, **kwargs):
        method = getattr(self.s3_client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise classify_s3_error(e, path) from e

    async def health_check(self) -> None:
        await self._call(self.bucket, 'head_bucket', Bucket=self.bucket)

    async def upload(self, content: bytes, destination: str) -> str:
        key = self._key(destination)
        content_type, _ = mimetypes.guess_type(key)
        await self._call(
            destination,
            'put_object',
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type or 'application/octet-stream',
        )
        logger.debug(f'Uploaded {len(content)} bytes to s3://{self.bucket}/{key}')
        return f's3://{self.bucket}/{key}'

    async def download(self, source: str) -> bytes:
        response = await self._call(
            source, 'get_object', Bucket=self.bucket, Key=self._key(source)
        )
        body = response['Body']
        try:
            return await asyncio.to_thread(body.read)
        finally:
            body.close()

    async def delete(self, path: str) -> None:
        await self._call(path, 'delete_object', Bucket=self.bucket, Key=self._key(path))

    async def delete_directory(self, prefix: str) -> None:
        """Delete every object under prefix/ (list pages, then batch delete)."""
        dir_prefix = self._key(prefix).rstrip('/') + '/'

        def _list_keys() -> list[str]:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            keys = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=dir_prefix):
                keys.extend(obj['Key'] for obj in page.get('Contents', []))
            return keys

        try:
            keys = await asyncio.to_thread(_list_keys)
        except (ClientError, BotoCoreError) as e:
            raise classify_s3_error(e, prefix) from e

        if not keys:
            raise NotFoundError(f'Directory not found: {prefix}')

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            response = await self._call(
                prefix,
                'delete_objects',
                Bucket=self.bucket,
                Delete={'Objects': [{'Key': k} for k in batch], 'Quiet': True},
            )
            errors = response.get('Errors', [])
            if errors:
                raise IntegrationError(
                    S3_INTEGRATION,
                    f'Failed to delete {len(errors)} objects under {prefix}: '
                    f'{errors[0].get("Message", errors[0].get("Code"))}',
                )

        logger.debug(f'Deleted {len(keys)} objects under s3://{self.bucket}/{dir_prefix}')
