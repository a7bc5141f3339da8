"""
Local filesystem blob storage.

Blob paths are joined under a base directory (leading '/' stripped). File
I/O runs in a worker thread.
"""

import asyncio
import logging
import shutil
from pathlib import Path

from leafdx.core.exceptions import IntegrationError, NotFoundError
from leafdx.domain.ports import BlobStorageClient


logger = logging.getLogger(__name__)


class LocalFileSystemClient(BlobStorageClient):
    """Blob storage backed by a directory tree (development and tests)."""

    name = 'local_filesystem'

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    def full_path(self, path: str) -> Path:
        return self.base_path / path.lstrip('/')

    async def health_check(self) -> None:
        try:
            await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise IntegrationError(self.name, f'Base path not accessible: {e}') from e

    async def upload(self, content: bytes, destination: str) -> str:
        target = self.full_path(destination)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise IntegrationError(self.name, f'Failed to write file: {e}') from e

        logger.debug(f'Stored {len(content)} bytes at {target}')
        return str(target)

    async def download(self, source: str) -> bytes:
        try:
            return await asyncio.to_thread(self.full_path(source).read_bytes)
        except FileNotFoundError as e:
            raise NotFoundError(f'File not found: {source}') from e
        except OSError as e:
            raise IntegrationError(self.name, f'Failed to read file: {e}') from e

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(self.full_path(path).unlink)
        except FileNotFoundError as e:
            raise NotFoundError(f'File not found: {path}') from e
        except OSError as e:
            raise IntegrationError(self.name, f'Failed to delete file: {e}') from e

    async def delete_directory(self, prefix: str) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, self.full_path(prefix))
        except FileNotFoundError as e:
            raise NotFoundError(f'Directory not found: {prefix}') from e
        except OSError as e:
            raise IntegrationError(self.name, f'Failed to delete directory: {e}') from e
