"""In-memory blob storage."""

import threading

from leafdx.core.exceptions import NotFoundError
from leafdx.domain.ports import BlobStorageClient


class InMemoryBlobStorage(BlobStorageClient):
    """
    Dict-backed blob store. Keys are normalized paths without a leading '/'.

    Used by the 'memory' storage provider and throughout the tests.
    """

    name = 'memory_storage'

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(path: str) -> str:
        return path.lstrip('/')

    async def health_check(self) -> None:
        return None

    async def upload(self, content: bytes, destination: str) -> str:
        key = self._key(destination)
        with self._lock:
            self._blobs[key] = bytes(content)
        return f'memory://{key}'

    async def download(self, source: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[self._key(source)]
            except KeyError:
                raise NotFoundError(f'File not found: {source}') from None

    async def delete(self, path: str) -> None:
        with self._lock:
            if self._blobs.pop(self._key(path), None) is None:
                raise NotFoundError(f'File not found: {path}')

    async def delete_directory(self, prefix: str) -> None:
        dir_prefix = self._key(prefix).rstrip('/') + '/'
        with self._lock:
            keys = [k for k in self._blobs if k.startswith(dir_prefix)]
            if not keys:
                raise NotFoundError(f'Directory not found: {prefix}')
            for key in keys:
                del self._blobs[key]

    def exists(self, path: str) -> bool:
        with self._lock:
            return self._key(path) in self._blobs

    def count(self) -> int:
        with self._lock:
            return len(self._blobs)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)
