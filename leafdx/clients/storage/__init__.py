"""Blob storage adapters."""

from leafdx.clients.storage.local import LocalFileSystemClient
from leafdx.clients.storage.memory import InMemoryBlobStorage


__all__ = ['InMemoryBlobStorage', 'LocalFileSystemClient']
