"""Mock inference client for development and tests."""

import threading
from collections import deque

from leafdx.clients.model_serving.base import ModelServingClient
from leafdx.domain.entities import InferenceResult


class MockModelClient(ModelServingClient):
    """
    Returns queued results (or raises queued errors) in FIFO order, then a
    fixed default result once the queue is empty. Always healthy.
    """

    name = 'mock_model_client'

    def __init__(self, image_size: int = 256, concurrency_limit: int = 10):
        super().__init__(image_size=image_size, concurrency_limit=concurrency_limit)
        self._responses: deque[InferenceResult | Exception] = deque()
        self._call_count = 0
        self._lock = threading.Lock()

    @staticmethod
    def default_result() -> InferenceResult:
        return InferenceResult(
            image=bytes(100),
            leaf_mask=bytes(100),
            lesion_mask=bytes(100),
            leaf_confidence=0.85,
            lesion_confidence=0.75,
            severity=45.0,
        )

    def push_response(self, response: InferenceResult | Exception) -> None:
        """Queue the outcome of a future predict() call."""
        with self._lock:
            self._responses.append(response)

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._call_count

    async def health_check(self) -> None:
        return None

    async def _predict(self, image_bytes: bytes) -> InferenceResult:
        with self._lock:
            self._call_count += 1
            response = self._responses.popleft() if self._responses else None

        if response is None:
            return self.default_result()
        if isinstance(response, Exception):
            raise response
        return response
