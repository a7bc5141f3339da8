"""
Shared base for inference clients: concurrency limiting and statistics.

Each client instance owns its own semaphore. predict() holds one permit for
the whole call; callers beyond the limit wait
until a permit frees. Subclasses implement _predict().
"""

import asyncio
import logging
import time
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

from leafdx.domain.entities import InferenceResult
from leafdx.domain.ports import ModelPredictionClient


logger = logging.getLogger(__name__)


@dataclass
class ClientStats:
    """Request statistics for one inference client."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: float = 0.0
    active_requests: int = 0
    peak_active_requests: int = 0

    @property
    def avg_latency_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_latency_ms / self.successful_requests


class ModelServingClient(ModelPredictionClient):
    """
    Inference client with semaphore-based backpressure.

    Args:
        image_size: Square model input size used for preprocessing
        concurrency_limit: Max in-flight predict() calls for this instance
    """

    def __init__(self, image_size: int = 256, concurrency_limit: int = 10):
        if concurrency_limit < 1:
            raise ValueError(f'concurrency_limit must be >= 1, got {concurrency_limit}')
        self._image_size = image_size
        self.concurrency_limit = concurrency_limit
        self._semaphore = asyncio.Semaphore(concurrency_limit)
        self._stats = ClientStats()

    @property
    def image_size(self) -> int:
        return self._image_size

    async def predict(self, image_bytes: bytes) -> InferenceResult:
        """
        Run inference under the concurrency limit.

        The permit is released on every exit path, including errors and
        cancellation.
        """
        async with self._semaphore:
            self._stats.total_requests += 1
            self._stats.active_requests += 1
            self._stats.peak_active_requests = max(
                self._stats.peak_active_requests, self._stats.active_requests
            )
            start_time = time.perf_counter()
            try:
                result = await self._predict(image_bytes)
            except BaseException:
                self._stats.failed_requests += 1
                raise
            finally:
                self._stats.active_requests -= 1

            self._stats.successful_requests += 1
            self._stats.total_latency_ms += (time.perf_counter() - start_time) * 1000
            return result

    @abstractmethod
    async def _predict(self, image_bytes: bytes) -> InferenceResult: ...

    def get_stats(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'total_requests': self._stats.total_requests,
            'successful_requests': self._stats.successful_requests,
            'failed_requests': self._stats.failed_requests,
            'avg_latency_ms': round(self._stats.avg_latency_ms, 2),
            'active_requests': self._stats.active_requests,
            'peak_active_requests': self._stats.peak_active_requests,
            'concurrency_limit': self.concurrency_limit,
        }
