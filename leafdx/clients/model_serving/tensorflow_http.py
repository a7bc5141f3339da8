"""
TensorFlow Serving REST client.

Speaks the TF Serving REST predict API:
    POST {base_url}/v1/models/{model}:predict   {"instances": [[H][W][3]]}
    GET  {base_url}/v1/models/{model}           (health)

Response shape: {"predictions": [{"output_0": [H][W][C], "output_1": [H][W][C]}]}
"""

import asyncio
import logging

import orjson

from leafdx.clients.http_client import RetryableHttpClient
from leafdx.clients.model_serving.base import ModelServingClient
from leafdx.config.settings import DiagnosticsConfig
from leafdx.core.exceptions import IntegrationError
from leafdx.domain.entities import InferenceResult
from leafdx.services.tensor_codec import PreprocessedImage, build_inference_result, preprocess


logger = logging.getLogger(__name__)


class TensorFlowServingClient(ModelServingClient):
    """
    REST/JSON inference client.

    Transport failures are retried by RetryableHttpClient; a non-success
    status from the server fails immediately.
    """

    name = 'tensorflow_serving'

    def __init__(
        self,
        base_url: str,
        model_name: str,
        timeout_seconds: float = 30.0,
        image_size: int = 256,
        concurrency_limit: int = 10,
        max_retries: int = 3,
        http_client: RetryableHttpClient | None = None,
    ):
        super().__init__(image_size=image_size, concurrency_limit=concurrency_limit)
        self.base_url = base_url.rstrip('/')
        self.model_name = model_name
        self.http_client = http_client or RetryableHttpClient(
            max_retries=max_retries, timeout=timeout_seconds
        )

        logger.info(
            f'TensorFlow Serving REST client: {self.base_url} '
            f'(model={model_name}, size={image_size}, limit={concurrency_limit})'
        )

    @property
    def model_url(self) -> str:
        return f'{self.base_url}/v1/models/{self.model_name}'

    async def health_check(self) -> None:
        await self.http_client.get(self.model_url)

    async def _predict(self, image_bytes: bytes) -> InferenceResult:
        preprocessed = await asyncio.to_thread(preprocess, image_bytes, self.image_size)

        body = orjson.dumps(
            {'instances': preprocessed.batched},
            option=orjson.OPT_SERIALIZE_NUMPY,
        )

        response = await self.http_client.post(f'{self.model_url}:predict', body)

        return await asyncio.to_thread(self.decode_response, response.content, preprocessed)

    def decode_response(self, content: bytes, preprocessed: PreprocessedImage) -> InferenceResult:
        """Parse a predict response body and build masks, confidences and severity."""
        try:
            payload = orjson.loads(content)
            predictions = payload['predictions']
        except (orjson.JSONDecodeError, KeyError, TypeError) as e:
            raise IntegrationError(self.name, f'Failed to parse response: {e}') from e

        if not isinstance(predictions, list) or not predictions:
            raise IntegrationError(self.name, 'Model returned no predictions')

        first = predictions[0]
        try:
            leaf_output = first[DiagnosticsConfig.LEAF_OUTPUT]
            lesion_output = first[DiagnosticsConfig.LESION_OUTPUT]
        except (KeyError, TypeError) as e:
            raise IntegrationError(self.name, f'Failed to parse response: missing {e}') from e

        return build_inference_result(
            leaf_output,
            lesion_output,
            preprocessed.resized_bytes,
            preprocessed.size,
        )

    async def close(self) -> None:
        await self.http_client.close()
