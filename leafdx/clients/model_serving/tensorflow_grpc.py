"""
TensorFlow Serving gRPC client.

Uses the PredictionService / ModelService stubs shipped with
tensorflow-serving-api over grpc.aio. The channel is created lazily on first
use, so constructing the client never touches the network.

Wire format:
- Request: inputs["input_1"] = TensorProto(DT_FLOAT, [1, size, size, 3], float_val)
- Response: outputs["output_0"], outputs["output_1"] as [1, H, W, C] tensors,
  values in float_val (or packed little-endian FP32 in tensor_content)
"""

import asyncio
import logging

import grpc
import numpy as np
from tensorflow.core.framework import tensor_pb2, tensor_shape_pb2, types_pb2
from tensorflow_serving.apis import (
    get_model_status_pb2,
    model_pb2,
    model_service_pb2_grpc,
    predict_pb2,
    prediction_service_pb2_grpc,
)

from leafdx.clients.model_serving.base import ModelServingClient
from leafdx.config.settings import DiagnosticsConfig
from leafdx.core.exceptions import (
    IntegrationError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)
from leafdx.domain.entities import InferenceResult
from leafdx.services.tensor_codec import PreprocessedImage, build_inference_result, preprocess


logger = logging.getLogger(__name__)

GRPC_INTEGRATION = 'tensorflow_serving_grpc'

# =============================================================================
# gRPC Channel Options
# =============================================================================
MAX_MESSAGE_LENGTH = 64 * 1024 * 1024  # [1, 1024, 1024, 3] float_val fits comfortably
MAX_TENSOR_ELEMENTS = MAX_MESSAGE_LENGTH // 4


def channel_options(keepalive_time_ms: int = 30000, keepalive_timeout_ms: int = 10000) -> list:
    """Channel args for a long-lived connection to the model server."""
    return [
        ('grpc.keepalive_time_ms', keepalive_time_ms),
        ('grpc.keepalive_timeout_ms', keepalive_timeout_ms),
        ('grpc.keepalive_permit_without_calls', 1),
        ('grpc.http2.max_pings_without_data', 0),
        ('grpc.max_send_message_length', MAX_MESSAGE_LENGTH),
        ('grpc.max_receive_message_length', MAX_MESSAGE_LENGTH),
        ('grpc.primary_user_agent', 'leafdx-tf-serving'),
    ]


def map_rpc_error(error: grpc.RpcError, context: str) -> IntegrationError:
    """Classify a failed RPC by status code."""
    code = error.code() if hasattr(error, 'code') else None
    details = error.details() if hasattr(error, 'details') else str(error)
    message = f'{context}: {details or code}'

    if code == grpc.StatusCode.DEADLINE_EXCEEDED:
        return IntegrationTimeoutError(GRPC_INTEGRATION, message)
    if code == grpc.StatusCode.UNAVAILABLE:
        return IntegrationUnavailableError(GRPC_INTEGRATION, message)
    return IntegrationError(GRPC_INTEGRATION, message)


# =============================================================================
# Tensor Marshaling
# =============================================================================
def build_input_tensor(tensor: np.ndarray) -> tensor_pb2.TensorProto:
    """
    Pack an [H, W, 3] tensor as a [1, H, W, 3] DT_FLOAT TensorProto.

    Values go row-major into float_val.
    """
    height, width, channels = tensor.shape
    shape = tensor_shape_pb2.TensorShapeProto(
        dim=[
            tensor_shape_pb2.TensorShapeProto.Dim(size=1),
            tensor_shape_pb2.TensorShapeProto.Dim(size=height),
            tensor_shape_pb2.TensorShapeProto.Dim(size=width),
            tensor_shape_pb2.TensorShapeProto.Dim(size=channels),
        ]
    )
    proto = tensor_pb2.TensorProto(dtype=types_pb2.DT_FLOAT, tensor_shape=shape)
    proto.float_val.extend(tensor.astype(np.float32).ravel().tolist())
    return proto


def tensor_to_array(tensor: tensor_pb2.TensorProto) -> np.ndarray:
    """
    Unpack a [1, H, W, C] (or [1, H, W]) output tensor to an [H, W, C] array.

    A payload shorter than H*W*C fills the leading cells; the rest stay 0.

    Raises:
        IntegrationError: Missing shape, fewer than 3 dims, non-positive or
            oversized dims, or no data
    """
    if not tensor.HasField('tensor_shape'):
        raise IntegrationError(GRPC_INTEGRATION, 'Missing tensor shape in response')

    dims = tensor.tensor_shape.dim
    if len(dims) < 3:
        raise IntegrationError(
            GRPC_INTEGRATION, f'Invalid tensor shape dimensions: {len(dims)}'
        )

    height = int(dims[1].size)
    width = int(dims[2].size)
    channels = int(dims[3].size) if len(dims) > 3 else 1
    if height <= 0 or width <= 0 or channels <= 0:
        raise IntegrationError(
            GRPC_INTEGRATION, f'Invalid tensor shape: [{height}, {width}, {channels}]'
        )
    if height * width * channels > MAX_TENSOR_ELEMENTS:
        raise IntegrationError(
            GRPC_INTEGRATION, f'Tensor too large: [{height}, {width}, {channels}]'
        )

    if len(tensor.float_val) > 0:
        flat = np.asarray(tensor.float_val, dtype=np.float32)
    elif tensor.tensor_content:
        flat = np.frombuffer(tensor.tensor_content, dtype='<f4')
    else:
        raise IntegrationError(GRPC_INTEGRATION, 'Empty tensor data in response')

    total = height * width * channels
    values = np.zeros(total, dtype=np.float32)
    n = min(total, flat.size)
    values[:n] = flat[:n]

    return values.reshape(height, width, channels)


# =============================================================================
# Client
# =============================================================================
class TensorFlowServingGrpcClient(ModelServingClient):
    """
    gRPC/protobuf inference client.

    No retry here: each call carries a deadline and the channel keeps itself
    alive with HTTP/2 pings.
    """

    name = GRPC_INTEGRATION

    def __init__(
        self,
        target: str,
        model_name: str,
        model_version: int | None = None,
        timeout_seconds: float = 30.0,
        image_size: int = 256,
        concurrency_limit: int = 10,
        keepalive_time_ms: int = 30000,
        keepalive_timeout_ms: int = 10000,
        prediction_stub=None,
        model_stub=None,
    ):
        """
        Args:
            target: host:port of the TF Serving gRPC endpoint
            model_name: Served model name
            model_version: Pin a version, None for the server's latest
            timeout_seconds: Deadline per RPC
            prediction_stub: Pre-built PredictionService stub (tests)
            model_stub: Pre-built ModelService stub (tests)
        """
        super().__init__(image_size=image_size, concurrency_limit=concurrency_limit)
        self.target = target
        self.model_name = model_name
        self.model_version = model_version
        self.timeout_seconds = timeout_seconds
        self._options = channel_options(keepalive_time_ms, keepalive_timeout_ms)

        self._channel: grpc.aio.Channel | None = None
        self._injected_stubs = (prediction_stub, model_stub)
        self._prediction_stub = prediction_stub
        self._model_stub = model_stub

        logger.info(
            f'TensorFlow Serving gRPC client: {target} '
            f'(model={model_name}, version={model_version}, size={image_size})'
        )

    def _ensure_stubs(self) -> None:
        if self._prediction_stub is not None and self._model_stub is not None:
            return
        if self._channel is None:
            self._channel = grpc.aio.insecure_channel(self.target, options=self._options)
            logger.debug(f'Opened gRPC channel to {self.target}')
        if self._prediction_stub is None:
            self._prediction_stub = prediction_service_pb2_grpc.PredictionServiceStub(
                self._channel
            )
        if self._model_stub is None:
            self._model_stub = model_service_pb2_grpc.ModelServiceStub(self._channel)

    def model_spec(self) -> model_pb2.ModelSpec:
        spec = model_pb2.ModelSpec(name=self.model_name)
        if self.model_version is not None:
            spec.version.value = self.model_version
        return spec

    def build_request(self, tensor: np.ndarray) -> predict_pb2.PredictRequest:
        request = predict_pb2.PredictRequest()
        request.model_spec.CopyFrom(self.model_spec())
        request.inputs[DiagnosticsConfig.INPUT_NAME].CopyFrom(build_input_tensor(tensor))
        return request

    async def health_check(self) -> None:
        """Require at least one model version in the AVAILABLE state."""
        self._ensure_stubs()
        request = get_model_status_pb2.GetModelStatusRequest()
        request.model_spec.CopyFrom(self.model_spec())

        try:
            response = await self._model_stub.GetModelStatus(
                request, timeout=self.timeout_seconds
            )
        except grpc.RpcError as e:
            raise map_rpc_error(e, 'Health check failed') from e

        if len(response.model_version_status) == 0:
            raise IntegrationError(self.name, 'No model versions available')

        available = get_model_status_pb2.ModelVersionStatus.AVAILABLE
        if not any(v.state == available for v in response.model_version_status):
            raise IntegrationError(self.name, 'Model is not in AVAILABLE state')

    async def _predict(self, image_bytes: bytes) -> InferenceResult:
        preprocessed = await asyncio.to_thread(preprocess, image_bytes, self.image_size)
        request = await asyncio.to_thread(self.build_request, preprocessed.tensor)

        self._ensure_stubs()
        try:
            response = await self._prediction_stub.Predict(request, timeout=self.timeout_seconds)
        except grpc.RpcError as e:
            raise map_rpc_error(e, 'gRPC prediction failed') from e

        return await asyncio.to_thread(self.decode_response, response, preprocessed)

    def decode_response(
        self, response: predict_pb2.PredictResponse, preprocessed: PreprocessedImage
    ) -> InferenceResult:
        """Unpack both output tensors and build masks, confidences and severity."""
        outputs = {}
        for key in (DiagnosticsConfig.LEAF_OUTPUT, DiagnosticsConfig.LESION_OUTPUT):
            if key not in response.outputs:
                raise IntegrationError(self.name, f'Missing {key} in gRPC response')
            outputs[key] = tensor_to_array(response.outputs[key])

        return build_inference_result(
            outputs[DiagnosticsConfig.LEAF_OUTPUT],
            outputs[DiagnosticsConfig.LESION_OUTPUT],
            preprocessed.resized_bytes,
            preprocessed.size,
        )

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
            self._prediction_stub, self._model_stub = self._injected_stubs
            logger.debug(f'Closed gRPC channel to {self.target}')
