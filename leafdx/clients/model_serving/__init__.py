"""Inference clients for the leaf segmentation model."""

from leafdx.clients.model_serving.base import ClientStats, ModelServingClient
from leafdx.clients.model_serving.mock import MockModelClient
from leafdx.clients.model_serving.tensorflow_http import TensorFlowServingClient


__all__ = [
    'ClientStats',
    'MockModelClient',
    'ModelServingClient',
    'TensorFlowServingClient',
]
