"""
Health and Monitoring Router

Provides service info, integration health checks and inference client statistics.
"""

import logging
import os

import psutil
from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from leafdx.config import get_settings
from leafdx.core.dependencies import AppStateDep, run_health_checks


logger = logging.getLogger(__name__)

router = APIRouter(
    tags=['Health & Monitoring'],
)


@router.get('/')
def root():
    """Service information endpoint."""
    settings = get_settings()

    return {
        'service': settings.api_title,
        'version': settings.api_version,
        'status': 'running',
        'endpoints': {
            'health': '/health',
            'create_prediction': '/users/{user_id}/predictions',
            'prediction': '/users/{user_id}/predictions/{prediction_id}',
            'blob': '/users/{user_id}/blobs/{path}',
            'public_predict': '/public/predict',
        },
        'backend': {
            'model_serving_provider': settings.model_serving_provider,
            'model_serving_url': settings.model_serving_url,
            'model_name': settings.model_serving_model_name,
            'storage_provider': settings.storage_provider,
        },
    }


@router.get('/health')
async def health(state: AppStateDep):
    """
    Health check across integrations.

    Returns 200 when model serving and blob storage both respond, 503 with
    per-integration detail otherwise.
    """
    integrations = await run_health_checks(state.integrations())
    healthy = all(item['status'] == 'healthy' for item in integrations.values())

    process = psutil.Process(os.getpid())
    memory_info = process.memory_info()

    health_data = {
        'status': 'healthy' if healthy else 'unhealthy',
        'services': integrations,
        'resources': {
            'memory_mb': round(memory_info.rss / 1024 / 1024, 2),
            'cpu_percent': process.cpu_percent(),
        },
    }

    if not healthy:
        logger.warning(f'Health check failed: {integrations}')

    return ORJSONResponse(status_code=200 if healthy else 503, content=health_data)


@router.get('/health/stats')
def client_stats(state: AppStateDep):
    """Inference client request statistics (latency, in-flight, peak concurrency)."""
    get_stats = getattr(state.model_client, 'get_stats', None)
    return {'model_client': get_stats() if get_stats else {'name': state.model_client.name}}
