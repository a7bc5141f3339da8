"""
FastAPI routers for the leaf diagnostics API.

Routers:
- health: Service info, integration health checks and client statistics
- predictions: Per-user diagnoses, deletion and artifact download
- public: Anonymous diagnosis (nothing stored)
"""

from leafdx.routers.health import router as health_router
from leafdx.routers.predictions import router as predictions_router
from leafdx.routers.public import router as public_router


__all__ = [
    'health_router',
    'predictions_router',
    'public_router',
]
