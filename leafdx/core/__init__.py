"""
Core module with exception handling, logging and dependency wiring.

Import FastAPI dependencies from leafdx.core.dependencies directly; it pulls
in the service layer, which itself depends on this package.
"""

from leafdx.core.exceptions import (
    AppError,
    ForbiddenError,
    IntegrationError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
    NotFoundError,
    UnknownError,
    ValidationError,
)
from leafdx.core.logging import configure_logging, get_logger


__all__ = [
    'AppError',
    'ForbiddenError',
    'IntegrationError',
    'IntegrationTimeoutError',
    'IntegrationUnavailableError',
    'NotFoundError',
    'UnknownError',
    'ValidationError',
    'configure_logging',
    'get_logger',
]
