"""
Application error taxonomy.

Every failure that crosses a service boundary is one of these. Each class
carries the HTTP status and stable code the web layer reports.
"""


class AppError(Exception):
    """Base class for all application errors."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def public_message(self) -> str:
        """Message safe to show to API clients."""
        return self.message


class ValidationError(AppError):
    """Malformed input, e.g. an image that cannot be decoded."""

    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'


class ForbiddenError(AppError):
    status_code = 403
    code = 'FORBIDDEN'

    def __init__(self, message: str = 'Unauthorized access'):
        super().__init__(message)


class UnknownError(AppError):
    """
    Server-side misconfiguration (missing label band, missing mark type).

    Reported as a 500 but kept apart from genuine internal faults.
    """

    status_code = 500
    code = 'INTERNAL_ERROR'

    def public_message(self) -> str:
        return 'Unexpected error'


class IntegrationError(AppError):
    """Protocol or parse failure against an external integration."""

    status_code = 502
    code = 'INTEGRATION_ERROR'

    def __init__(self, integration: str, message: str):
        super().__init__(message)
        self.integration = integration

    def __str__(self) -> str:
        return f'Integration error ({self.integration}): {self.message}'

    def public_message(self) -> str:
        return f'External service error: {self.message}'


class IntegrationTimeoutError(IntegrationError):
    status_code = 504
    code = 'INTEGRATION_TIMEOUT'

    def __str__(self) -> str:
        return f'Integration timeout ({self.integration}): {self.message}'

    def public_message(self) -> str:
        return self.message


class IntegrationUnavailableError(IntegrationError):
    """Connection refused or host unreachable."""

    status_code = 503
    code = 'INTEGRATION_UNAVAILABLE'

    def __str__(self) -> str:
        return f'Integration unavailable ({self.integration}): {self.message}'

    def public_message(self) -> str:
        return self.message
