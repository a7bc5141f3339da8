"""
Capability interfaces consumed by the diagnostics pipeline.

Inference and blob storage are integrations (they have a name and a health
check). The relational ports cover lookups, creates, the image update and
delete-then-return.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from leafdx.domain.entities import (
    Image,
    InferenceResult,
    Label,
    MarkType,
    Prediction,
    PredictionMark,
    User,
)


# =============================================================================
# Integrations
# =============================================================================
class IntegrationClient(ABC):
    """Base for external integrations."""

    name: str = 'integration'

    @abstractmethod
    async def health_check(self) -> None:
        """Return if reachable, raise an IntegrationError otherwise."""

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release network resources."""


class ModelPredictionClient(IntegrationClient):
    """Inference capability: image bytes in, masks and severity out."""

    @abstractmethod
    async def predict(self, image_bytes: bytes) -> InferenceResult: ...

    @property
    @abstractmethod
    def image_size(self) -> int: ...


class BlobStorageClient(IntegrationClient):
    @abstractmethod
    async def upload(self, content: bytes, destination: str) -> str:
        """Store content and return its URL or path."""

    @abstractmethod
    async def download(self, source: str) -> bytes: ...

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def delete_directory(self, prefix: str) -> None:
        """Delete every blob under prefix."""


# =============================================================================
# Repositories
# =============================================================================
class UserRepository(ABC):
    @abstractmethod
    async def get_by_id(self, user_id: UUID) -> User | None: ...


class LabelRepository(ABC):
    @abstractmethod
    async def get_by_id(self, label_id: int) -> Label | None: ...

    @abstractmethod
    async def get_by_severity(self, severity: float) -> Label | None:
        """Band containing severity, lowest weight first."""


class MarkTypeRepository(ABC):
    @abstractmethod
    async def get_by_id(self, mark_type_id: int) -> MarkType | None: ...

    @abstractmethod
    async def get_by_name(self, name: str) -> MarkType | None: ...


class ImageRepository(ABC):
    @abstractmethod
    async def create(self, image: Image) -> Image: ...

    @abstractmethod
    async def update(self, image: Image) -> Image: ...


class PredictionRepository(ABC):
    @abstractmethod
    async def create(self, prediction: Prediction) -> Prediction: ...

    @abstractmethod
    async def get_by_user_id_and_id(
        self, user_id: UUID, prediction_id: UUID
    ) -> Prediction | None: ...

    @abstractmethod
    async def delete(self, prediction_id: UUID) -> Prediction:
        """Delete and return the removed prediction."""


class PredictionMarkRepository(ABC):
    @abstractmethod
    async def create(self, mark: PredictionMark) -> PredictionMark: ...
