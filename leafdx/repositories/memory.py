"""
In-memory relational repositories.

All repositories share one InMemoryDatabase so deletes can cascade across
tables. Reads return copies assembled from the tables, the way a SQL
repository would build its read model from joins.
"""

import dataclasses
import threading
from uuid import UUID

from leafdx.config.settings import DiagnosticsConfig
from leafdx.core.exceptions import NotFoundError
from leafdx.domain.entities import Image, Label, MarkType, Prediction, PredictionMark, User
from leafdx.domain.ports import (
    ImageRepository,
    LabelRepository,
    MarkTypeRepository,
    PredictionMarkRepository,
    PredictionRepository,
    UserRepository,
)


def default_labels() -> list[Label]:
    """Severity bands; 'healthy' covers only an exact 0."""
    return [
        Label(id=1, name='healthy', min=0.0, max=0.0, weight=0, description='No lesion on leaf'),
        Label(id=2, name='low', min=0.0, max=10.0, weight=1, description='Up to 10% of leaf'),
        Label(id=3, name='mild', min=10.0, max=30.0, weight=2, description='10% to 30% of leaf'),
        Label(id=4, name='severe', min=30.0, max=100.0, weight=3, description='Over 30% of leaf'),
    ]


def default_mark_types() -> list[MarkType]:
    return [
        MarkType(id=1, name=DiagnosticsConfig.LEAF_MASK_TYPE, description='Leaf segmentation mask'),
        MarkType(
            id=2, name=DiagnosticsConfig.LESION_MASK_TYPE, description='Late blight lesion mask'
        ),
    ]


class InMemoryDatabase:
    """Tables keyed by primary key, guarded by one re-entrant lock."""

    def __init__(
        self,
        labels: list[Label] | None = None,
        mark_types: list[MarkType] | None = None,
    ):
        self.lock = threading.RLock()
        self.users: dict[UUID, User] = {}
        self.labels: dict[int, Label] = {
            label.id: label for label in (default_labels() if labels is None else labels)
        }
        self.mark_types: dict[int, MarkType] = {
            mt.id: mt for mt in (default_mark_types() if mark_types is None else mark_types)
        }
        self.images: dict[UUID, Image] = {}
        self.predictions: dict[UUID, Prediction] = {}
        self.marks: dict[UUID, PredictionMark] = {}

    def add_user(self, user: User) -> User:
        with self.lock:
            self.users[user.id] = user
        return user


class InMemoryUserRepository(UserRepository):
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> User | None:
        with self.db.lock:
            return self.db.users.get(user_id)


class InMemoryLabelRepository(LabelRepository):
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def get_by_id(self, label_id: int) -> Label | None:
        with self.db.lock:
            return self.db.labels.get(label_id)

    async def get_by_severity(self, severity: float) -> Label | None:
        with self.db.lock:
            matches = [label for label in self.db.labels.values() if label.contains(severity)]
        if not matches:
            return None
        return min(matches, key=lambda label: (label.weight, label.id))


class InMemoryMarkTypeRepository(MarkTypeRepository):
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def get_by_id(self, mark_type_id: int) -> MarkType | None:
        with self.db.lock:
            return self.db.mark_types.get(mark_type_id)

    async def get_by_name(self, name: str) -> MarkType | None:
        with self.db.lock:
            for mark_type in self.db.mark_types.values():
                if mark_type.name == name:
                    return mark_type
        return None


class InMemoryImageRepository(ImageRepository):
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def create(self, image: Image) -> Image:
        with self.db.lock:
            self.db.images[image.id] = dataclasses.replace(image)
        return image

    async def update(self, image: Image) -> Image:
        with self.db.lock:
            if image.id not in self.db.images:
                raise NotFoundError(f'Image {image.id} not found')
            self.db.images[image.id] = dataclasses.replace(image)
        return image

    async def get_by_id(self, image_id: UUID) -> Image | None:
        with self.db.lock:
            image = self.db.images.get(image_id)
            return dataclasses.replace(image) if image else None


class InMemoryPredictionMarkRepository(PredictionMarkRepository):
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    async def create(self, mark: PredictionMark) -> PredictionMark:
        with self.db.lock:
            if mark.prediction_id is not None and mark.prediction_id not in self.db.predictions:
                raise NotFoundError(f'Prediction {mark.prediction_id} not found')
            self.db.marks[mark.id] = dataclasses.replace(mark)
        return mark

    async def get_by_prediction_id(self, prediction_id: UUID) -> list[PredictionMark]:
        with self.db.lock:
            return [
                dataclasses.replace(m)
                for m in self.db.marks.values()
                if m.prediction_id == prediction_id
            ]


class InMemoryPredictionRepository(PredictionRepository):
    """Predictions with their image and marks joined in on read."""

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def _assemble(self, prediction: Prediction) -> Prediction:
        image = self.db.images.get(prediction.image.id, prediction.image)
        marks = sorted(
            (m for m in self.db.marks.values() if m.prediction_id == prediction.id),
            key=lambda m: m.mark_type.id,
        )
        return dataclasses.replace(
            prediction,
            image=dataclasses.replace(image),
            marks=[dataclasses.replace(m) for m in marks],
        )

    async def create(self, prediction: Prediction) -> Prediction:
        with self.db.lock:
            self.db.predictions[prediction.id] = dataclasses.replace(prediction, marks=[])
        return prediction

    async def get_by_id(self, prediction_id: UUID) -> Prediction | None:
        with self.db.lock:
            prediction = self.db.predictions.get(prediction_id)
            return self._assemble(prediction) if prediction else None

    async def get_by_user_id_and_id(
        self, user_id: UUID, prediction_id: UUID
    ) -> Prediction | None:
        with self.db.lock:
            prediction = self.db.predictions.get(prediction_id)
            if prediction is None or prediction.user.id != user_id:
                return None
            return self._assemble(prediction)

    async def delete(self, prediction_id: UUID) -> Prediction:
        with self.db.lock:
            prediction = self.db.predictions.get(prediction_id)
            if prediction is None:
                raise NotFoundError(f'Prediction {prediction_id} not found')
            deleted = self._assemble(prediction)
            del self.db.predictions[prediction_id]
            for mark in deleted.marks:
                self.db.marks.pop(mark.id, None)
        return deleted
