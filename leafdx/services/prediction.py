"""
Prediction Orchestrator.

Sequences one diagnostic run: inference, artifact upload, label resolution,
and creation of the linked Image / Prediction / PredictionMark records.
Each step either succeeds or aborts the whole run with its own error.

Artifact layout (one directory per run, second precision):
    {user_id}/images/{YYYY-mm-dd_HH-MM-SS}/image.jpg
    {user_id}/images/{YYYY-mm-dd_HH-MM-SS}/leaf_mask.jpg
    {user_id}/images/{YYYY-mm-dd_HH-MM-SS}/lt_blg_lesion_mask.jpg

The relational creates are not transactional: a failure after the Image
insert leaves the rows created so far in place.
"""

import posixpath
import time
from uuid import UUID

from leafdx.config.settings import DiagnosticsConfig
from leafdx.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnknownError,
)
from leafdx.core.logging import get_logger
from leafdx.domain.entities import (
    Image,
    Label,
    MarkType,
    Prediction,
    PredictionMark,
    RawPrediction,
    RawPredictionMark,
    utcnow,
)
from leafdx.domain.ports import (
    BlobStorageClient,
    ImageRepository,
    LabelRepository,
    MarkTypeRepository,
    ModelPredictionClient,
    PredictionMarkRepository,
    PredictionRepository,
    UserRepository,
)
from leafdx.utils.concurrency import join_all


logger = get_logger(__name__)

ARTIFACT_TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def artifact_prefix(user_id: UUID, now=None) -> str:
    """Directory shared by every artifact of one prediction run."""
    now = now or utcnow()
    return f'{user_id}/images/{now.strftime(ARTIFACT_TIMESTAMP_FORMAT)}'


class PredictionService:
    """
    Orchestrates inference and persistence of leaf diagnoses.

    Usage:
        service = PredictionService(
            prediction_repo, user_repo, image_repo, label_repo,
            mark_repo, mark_type_repo, storage_client, model_client,
        )
        prediction = await service.predict_and_create(user_id, data, 'leaf.png')
    """

    def __init__(
        self,
        prediction_repo: PredictionRepository,
        user_repo: UserRepository,
        image_repo: ImageRepository,
        label_repo: LabelRepository,
        mark_repo: PredictionMarkRepository,
        mark_type_repo: MarkTypeRepository,
        storage_client: BlobStorageClient,
        model_client: ModelPredictionClient,
    ):
        self.prediction_repo = prediction_repo
        self.user_repo = user_repo
        self.image_repo = image_repo
        self.label_repo = label_repo
        self.mark_repo = mark_repo
        self.mark_type_repo = mark_type_repo
        self.storage_client = storage_client
        self.model_client = model_client

    # =========================================================================
    # Shared steps
    # =========================================================================
    async def _resolve_label(self, severity: float) -> Label:
        label = await self.label_repo.get_by_severity(severity)
        if label is None:
            raise UnknownError(f'No label found for severity {severity:.2f}')
        return label

    async def _resolve_mark_types(self) -> tuple[MarkType, MarkType]:
        leaf_type, lesion_type = await join_all(
            self.mark_type_repo.get_by_name(DiagnosticsConfig.LEAF_MASK_TYPE),
            self.mark_type_repo.get_by_name(DiagnosticsConfig.LESION_MASK_TYPE),
        )
        if leaf_type is None:
            raise UnknownError(f'Mark type {DiagnosticsConfig.LEAF_MASK_TYPE} not found')
        if lesion_type is None:
            raise UnknownError(f'Mark type {DiagnosticsConfig.LESION_MASK_TYPE} not found')
        return leaf_type, lesion_type

    # =========================================================================
    # Produced capability
    # =========================================================================
    async def predict_and_create(
        self, user_id: UUID, image_bytes: bytes, filename: str
    ) -> Prediction:
        """
        Run inference on an uploaded leaf image and persist the diagnosis.

        Args:
            user_id: Requesting user
            image_bytes: Encoded image as uploaded
            filename: Original upload filename, stored on the Image record

        Returns:
            Prediction with its Image (back-linked) and both masks attached

        Raises:
            NotFoundError: Unknown user
            ValidationError: Undecodable image
            UnknownError: No label band or mark type configured
            IntegrationError: Inference or storage failure (incl. timeout/unavailable)
        """
        start_time = time.perf_counter()

        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError(f'User {user_id} not found')

        result = await self.model_client.predict(image_bytes)

        prefix = artifact_prefix(user.id)
        image_path = f'{prefix}/{DiagnosticsConfig.IMAGE_FILENAME}'
        leaf_mask_path = f'{prefix}/{DiagnosticsConfig.LEAF_MASK_FILENAME}'
        lesion_mask_path = f'{prefix}/{DiagnosticsConfig.LESION_MASK_FILENAME}'

        await self.storage_client.upload(result.image, image_path)

        severity = clamp(result.severity, 0.0, 100.0)
        label = await self._resolve_label(severity)

        await join_all(
            self.storage_client.upload(result.leaf_mask, leaf_mask_path),
            self.storage_client.upload(result.lesion_mask, lesion_mask_path),
        )

        leaf_type, lesion_type = await self._resolve_mark_types()
        marks = [
            PredictionMark(
                data={'filepath': leaf_mask_path, 'filename': DiagnosticsConfig.LEAF_MASK_FILENAME},
                mark_type=leaf_type,
            ),
            PredictionMark(
                data={
                    'filepath': lesion_mask_path,
                    'filename': DiagnosticsConfig.LESION_MASK_FILENAME,
                },
                mark_type=lesion_type,
            ),
        ]

        image = await self.image_repo.create(
            Image(user_id=user.id, filename=filename, filepath=image_path)
        )

        presence = clamp(result.lesion_confidence, 0.0, 1.0)
        prediction = await self.prediction_repo.create(
            Prediction(
                user=user,
                image=image,
                label=label,
                presence_confidence=presence,
                absence_confidence=clamp(1.0 - presence, 0.0, 1.0),
                severity=severity,
            )
        )

        image.prediction_id = prediction.id
        for mark in marks:
            mark.prediction_id = prediction.id

        await join_all(
            self.image_repo.update(image),
            *(self.mark_repo.create(mark) for mark in marks),
        )

        prediction.image = image
        prediction.marks = marks

        logger.info(
            'prediction_created',
            prediction_id=str(prediction.id),
            user_id=str(user.id),
            label=label.name,
            severity=round(severity, 2),
            artifact_prefix=prefix,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return prediction

    async def delete(self, user_id: UUID, prediction_id: UUID) -> Prediction:
        """
        Delete a prediction, then clean up its artifact directory.

        Storage cleanup is best effort: a failure is logged and the deleted
        Prediction is still returned.

        Raises:
            NotFoundError: No such prediction for this user
        """
        prediction = await self.prediction_repo.get_by_user_id_and_id(user_id, prediction_id)
        if prediction is None:
            raise NotFoundError('Prediction not found')

        deleted = await self.prediction_repo.delete(prediction.id)

        directory = posixpath.dirname(deleted.image.filepath.replace('\\', '/'))
        if directory:
            try:
                await self.storage_client.delete_directory(directory)
            except Exception as e:
                logger.error(
                    'blob_directory_delete_failed',
                    prediction_id=str(deleted.id),
                    directory=directory,
                    error=str(e),
                    exc_info=True,
                )

        logger.info('prediction_deleted', prediction_id=str(deleted.id), user_id=str(user_id))
        return deleted

    async def predict(self, image_bytes: bytes, filename: str) -> RawPrediction:
        """
        Anonymous inference: nothing is uploaded or persisted.

        Returns:
            RawPrediction carrying the JPEG image and both masks inline
        """
        result = await self.model_client.predict(image_bytes)

        severity = clamp(result.severity, 0.0, 100.0)
        label = await self._resolve_label(severity)
        presence = clamp(result.lesion_confidence, 0.0, 1.0)

        logger.info('raw_prediction', label=label.name, severity=round(severity, 2))

        return RawPrediction(
            image=result.image,
            filename=filename,
            label=label,
            presence_confidence=presence,
            absence_confidence=clamp(1.0 - presence, 0.0, 1.0),
            severity=severity,
            marks=[
                RawPredictionMark(data=result.leaf_mask, mark_type=DiagnosticsConfig.LEAF_MASK_TYPE),
                RawPredictionMark(
                    data=result.lesion_mask, mark_type=DiagnosticsConfig.LESION_MASK_TYPE
                ),
            ],
        )

    async def get_by_user_id_and_id(
        self, user_id: UUID, prediction_id: UUID
    ) -> Prediction | None:
        return await self.prediction_repo.get_by_user_id_and_id(user_id, prediction_id)

    async def read_blob(self, user_id: UUID, path: str) -> bytes:
        """
        Download an artifact owned by user_id.

        Raises:
            ForbiddenError: path is outside the user's directory
            NotFoundError: No such blob
        """
        normalized = posixpath.normpath(path.lstrip('/'))
        if not normalized.startswith(f'{user_id}/'):
            raise ForbiddenError()
        return await self.storage_client.download(normalized)
