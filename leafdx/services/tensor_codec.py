"""
Image Tensor Codec.

Pure functions converting between raw image bytes and the numeric tensors the
segmentation model exchanges, plus the severity score derived from its masks.

Pipeline:
- preprocess: decode (PIL) -> RGB -> resize size x size (cv2 Lanczos) -> /255
- extract_mask: per-cell max over channels -> threshold 0.5 -> {0, 255} mask
- severity: lesion-on-leaf overlap ratio, leaf mask is the denominator
- encode_jpeg: raw RGB / grayscale pixel buffers -> JPEG bytes (cv2)

Tensors are HWC, FP32, normalized to [0, 1].
"""

import io
from dataclasses import dataclass
from enum import Enum

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from leafdx.core.exceptions import IntegrationError, ValidationError
from leafdx.domain.entities import InferenceResult


MASK_THRESHOLD = 0.5
MASK_ON = 255
MASK_OFF = 0
JPEG_QUALITY = 90

CODEC_INTEGRATION = 'tensorflow_serving'


class ColorType(Enum):
    """Pixel layout of a raw buffer: value is the channel count."""

    RGB8 = 3
    L8 = 1


@dataclass
class PreprocessedImage:
    """Result of preprocessing a single image.

    Attributes:
        tensor: [size, size, 3] FP32 normalized [0,1]
        resized_bytes: Raw RGB pixels of the resized image (size * size * 3),
            source of the stored JPEG
    """

    tensor: np.ndarray
    resized_bytes: bytes

    @property
    def size(self) -> int:
        return int(self.tensor.shape[0])

    @property
    def batched(self) -> np.ndarray:
        """Tensor with batch dimension [1, size, size, 3]."""
        return np.expand_dims(self.tensor, axis=0)


@dataclass
class MaskData:
    """Binary mask and mean confidence of its positive cells.

    Attributes:
        binary_mask: [H, W] uint8 with values {0, 255}
        confidence: Mean probability of above-threshold cells, 0.0 if none
    """

    binary_mask: np.ndarray
    confidence: float


def preprocess(image_bytes: bytes, size: int) -> PreprocessedImage:
    """
    Decode, resize and normalize an image for the segmentation model.

    Args:
        image_bytes: Raw encoded image (JPEG, PNG, ...)
        size: Target width and height

    Returns:
        PreprocessedImage with the FP32 tensor and the resized RGB pixels

    Raises:
        ValidationError: If the bytes are not a decodable image
    """
    try:
        pil_img = Image.open(io.BytesIO(image_bytes))
        pil_img.load()
        rgb = np.asarray(pil_img.convert('RGB'), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ValidationError(f'Invalid or corrupted image: {e}') from e

    if rgb.shape[0] == 0 or rgb.shape[1] == 0:
        raise ValidationError('Invalid or corrupted image: empty dimensions')

    resized = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LANCZOS4)
    resized = np.ascontiguousarray(resized, dtype=np.uint8)

    tensor = resized.astype(np.float32) / 255.0

    return PreprocessedImage(tensor=tensor, resized_bytes=resized.tobytes())


def extract_mask(probability_map) -> MaskData:
    """
    Threshold a model probability map into a binary mask.

    Each spatial cell takes the max across channels as its probability.
    Cells strictly above 0.5 become 255, the rest 0.

    Args:
        probability_map: [H, W, C] (or [H, W]) array-like of probabilities

    Returns:
        MaskData with [H, W] uint8 mask and mean above-threshold probability

    Raises:
        IntegrationError: If the map is not 2-D/3-D or has no channels
    """
    try:
        probs = np.asarray(probability_map, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise IntegrationError(CODEC_INTEGRATION, f'Malformed probability map: {e}') from e

    if probs.ndim == 2:
        probs = probs[..., np.newaxis]
    if probs.ndim != 3 or probs.shape[-1] == 0:
        raise IntegrationError(
            CODEC_INTEGRATION, f'Unexpected probability map shape: {probs.shape}'
        )

    cell_probs = probs.max(axis=-1)
    above = cell_probs > MASK_THRESHOLD

    binary_mask = np.where(above, MASK_ON, MASK_OFF).astype(np.uint8)

    count = int(above.sum())
    confidence = float(cell_probs[above].mean()) if count > 0 else 0.0

    return MaskData(binary_mask=binary_mask, confidence=confidence)


def severity(leaf_mask: np.ndarray, lesion_mask: np.ndarray) -> float:
    """
    Percentage of leaf cells also marked as lesion.

    Only the overlapping index range of the two (flattened) masks is compared.

    Returns:
        overlap / leaf * 100, or 0.0 when the leaf mask is empty
    """
    leaf = np.asarray(leaf_mask).ravel()
    lesion = np.asarray(lesion_mask).ravel()
    n = min(leaf.size, lesion.size)

    leaf_cells = leaf[:n] == MASK_ON
    leaf_count = int(leaf_cells.sum())
    if leaf_count == 0:
        return 0.0

    overlap_count = int((leaf_cells & (lesion[:n] == MASK_ON)).sum())
    return overlap_count / leaf_count * 100.0


def encode_jpeg(width: int, height: int, pixel_bytes: bytes, color_type: ColorType) -> bytes:
    """
    Encode a raw pixel buffer as JPEG.

    Args:
        width: Image width
        height: Image height
        pixel_bytes: Row-major pixels, RGB order for ColorType.RGB8
        color_type: Buffer layout

    Raises:
        IntegrationError: On encoder failure (environment problem, not user data)
    """
    channels = color_type.value
    try:
        pixels = np.frombuffer(pixel_bytes, dtype=np.uint8).reshape(height, width, channels).copy()
        if color_type is ColorType.RGB8:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        else:
            pixels = np.ascontiguousarray(pixels[..., 0])

        ok, buffer = cv2.imencode('.jpg', pixels, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    except (ValueError, cv2.error) as e:
        raise IntegrationError(CODEC_INTEGRATION, f'Failed to encode JPEG: {e}') from e

    if not ok:
        raise IntegrationError(CODEC_INTEGRATION, 'Failed to encode JPEG: encoder returned no data')

    return buffer.tobytes()


def build_inference_result(
    leaf_output,
    lesion_output,
    resized_bytes: bytes,
    size: int,
) -> InferenceResult:
    """
    Turn the two model output maps into an InferenceResult.

    Args:
        leaf_output: [H, W, C] leaf probability map (output_0)
        lesion_output: [H, W, C] lesion probability map (output_1)
        resized_bytes: Raw RGB pixels from preprocess()
        size: Model input size

    Returns:
        InferenceResult with JPEG image/masks, confidences and severity
    """
    leaf = extract_mask(leaf_output)
    lesion = extract_mask(lesion_output)
    score = severity(leaf.binary_mask, lesion.binary_mask)

    mask_h, mask_w = leaf.binary_mask.shape
    lesion_h, lesion_w = lesion.binary_mask.shape

    return InferenceResult(
        image=encode_jpeg(size, size, resized_bytes, ColorType.RGB8),
        leaf_mask=encode_jpeg(mask_w, mask_h, leaf.binary_mask.tobytes(), ColorType.L8),
        lesion_mask=encode_jpeg(lesion_w, lesion_h, lesion.binary_mask.tobytes(), ColorType.L8),
        leaf_confidence=leaf.confidence,
        lesion_confidence=lesion.confidence,
        severity=score,
    )
