"""
Raster Helpers

Image normalization, cropping and tensor preparation shared by the
inference stages.
"""

import cv2
import numpy as np
from typing import Optional, Sequence

from ..exceptions import InvalidInputError
from ..geometry import BoundingBox

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


def to_rgb_uint8(image: np.ndarray) -> np.ndarray:
    """
    Normalize an input image to a contiguous RGB uint8 array.

    Accepts grayscale (H, W), RGB (H, W, 3) or RGBA (H, W, 4) arrays,
    either uint8 or floating point in [0, 1].

    Args:
        image: Input image

    Returns:
        (H, W, 3) uint8 RGB image
    """
    if image is None:
        raise InvalidInputError("Map image is None")
    if not isinstance(image, np.ndarray):
        raise InvalidInputError(f"Map image must be a numpy array, got {type(image).__name__}")
    if image.size == 0 or image.ndim not in (2, 3):
        raise InvalidInputError(f"Map image is empty or malformed: shape={image.shape}")
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        raise InvalidInputError(f"Unsupported channel count: {image.shape[2]}")

    if image.dtype != np.uint8:
        scaled = image.astype(np.float32)
        if scaled.size and float(np.nanmax(scaled)) <= 1.0:
            scaled = scaled * 255.0
        image = np.clip(np.nan_to_num(scaled), 0, 255).astype(np.uint8)

    if image.ndim == 2 or image.shape[2] == 1:
        image = cv2.cvtColor(image.reshape(image.shape[0], image.shape[1]), cv2.COLOR_GRAY2RGB)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)

    return np.ascontiguousarray(image)


def enhance_contrast(image: np.ndarray, gain: float = 1.2) -> np.ndarray:
    """
    Stretch contrast around mid-grey.

    Args:
        image: RGB uint8 image
        gain: Contrast gain (1.0 leaves the image unchanged)

    Returns:
        Contrast-enhanced copy of the image
    """
    # (p - 128) * gain + 128, saturated to [0, 255]
    return cv2.addWeighted(image, gain, image, 0.0, 128.0 * (1.0 - gain))


def crop_region(image: np.ndarray, box: BoundingBox) -> np.ndarray:
    """
    Crop the pixel region covered by a box.

    Always returns at least a 1x1 region so downstream resizing is valid.
    """
    height, width = image.shape[:2]
    x0, y0, x1, y1 = box.pixel_region(width, height)

    x0 = min(x0, width - 1)
    y0 = min(y0, height - 1)
    x1 = max(x1, x0 + 1)
    y1 = max(y1, y0 + 1)

    return image[y0:y1, x0:x1]


def image_to_tensor(image: np.ndarray,
                    size: int,
                    mean: Optional[Sequence[float]] = None,
                    std: Optional[Sequence[float]] = None) -> np.ndarray:
    """
    Convert an RGB image into a square [1, 3, size, size] float32 tensor.

    Args:
        image: RGB uint8 image
        size: Target side length
        mean: Optional per-channel mean for normalization
        std: Optional per-channel standard deviation for normalization

    Returns:
        CHW float32 tensor with a batch dimension
    """
    resized = cv2.resize(image, (size, size), interpolation=cv2.INTER_LINEAR)
    tensor = resized.astype(np.float32) / 255.0

    if mean is not None and std is not None:
        tensor = (tensor - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)

    # HWC -> CHW
    return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...])


def squeeze_to_2d(array: np.ndarray) -> np.ndarray:
    """
    Drop leading singleton dimensions from a model raster output.

    Raises:
        ValueError: If the array cannot be reduced to two dimensions
    """
    squeezed = np.asarray(array, dtype=np.float32)
    while squeezed.ndim > 2 and squeezed.shape[0] == 1:
        squeezed = squeezed[0]
    if squeezed.ndim > 2:
        # Multi-mask output: keep the first mask
        squeezed = squeezed.reshape((-1,) + squeezed.shape[-2:])[0]
    if squeezed.ndim != 2 or squeezed.size == 0:
        raise ValueError(f"Expected a 2D raster output, got shape {np.shape(array)}")
    return squeezed


def resize_field(field: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize a single-channel float field to (height, width)."""
    width = max(1, int(width))
    height = max(1, int(height))
    if field.shape == (height, width):
        return field.astype(np.float32, copy=True)
    return cv2.resize(field.astype(np.float32), (width, height), interpolation=cv2.INTER_LINEAR)
