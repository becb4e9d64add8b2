"""
Bounding Box Geometry

2D box math shared by every pipeline stage: area, center, aspect ratio,
clamping and intersection-over-union.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class BoundingBox:
    """Axis-aligned box in image pixel space (top-left origin)."""
    x: float
    y: float
    width: float
    height: float
    confidence: Optional[float] = None
    class_id: Optional[int] = None
    class_name: Optional[str] = None

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Bounding box dimensions must be non-negative, got {self.width}x{self.height}"
            )

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    @property
    def aspect_ratio(self) -> float:
        """Width over height; 0 for a box with no height."""
        if self.height <= 0:
            return 0.0
        return self.width / self.height

    def iou(self, other: "BoundingBox") -> float:
        """Intersection-over-union with another box."""
        return compute_iou(self, other)

    def clamp(self, image_width: float, image_height: float) -> "BoundingBox":
        """
        Clip the box to the image rectangle.

        Args:
            image_width: Image width in pixels
            image_height: Image height in pixels

        Returns:
            New box lying inside the image (possibly with zero size)
        """
        x0 = min(max(self.x, 0.0), float(image_width))
        y0 = min(max(self.y, 0.0), float(image_height))
        x1 = min(max(self.x_max, 0.0), float(image_width))
        y1 = min(max(self.y_max, 0.0), float(image_height))
        return BoundingBox(
            x=x0,
            y=y0,
            width=max(0.0, x1 - x0),
            height=max(0.0, y1 - y0),
            confidence=self.confidence,
            class_id=self.class_id,
            class_name=self.class_name,
        )

    def pixel_region(self, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
        """
        Integer pixel region covered by the box, clipped to the image.

        Returns:
            Tuple of (x0, y0, x1, y1) with exclusive upper bounds
        """
        x0 = int(min(max(math.floor(self.x), 0), image_width))
        y0 = int(min(max(math.floor(self.y), 0), image_height))
        x1 = int(min(max(math.ceil(self.x_max), 0), image_width))
        y1 = int(min(max(math.ceil(self.y_max), 0), image_height))
        return x0, y0, max(x0, x1), max(y0, y1)

    def normalized(self, image_width: float, image_height: float) -> "BoundingBox":
        """Box expressed as fractions of the image size."""
        if image_width <= 0 or image_height <= 0:
            raise ValueError("Image dimensions must be positive")
        return BoundingBox(
            x=self.x / image_width,
            y=self.y / image_height,
            width=self.width / image_width,
            height=self.height / image_height,
            confidence=self.confidence,
            class_id=self.class_id,
            class_name=self.class_name,
        )


def compute_iou(box_a: BoundingBox, box_b: BoundingBox) -> float:
    """
    Calculate Intersection over Union between two boxes.

    Args:
        box_a: First box
        box_b: Second box

    Returns:
        IoU in [0, 1]; 0 when the union is empty
    """
    inter_w = max(0.0, min(box_a.x_max, box_b.x_max) - max(box_a.x, box_b.x))
    inter_h = max(0.0, min(box_a.y_max, box_b.y_max) - max(box_a.y, box_b.y))
    intersection = inter_w * inter_h

    union = box_a.area + box_b.area - intersection
    if union <= 0:
        return 0.0

    return min(1.0, intersection / union)
