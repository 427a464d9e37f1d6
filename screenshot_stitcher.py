"""
Betaflight Backup - Screenshot Stitcher
Combines viewport captures taken while scrolling into one tall image.

The scroll container reports exactly how far it moved between two
captures, so no overlap detection is needed: every capture after the first
contributes only its bottom ``round(delta * device_scale)`` rows, the
content that scrolled into view. Everything above that strip duplicates
pixels already placed.

The stitcher is pure: it decodes, composes and returns an image, and
leaves saving and fallbacks to the caller.
"""

import io
import logging
import math
from typing import List, Optional, Sequence, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, Image.Image]


def round_half_up(value: float) -> int:
    """Round like the browser's Math.round (0.5 goes up)"""
    return int(math.floor(value + 0.5))


class ScreenshotStitcher:
    """
    Stitches scrolled viewport captures vertically.

    Output height = height(first) + sum(round(delta * scale)), where
    scale = first.width / viewport_width accounts for high-DPI captures.
    """

    def __init__(self, jpeg_quality: int = 85):
        self.jpeg_quality = jpeg_quality

    @staticmethod
    def decode(data: ImageInput) -> Image.Image:
        """Decode capture bytes (or pass a PIL image through) as RGB"""
        if isinstance(data, Image.Image):
            img = data
        else:
            img = Image.open(io.BytesIO(data))
            img.load()
        if img.mode != "RGB":
            img = img.convert("RGB")
        return img

    def stitch(
        self,
        images: Sequence[ImageInput],
        scroll_deltas: Sequence[float],
        viewport_width: float,
    ) -> Optional[Image.Image]:
        """
        Compose captures into one image.

        Args:
            images: Captures in scroll order (bytes or PIL images)
            scroll_deltas: Measured scroll distance in CSS pixels between
                capture i and i+1 (len(images) - 1 entries)
            viewport_width: Logical (CSS) viewport width

        Returns:
            Stitched PIL image, or None if any capture fails to decode or the
            inputs are inconsistent
        """
        if not images:
            return None

        if len(scroll_deltas) != len(images) - 1:
            logger.warning(f"[Stitcher] Expected {len(images) - 1} scroll deltas, got {len(scroll_deltas)}")
            return None

        try:
            decoded = [self.decode(img) for img in images]
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.error(f"[Stitcher] Decode failed: {e}")
            return None

        first = decoded[0]
        width, height = first.size

        if len(decoded) == 1:
            return first

        if any(img.size[0] != width for img in decoded[1:]):
            logger.warning(f"[Stitcher] Capture widths differ: {[img.size[0] for img in decoded]}")
            return None

        scale = width / viewport_width if viewport_width and viewport_width > 0 else 1.0

        strips: List[np.ndarray] = [np.asarray(first)]
        for i, delta in enumerate(scroll_deltas):
            img = decoded[i + 1]
            img_height = img.size[1]
            new_px = min(max(round_half_up(delta * scale), 0), img_height)
            if new_px == 0:
                continue
            # Only the bottom new_px rows are newly revealed content
            strips.append(np.asarray(img)[img_height - new_px:, :, :])

        stitched = np.vstack(strips)
        logger.debug(
            f"[Stitcher] {len(decoded)} captures -> {width}x{stitched.shape[0]}px (scale={scale:.2f})"
        )
        return Image.fromarray(stitched)

    def encode_jpeg(self, image: Image.Image) -> bytes:
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=self.jpeg_quality)
        return output.getvalue()

    def stitch_to_jpeg(
        self,
        images: Sequence[ImageInput],
        scroll_deltas: Sequence[float],
        viewport_width: float,
    ) -> Optional[bytes]:
        """stitch() followed by JPEG encoding; None when stitching fails"""
        stitched = self.stitch(images, scroll_deltas, viewport_width)
        if stitched is None:
            return None
        try:
            return self.encode_jpeg(stitched)
        except (OSError, ValueError) as e:
            logger.error(f"[Stitcher] Encode failed: {e}")
            return None
