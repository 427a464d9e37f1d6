"""
Tests for ScreenshotStitcher: output geometry, seam rows, fallbacks.
"""

import io

import numpy as np
import pytest
from PIL import Image

from screenshot_stitcher import ScreenshotStitcher, round_half_up


def banded_image(width: int, height: int, seed: int) -> Image.Image:
    """Every row has a distinct colour so seams can be checked exactly"""
    rows = np.arange(height, dtype=np.int64)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[:, :, 0] = ((rows * 7 + seed * 31) % 256)[:, None]
    arr[:, :, 1] = ((rows * 13 + seed * 17) % 256)[:, None]
    arr[:, :, 2] = seed % 256
    return Image.fromarray(arr)


@pytest.mark.parametrize("deltas,scale", [
    ([400], 1.0),
    ([400, 380], 1.0),
    ([400, 380], 2.0),
    ([333.5, 120, 7], 1.5),
])
def test_output_height_is_first_height_plus_scaled_deltas(deltas, scale):
    viewport_width = 200
    width = int(viewport_width * scale)
    height = int(400 * scale)
    images = [banded_image(width, height, seed=i) for i in range(len(deltas) + 1)]

    stitched = ScreenshotStitcher().stitch(images, deltas, viewport_width)

    expected = height + sum(round_half_up(d * scale) for d in deltas)
    assert stitched.size == (width, expected)


def test_seam_rows_come_from_bottom_of_each_capture():
    images = [banded_image(50, 100, seed=i) for i in range(3)]
    deltas = [60, 25]

    stitched = np.asarray(ScreenshotStitcher().stitch(images, deltas, viewport_width=50))
    sources = [np.asarray(img) for img in images]

    # First capture is copied whole
    assert np.array_equal(stitched[:100], sources[0])
    # Then the bottom 60 rows of capture 2, then the bottom 25 rows of capture 3
    assert np.array_equal(stitched[100:160], sources[1][40:])
    assert np.array_equal(stitched[160:185], sources[2][75:])
    assert stitched.shape[0] == 185


def test_single_image_without_deltas_is_returned_unchanged():
    image = banded_image(80, 120, seed=3)
    stitched = ScreenshotStitcher().stitch([image], [], viewport_width=80)
    assert np.array_equal(np.asarray(stitched), np.asarray(image))


def test_accepts_encoded_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), (10, 20, 30)).save(buf, format="PNG")
    data = buf.getvalue()

    stitched = ScreenshotStitcher().stitch([data, data], [10], viewport_width=40)
    assert stitched.size == (40, 40)


def test_decode_failure_returns_none():
    good = banded_image(40, 30, seed=1)
    assert ScreenshotStitcher().stitch([good, b"not an image"], [10], viewport_width=40) is None


def test_mismatched_delta_count_returns_none():
    images = [banded_image(40, 30, seed=i) for i in range(3)]
    assert ScreenshotStitcher().stitch(images, [10], viewport_width=40) is None


def test_delta_larger_than_capture_is_clamped():
    images = [banded_image(40, 30, seed=i) for i in range(2)]
    stitched = ScreenshotStitcher().stitch(images, [100], viewport_width=40)
    assert stitched.size == (40, 60)


def test_stitch_to_jpeg_produces_decodable_jpeg():
    images = [banded_image(40, 30, seed=i) for i in range(2)]
    data = ScreenshotStitcher(jpeg_quality=70).stitch_to_jpeg(images, [20], viewport_width=40)
    decoded = Image.open(io.BytesIO(data))
    assert decoded.format == "JPEG"
    assert decoded.size == (40, 50)


def test_round_half_up_matches_browser_rounding():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2
