"""
Tests for the image normalizer.
"""

import base64

import cv2
import numpy as np
import pytest

from engines.face_verification.errors import DecodeError
from engines.face_verification.normalizer import (
    NormalizedImage, center_crop, decode_image, equalize_histogram, normalize, to_luminance,
)


def _gradient(height=80, width=120):
    row = np.linspace(0, 255, width).astype(np.uint8)
    gray = np.tile(row, (height, 1))
    return np.dstack([gray, gray, gray])


def _png_bytes(frame):
    ok, buf = cv2.imencode('.png', frame)
    assert ok
    return buf.tobytes()


class TestCenterCrop:
    def test_landscape(self):
        frame = np.zeros((60, 100, 3), dtype=np.uint8)
        frame[:, 20:80] = 255
        crop = center_crop(frame)
        assert crop.shape == (60, 60, 3)
        assert crop.min() == 255

    def test_portrait(self):
        frame = np.zeros((100, 40), dtype=np.uint8)
        frame[30:70, :] = 7
        crop = center_crop(frame)
        assert crop.shape == (40, 40)
        assert (crop == 7).all()


class TestLuminance:
    def test_weights_bgr_order(self):
        red = np.zeros((1, 1, 3), dtype=np.uint8)
        red[0, 0] = (0, 0, 255)  # BGR
        assert to_luminance(red)[0, 0] == 76   # round(0.299 * 255)

        green = np.zeros((1, 1, 3), dtype=np.uint8)
        green[0, 0] = (0, 255, 0)
        assert to_luminance(green)[0, 0] == 150  # round(0.587 * 255)

    def test_white_stays_in_range(self):
        white = np.full((2, 2, 3), 255, dtype=np.uint8)
        assert (to_luminance(white) == 255).all()

    def test_grayscale_passthrough(self):
        gray = np.full((3, 3), 42, dtype=np.uint8)
        assert (to_luminance(gray) == 42).all()


class TestHistogramEqualization:
    def test_constant_image_unchanged(self):
        flat = np.full((64, 64), 123, dtype=np.uint8)
        result = equalize_histogram(flat)
        assert (result == 123).all()

    def test_two_levels_stretch_to_full_range(self):
        gray = np.full((4, 4), 100, dtype=np.uint8)
        gray[:, 2:] = 150
        result = equalize_histogram(gray)
        assert set(np.unique(result)) == {0, 255}
        assert (result[:, :2] == 0).all()
        assert (result[:, 2:] == 255).all()

    def test_lookup_table_formula(self):
        gray = np.array([[0, 1], [1, 2]], dtype=np.uint8)
        # cdf = [1, 3, 4], cdf_min = 1, n = 4
        expected = np.array([[0, 170], [170, 255]], dtype=np.uint8)
        assert (equalize_histogram(gray) == expected).all()


class TestDecode:
    def test_png_bytes(self):
        frame = decode_image(_png_bytes(_gradient()))
        assert frame.shape == (80, 120, 3)

    def test_data_url(self):
        encoded = base64.b64encode(_png_bytes(_gradient())).decode()
        frame = decode_image(f"data:image/png;base64,{encoded}")
        assert frame.shape == (80, 120, 3)

    def test_plain_base64(self):
        encoded = base64.b64encode(_png_bytes(_gradient())).decode()
        assert decode_image(encoded).shape == (80, 120, 3)

    def test_array_passthrough(self):
        frame = _gradient()
        assert decode_image(frame) is frame

    def test_garbage_bytes(self):
        with pytest.raises(DecodeError):
            decode_image(b'not an image at all')

    def test_invalid_base64(self):
        with pytest.raises(DecodeError):
            decode_image('data:image/png;base64,@@@@')

    def test_empty_payload(self):
        with pytest.raises(DecodeError):
            decode_image(b'')

    def test_empty_array(self):
        with pytest.raises(DecodeError):
            decode_image(np.zeros((0, 0, 3), dtype=np.uint8))


class TestNormalize:
    def test_output_shape_and_type(self):
        result = normalize(_gradient())
        assert isinstance(result, NormalizedImage)
        assert result.size == 64
        assert result.pixels.shape == (64, 64)
        assert result.pixels.dtype == np.uint8

    def test_custom_size(self):
        assert normalize(_gradient(), size=32).pixels.shape == (32, 32)

    def test_deterministic(self):
        data = _png_bytes(_gradient())
        first = normalize(data)
        second = normalize(data)
        assert np.array_equal(first.pixels, second.pixels)

    def test_equalized_range(self):
        result = normalize(_gradient())
        assert result.pixels.min() == 0
        assert result.pixels.max() == 255

    def test_uniform_color(self):
        frame = np.full((50, 70, 3), (10, 200, 90), dtype=np.uint8)
        result = normalize(frame)
        assert len(np.unique(result.pixels)) == 1

    def test_undecodable_raises(self):
        with pytest.raises(DecodeError):
            normalize(b'\x00\x01\x02')
