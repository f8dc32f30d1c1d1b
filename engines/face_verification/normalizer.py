"""
Image Normalizer: decoding and deterministic preprocessing.

Pipeline: decode → centre square crop → area resize to N×N →
luminance (ITU-R 601 weights) → histogram equalization.
Same input bytes always give the same NormalizedImage.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np

from engines.face_verification.errors import DecodeError

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 64

ImageInput = Union[bytes, bytearray, str, np.ndarray]


@dataclass(frozen=True, eq=False)
class NormalizedImage:
    """Square grid of 8-bit luminance samples."""
    pixels: np.ndarray  # (size, size) uint8

    @property
    def size(self) -> int:
        return int(self.pixels.shape[0])


def _strip_data_url(raw: str) -> str:
    # "data:image/jpeg;base64,...." → "...."
    if raw.startswith('data:') and ',' in raw:
        return raw.split(',', 1)[1]
    return raw


def decode_image(image: ImageInput) -> np.ndarray:
    """
    Decode an encoded image into a BGR array (OpenCV channel order).

    Args:
        image: encoded bytes, a base64 string / data URL, or an already
            decoded HxW or HxWx3 uint8 array (passed through)

    Returns:
        HxWx3 (or HxW for grayscale input arrays) uint8 numpy array

    Raises:
        DecodeError: if the input cannot be decoded
    """
    if isinstance(image, np.ndarray):
        if image.ndim not in (2, 3) or image.size == 0:
            raise DecodeError(f"Unsupported image array shape {image.shape}")
        return image

    if isinstance(image, str):
        try:
            image = base64.b64decode(_strip_data_url(image.strip()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 image data: {e}") from e

    if not isinstance(image, (bytes, bytearray)) or not image:
        raise DecodeError("Empty or unsupported image payload")

    nparr = np.frombuffer(bytes(image), np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        raise DecodeError("Image bytes could not be decoded")
    return frame


async def decode_image_async(image: ImageInput) -> np.ndarray:
    """Decode in a worker thread; completes (or raises DecodeError) before extraction starts."""
    return await asyncio.to_thread(decode_image, image)


def center_crop(frame: np.ndarray) -> np.ndarray:
    """Largest centred square of side min(width, height)."""
    height, width = frame.shape[:2]
    side = min(width, height)
    top = (height - side) // 2
    left = (width - side) // 2
    return frame[top:top + side, left:left + side]


def to_luminance(frame: np.ndarray) -> np.ndarray:
    """L = 0.299R + 0.587G + 0.114B, clamped to [0, 255] and rounded."""
    if frame.ndim == 2:
        return frame.astype(np.uint8)
    pixels = frame.astype(np.float64)
    # OpenCV arrays are BGR
    blue, green, red = pixels[..., 0], pixels[..., 1], pixels[..., 2]
    luminance = 0.299 * red + 0.587 * green + 0.114 * blue
    return np.clip(np.floor(luminance + 0.5), 0, 255).astype(np.uint8)


def equalize_histogram(gray: np.ndarray) -> np.ndarray:
    """
    Histogram equalization through a 256-entry lookup table.

    lut[v] = round((cdf[v] - cdf_min) * 255 / (pixel_count - cdf_min))

    A constant image (pixel_count == cdf_min) is returned unchanged.
    """
    pixel_count = gray.size
    if pixel_count == 0:
        return gray

    histogram = np.bincount(gray.ravel(), minlength=256)
    cdf = np.cumsum(histogram)
    cdf_min = int(cdf[np.nonzero(cdf)[0][0]])

    denominator = pixel_count - cdf_min
    if denominator <= 0:
        return gray.copy()

    lut = np.floor((cdf - cdf_min) * 255.0 / denominator + 0.5)
    lut = np.clip(lut, 0, 255).astype(np.uint8)
    return lut[gray]


def normalize(image: ImageInput, size: int = DEFAULT_SIZE) -> NormalizedImage:
    """
    Decode (if needed) and normalize an image to a size×size luminance grid.

    Raises:
        DecodeError: if the image cannot be decoded
    """
    frame = decode_image(image)
    square = center_crop(frame)
    resized = cv2.resize(square, (size, size), interpolation=cv2.INTER_AREA)
    gray = to_luminance(resized)
    return NormalizedImage(pixels=equalize_histogram(gray))
