"""
Extraction backends: turn an image into a tagged Embedding.

    GridBackend        64-d z-scored cell means, MSE           (sync, deterministic)
    PeriocularBackend  128-d geometry + eye texture, cosine    (sync, deterministic)
    InsightFaceBackend 512-d ArcFace embedding, euclidean      (async, fallible)

All backends share `await backend.extract(image)` so the matcher and the
service never depend on a concrete backend type.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Union

import cv2
import numpy as np

from engines.face_verification.embedding import Embedding
from engines.face_verification.errors import (
    FaceVerificationError, NoFaceDetected, ProcessingError,
)
from engines.face_verification.model_manager import ModelLifecycle
from engines.face_verification.normalizer import (
    DEFAULT_SIZE, ImageInput, NormalizedImage, decode_image_async, normalize,
)
from engines.face_verification.scorer import MatchPolicy, Metric

logger = logging.getLogger(__name__)

EPSILON = 1e-6


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm < EPSILON:
        return np.zeros_like(vector)
    return vector / norm


def z_score(vector: np.ndarray) -> np.ndarray:
    std = float(np.std(vector))
    if std < EPSILON:
        return np.zeros_like(vector)
    return (vector - float(np.mean(vector))) / std


class ExtractionBackend(ABC):
    """Common interface for all extraction backends."""

    name: str = ''
    dimension: int = 0

    def __init__(self, policy: MatchPolicy):
        self.policy = policy

    @abstractmethod
    async def extract(self, image: Union[ImageInput, NormalizedImage]) -> Embedding:
        """
        Raises:
            DecodeError, NoFaceDetected, ProcessingError, ModelLoadFailure
        """

    @abstractmethod
    def finalize(self, vector: np.ndarray) -> np.ndarray:
        """Bring an aggregated (e.g. averaged) vector back into this backend's value range."""

    def get_stats(self) -> dict:
        return {
            'backend': self.name,
            'dimension': self.dimension,
            **self.policy.to_dict(),
        }


class _NormalizingBackend(ExtractionBackend):
    """Backends that work on the N×N luminance grid."""

    def __init__(self, policy: MatchPolicy, size: int = DEFAULT_SIZE):
        super().__init__(policy)
        self.size = size

    async def extract(self, image: Union[ImageInput, NormalizedImage]) -> Embedding:
        return await asyncio.to_thread(self.extract_sync, image)

    def extract_sync(self, image: Union[ImageInput, NormalizedImage]) -> Embedding:
        """Blocking normalize + features; runs in a worker thread from extract()."""
        if isinstance(image, NormalizedImage):
            normalized = image
        else:
            normalized = normalize(image, self.size)

        try:
            vector = self.features(normalized)
        except FaceVerificationError:
            raise
        except Exception as e:
            raise ProcessingError(f"{self.name} feature extraction failed: {e}") from e
        return Embedding(vector=vector.astype(np.float32), backend=self.name)

    @abstractmethod
    def features(self, normalized: NormalizedImage) -> np.ndarray:
        ...


class GridBackend(_NormalizingBackend):
    """
    Coarse luminance layout: mean of each M×M cell scaled to [0, 1],
    then z-scored across the whole vector. A flat image yields zeros.
    """

    name = 'grid'

    def __init__(self, policy: Optional[MatchPolicy] = None,
                 size: int = DEFAULT_SIZE, grid: int = 8):
        super().__init__(policy or MatchPolicy(Metric.MSE, threshold=0.5, min_gap=0.05), size)
        self.grid = grid
        self.dimension = grid * grid

    def features(self, normalized: NormalizedImage) -> np.ndarray:
        pixels = normalized.pixels.astype(np.float64)
        bounds = [(i * normalized.size) // self.grid for i in range(self.grid + 1)]
        cells = np.empty((self.grid, self.grid), dtype=np.float64)
        for row in range(self.grid):
            for col in range(self.grid):
                cell = pixels[bounds[row]:bounds[row + 1], bounds[col]:bounds[col + 1]]
                cells[row, col] = cell.mean() / 255.0 if cell.size else 0.0
        return z_score(cells.reshape(-1))

    def finalize(self, vector: np.ndarray) -> np.ndarray:
        return z_score(np.asarray(vector, dtype=np.float64)).astype(np.float32)


# Landmarks of an aligned face on the 64×64 grid
LANDMARKS = {
    'left_eye_outer': (12, 28),
    'left_eye_inner': (26, 28),
    'right_eye_inner': (38, 28),
    'right_eye_outer': (52, 28),
    'nose_tip': (32, 42),
    'mouth_center': (32, 52),
    'chin_tip': (32, 62),
}
LEFT_EYE_RECT = (10, 22, 20, 12)   # x, y, width, height
RIGHT_EYE_RECT = (34, 22, 20, 12)
GABOR_ORIENTATIONS = (0.0, math.pi / 4, math.pi / 2, 3 * math.pi / 4)
GABOR_WAVELENGTHS = (4.0, 8.0)    # pixels on the 64×64 grid


def _distance(p1, p2) -> float:
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


class PeriocularBackend(_NormalizingBackend):
    """
    Geometric ratios between aligned-face landmarks plus Gabor-like texture
    energies of both eye regions, tiled to 128 dims and L2-normalized.
    """

    name = 'periocular'
    dimension = 128

    def __init__(self, policy: Optional[MatchPolicy] = None, size: int = DEFAULT_SIZE):
        super().__init__(policy or MatchPolicy(Metric.COSINE, threshold=0.93, min_gap=0.01), size)
        self._scale = size / 64.0

    def _point(self, key):
        x, y = LANDMARKS[key]
        return x * self._scale, y * self._scale

    def geometric_features(self) -> np.ndarray:
        p = self._point
        inter_ocular = _distance(p('left_eye_inner'), p('right_eye_inner')) or 1.0
        features = [
            _distance(p('left_eye_outer'), p('left_eye_inner')) / inter_ocular,
            _distance(p('right_eye_inner'), p('right_eye_outer')) / inter_ocular,
            _distance(p('nose_tip'), p('mouth_center')) / inter_ocular,
            _distance(p('mouth_center'), p('chin_tip')) / inter_ocular,
            _distance(p('left_eye_inner'), p('nose_tip')) / inter_ocular,
            _distance(p('right_eye_inner'), p('nose_tip')) / inter_ocular,
        ]
        features.append(features[0] / (features[2] + EPSILON))
        features.append(features[3] / (features[4] + EPSILON))
        return np.asarray(features, dtype=np.float64)

    def gabor_energies(self, pixels: np.ndarray, rect) -> np.ndarray:
        x, y, width, height = (int(round(v * self._scale)) for v in rect)
        region = pixels[y:y + height, x:x + width].astype(np.float64) / 255.0
        if region.size == 0:
            return np.zeros(len(GABOR_ORIENTATIONS) * len(GABOR_WAVELENGTHS))

        # Envelope centred on the region
        ys, xs = np.mgrid[0:region.shape[0], 0:region.shape[1]].astype(np.float64)
        xs -= (region.shape[1] - 1) / 2.0
        ys -= (region.shape[0] - 1) / 2.0
        sigma = max(region.shape) / 4.0
        envelope = np.exp(-(xs ** 2 + ys ** 2) / (2 * sigma ** 2))

        energies = []
        for theta in GABOR_ORIENTATIONS:
            rotated = xs * math.cos(theta) + ys * math.sin(theta)
            for wavelength in GABOR_WAVELENGTHS:
                kernel = envelope * np.cos(2 * math.pi * rotated / (wavelength * self._scale))
                energies.append(abs(float(np.sum(region * kernel))) / region.size)
        return np.asarray(energies, dtype=np.float64)

    def features(self, normalized: NormalizedImage) -> np.ndarray:
        raw = np.concatenate([
            l2_normalize(self.geometric_features()),
            l2_normalize(self.gabor_energies(normalized.pixels, LEFT_EYE_RECT)),
            l2_normalize(self.gabor_energies(normalized.pixels, RIGHT_EYE_RECT)),
        ])
        modulation = np.sin(np.arange(self.dimension) * 0.1)
        tiled = raw[np.arange(self.dimension) % raw.size] * modulation
        return l2_normalize(tiled)

    def finalize(self, vector: np.ndarray) -> np.ndarray:
        return l2_normalize(np.asarray(vector, dtype=np.float64)).astype(np.float32)


class InsightFaceBackend(ExtractionBackend):
    """
    Delegates detection, alignment and embedding to InsightFace through
    the ModelLifecycle. Picks the largest face above `min_det_score`.
    """

    name = 'insightface'

    def __init__(self, lifecycle: ModelLifecycle, policy: Optional[MatchPolicy] = None,
                 min_det_score: float = 0.5, dimension: int = 512, detector=None):
        super().__init__(policy or MatchPolicy(Metric.EUCLIDEAN, threshold=1.1, min_gap=0.05))
        self.lifecycle = lifecycle
        self.min_det_score = min_det_score
        self.dimension = dimension
        self.detector = detector

    async def extract(self, image: Union[ImageInput, NormalizedImage]) -> Embedding:
        if isinstance(image, NormalizedImage):
            raise ProcessingError("insightface backend needs the decoded colour frame")

        frame = await decode_image_async(image)
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)

        detector = await self.lifecycle.ensure_loaded()
        faces = await asyncio.to_thread(detector.detect, frame)

        confident = [f for f in faces if f.det_score >= self.min_det_score]
        if not confident:
            raise NoFaceDetected(
                f"No face above detection score {self.min_det_score} "
                f"({len(faces)} candidate(s))"
            )

        largest = max(confident, key=lambda f: f.bbox.area)
        return Embedding(vector=np.asarray(largest.embedding, dtype=np.float32), backend=self.name)

    def finalize(self, vector: np.ndarray) -> np.ndarray:
        return l2_normalize(np.asarray(vector, dtype=np.float64)).astype(np.float32)

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats['model'] = self.lifecycle.get_stats()
        stats['min_det_score'] = self.min_det_score
        if self.detector is not None:
            stats['detector'] = self.detector.get_stats()
        return stats


BACKEND_NAMES: List[str] = [GridBackend.name, PeriocularBackend.name, InsightFaceBackend.name]


def create_backend(config) -> ExtractionBackend:
    """
    Build the backend named by config.FACE_BACKEND with its match policy.

    Args:
        config: Config class or instance (see config.py)
    """
    name = config.FACE_BACKEND

    if name == GridBackend.name:
        return GridBackend(
            MatchPolicy(Metric.MSE, config.GRID_THRESHOLD, config.GRID_MIN_GAP),
            size=config.CANONICAL_SIZE, grid=config.GRID_SIZE,
        )

    if name == PeriocularBackend.name:
        return PeriocularBackend(
            MatchPolicy(Metric.COSINE, config.PERIOCULAR_THRESHOLD, config.PERIOCULAR_MIN_GAP),
            size=config.CANONICAL_SIZE,
        )

    if name == InsightFaceBackend.name:
        from engines.face_verification.detector import FaceDetector

        detector = FaceDetector(
            model_name=config.INSIGHTFACE_MODEL,
            gpu_id=config.GPU_ID,
            det_size=(config.DET_SIZE, config.DET_SIZE),
        )
        lifecycle = ModelLifecycle(
            loader=detector.load,
            warmup=FaceDetector.warmup,
            retry_cooldown=config.MODEL_RETRY_COOLDOWN,
        )
        return InsightFaceBackend(
            lifecycle,
            MatchPolicy(Metric.EUCLIDEAN, config.INSIGHTFACE_THRESHOLD, config.INSIGHTFACE_MIN_GAP),
            min_det_score=config.MIN_DET_SCORE,
            detector=detector,
        )

    raise ValueError(f"Unknown face backend '{name}', expected one of {BACKEND_NAMES}")
