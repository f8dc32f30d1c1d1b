"""
Face Detector: narrow typed adapter over InsightFace FaceAnalysis.
Loads the model (GPU via ONNX Runtime CUDA provider with CPU fallback),
runs detect + align + embed in one call, and converts InsightFace's
native Face objects into DetectedFace dataclasses.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from engines.face_verification.errors import ModelLoadFailure, ProcessingError

logger = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    """Axis-aligned bounding box in pixel coordinates."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass
class DetectedFace:
    """A face detected in a frame."""
    bbox: BoundingBox
    embedding: np.ndarray        # L2-normalized vector
    det_score: float = 0.0       # Detection confidence


class FaceDetector:
    """
    Wraps an InsightFace FaceAnalysis app.

    Responsibilities:
        - Load the model pack (downloads weights on first use)
        - Detect faces and return normed embeddings
        - Warm-up inference on a blank frame

    Does NOT manage load state or retries; see ModelLifecycle.
    """

    def __init__(self, model_name: str = 'buffalo_l', gpu_id: int = 0,
                 det_size: Tuple[int, int] = (640, 640)):
        self.model_name = model_name
        self.gpu_id = gpu_id
        self.det_size = det_size
        self.app = None

    @property
    def available(self) -> bool:
        return self.app is not None

    def load(self) -> 'FaceDetector':
        """
        Initialize InsightFace: tries GPU first, falls back to CPU.

        Raises:
            ModelLoadFailure: if insightface is missing or no provider works
        """
        try:
            from insightface.app import FaceAnalysis
        except ImportError as e:
            raise ModelLoadFailure(f"InsightFace not installed: {e}") from e

        provider_options = [
            ['CUDAExecutionProvider', 'CPUExecutionProvider'],
            ['CPUExecutionProvider'],
        ]
        last_error: Optional[Exception] = None
        for providers in provider_options:
            try:
                app = FaceAnalysis(name=self.model_name, providers=providers)
                app.prepare(ctx_id=self.gpu_id, det_size=self.det_size)
                self.app = app
                logger.info(f"FaceDetector: {self.model_name} loaded with {providers}")
                return self
            except Exception as e:
                logger.warning(f"FaceDetector init failed with {providers}: {e}")
                last_error = e
        raise ModelLoadFailure(
            f"Could not initialize {self.model_name} with any provider: {last_error}"
        )

    def warmup(self) -> None:
        """Run one inference on a blank frame to trigger lazy allocations."""
        blank = np.zeros((self.det_size[1], self.det_size[0], 3), dtype=np.uint8)
        self.detect(blank)

    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        """
        Detect all faces in a BGR frame.

        Raises:
            ProcessingError: if the model is not loaded or inference fails
        """
        if not self.available:
            raise ProcessingError("FaceDetector: model not loaded")

        try:
            raw_faces = self.app.get(frame)
        except Exception as e:
            raise ProcessingError(f"Face detection error: {e}") from e

        results = []
        for face in raw_faces:
            bbox = face.bbox.astype(int)
            results.append(DetectedFace(
                bbox=BoundingBox(
                    left=int(bbox[0]),
                    top=int(bbox[1]),
                    right=int(bbox[2]),
                    bottom=int(bbox[3]),
                ),
                embedding=np.asarray(face.normed_embedding, dtype=np.float32),
                det_score=float(getattr(face, 'det_score', 0.0)),
            ))
        return results

    def get_stats(self) -> dict:
        return {
            'available': self.available,
            'model': self.model_name,
            'gpu_id': self.gpu_id,
            'det_size': self.det_size,
        }
