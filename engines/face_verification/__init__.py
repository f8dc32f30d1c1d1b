"""
Face Verification Engine
Provides image normalization, embedding extraction, similarity scoring and
accept/reject decisions for 1:1 verification and 1:N roster search.

Usage:
    from engines.face_verification import create_backend, FaceMatcher

    backend = create_backend(Config)
    matcher = FaceMatcher(backend.policy)

    embedding = await backend.extract(frame)
    result = matcher.find_best_match(embedding, roster)
"""

from engines.face_verification.backends import (
    ExtractionBackend, GridBackend, PeriocularBackend, InsightFaceBackend, create_backend,
)
from engines.face_verification.detector import FaceDetector, DetectedFace
from engines.face_verification.embedding import Embedding, EnrolledProfile
from engines.face_verification.encoder import FaceEncoder, EncodingResult
from engines.face_verification.errors import (
    FaceVerificationError, DecodeError, NoFaceDetected, ProcessingError,
    ModelLoadFailure, DimensionMismatch, BackendMismatch,
)
from engines.face_verification.matcher import FaceMatcher, MatchResult, Verdict
from engines.face_verification.model_manager import ModelLifecycle, ModelState
from engines.face_verification.normalizer import NormalizedImage, normalize, decode_image
from engines.face_verification.scorer import Metric, MatchPolicy

__all__ = [
    'ExtractionBackend', 'GridBackend', 'PeriocularBackend', 'InsightFaceBackend',
    'create_backend',
    'FaceDetector', 'DetectedFace',
    'Embedding', 'EnrolledProfile',
    'FaceEncoder', 'EncodingResult',
    'FaceVerificationError', 'DecodeError', 'NoFaceDetected', 'ProcessingError',
    'ModelLoadFailure', 'DimensionMismatch', 'BackendMismatch',
    'FaceMatcher', 'MatchResult', 'Verdict',
    'ModelLifecycle', 'ModelState',
    'NormalizedImage', 'normalize', 'decode_image',
    'Metric', 'MatchPolicy',
]
