"""
Face verification error taxonomy.

Extraction errors propagate out of the engine; matching operations catch
them and fail closed.
"""


class FaceVerificationError(Exception):
    """Base class for all face verification errors."""


class DecodeError(FaceVerificationError):
    """Image bytes are malformed or could not be decoded. Recapture required."""


class NoFaceDetected(FaceVerificationError):
    """The model found no face above the minimum detection score."""


class ProcessingError(FaceVerificationError):
    """Feature extraction failed for a reason other than decoding or detection."""


class ModelLoadFailure(FaceVerificationError):
    """The inference model could not be loaded. Retryable."""


class DimensionMismatch(FaceVerificationError):
    """Two embeddings cannot be compared (different length)."""


class BackendMismatch(DimensionMismatch):
    """Two embeddings were produced by different extraction backends."""
