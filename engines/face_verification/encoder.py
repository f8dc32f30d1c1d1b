"""
Face Encoder: builds enrollment embeddings from several photos.
Extracts one embedding per photo with the active backend, averages the
valid ones and brings the mean back into the backend's value range.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from engines.face_verification.backends import ExtractionBackend
from engines.face_verification.embedding import Embedding
from engines.face_verification.errors import FaceVerificationError
from engines.face_verification.normalizer import ImageInput, decode_image_async

logger = logging.getLogger(__name__)


@dataclass
class EncodingResult:
    """Result of multi-photo face encoding."""
    embedding: Optional[Embedding]
    valid_count: int = 0
    total_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.embedding is not None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'embedding': self.embedding.to_dict() if self.embedding else None,
            'valid_count': self.valid_count,
            'total_count': self.total_count,
            'errors': self.errors,
        }


class FaceEncoder:
    """
    Generates robust enrollment embeddings.

    Photos are processed one after another; a failed photo is recorded in
    `errors` and skipped.
    """

    def __init__(self, backend: ExtractionBackend):
        self.backend = backend

    async def encode_multiple(self, images: Sequence[ImageInput],
                              min_valid: int = 3) -> EncodingResult:
        """
        Args:
            images: encoded photos (bytes / base64) or decoded arrays
            min_valid: minimum number of photos that must yield an embedding (at least 1)

        Returns:
            EncodingResult with the averaged embedding, or None if too few were valid
        """
        min_valid = max(1, min_valid)
        vectors = []
        errors = []

        for i, image in enumerate(images):
            try:
                frame = await decode_image_async(image)
                embedding = await self.backend.extract(frame)
                vectors.append(embedding.vector)
            except FaceVerificationError as e:
                errors.append(f"Photo {i+1}: {type(e).__name__}: {e}")

        if len(vectors) < min_valid:
            errors.append(f"Need at least {min_valid} valid face photos, got {len(vectors)}")
            return EncodingResult(
                embedding=None,
                valid_count=len(vectors),
                total_count=len(images),
                errors=errors,
            )

        mean = np.mean(np.stack(vectors), axis=0)
        embedding = Embedding(vector=self.backend.finalize(mean), backend=self.backend.name)

        logger.info(f"Encoded face from {len(vectors)}/{len(images)} photos")
        return EncodingResult(
            embedding=embedding,
            valid_count=len(vectors),
            total_count=len(images),
            errors=errors,
        )
