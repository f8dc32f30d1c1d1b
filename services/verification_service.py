"""
Face Verification Service: collaborator-facing facade over the engine.
Decodes captured images, extracts embeddings with the configured backend,
and answers 1:1 verify / 1:N search requests. Matching always fails closed:
any extraction failure means "not matched".

The roster store supplies enrolled embeddings; this service never persists
anything.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence

from engines.face_verification.backends import (
    ExtractionBackend, InsightFaceBackend, create_backend,
)
from engines.face_verification.embedding import Embedding, EnrolledProfile
from engines.face_verification.encoder import EncodingResult, FaceEncoder
from engines.face_verification.errors import FaceVerificationError
from engines.face_verification.matcher import FaceMatcher, MatchResult, Verdict
from engines.face_verification.normalizer import ImageInput, decode_image_async

logger = logging.getLogger(__name__)


class FaceVerificationService:
    """Face verification using one extraction backend and its match policy."""

    def __init__(self, backend: ExtractionBackend, min_enrollment_photos: int = 3):
        """
        Args:
            backend: extraction backend (grid, periocular or insightface)
            min_enrollment_photos: photos that must yield an embedding in encode_multiple
        """
        self.backend = backend
        self.matcher = FaceMatcher(backend.policy)
        self.encoder = FaceEncoder(backend)
        self.min_enrollment_photos = min_enrollment_photos

    @classmethod
    def from_config(cls, config) -> 'FaceVerificationService':
        return cls(create_backend(config), min_enrollment_photos=config.MIN_ENROLLMENT_PHOTOS)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def start(self) -> bool:
        """
        Preload the inference model at process start.
        Returns False if it could not be loaded; the process keeps running
        and matching fails closed until a retry succeeds.
        """
        if isinstance(self.backend, InsightFaceBackend):
            return await self.backend.lifecycle.preload()
        return True

    async def retry_model(self) -> bool:
        """Explicitly retry a failed model load."""
        if not isinstance(self.backend, InsightFaceBackend):
            return True
        try:
            await self.backend.lifecycle.retry()
            return True
        except FaceVerificationError as e:
            logger.error(f"Model retry failed: {e}")
            return False

    # ---------- Extraction ----------

    async def extract_features(self, image: ImageInput) -> Embedding:
        """
        Decode an image and extract its embedding.

        Raises:
            DecodeError, NoFaceDetected, ProcessingError, ModelLoadFailure
        """
        frame = await decode_image_async(image)
        return await self.backend.extract(frame)

    async def _capture(self, image: ImageInput) -> Optional[Embedding]:
        try:
            return await self.extract_features(image)
        except FaceVerificationError as e:
            logger.warning(f"Extraction failed ({type(e).__name__}): {e}")
        except Exception as e:
            logger.error(f"Unexpected extraction error: {e}")
        return None

    # ---------- Roster coercion ----------

    def as_embedding(self, value) -> Embedding:
        """Untagged vectors are assumed to come from the active backend."""
        return Embedding.from_any(value, self.backend.name)

    def as_roster(self, roster: Iterable[Any]) -> List[EnrolledProfile]:
        """
        Accepts EnrolledProfile objects, roster records (dicts with
        'id' / 'name' / 'face_encoding' / 'face_backend'), (identity, embedding)
        or (identity, vector, backend_tag) tuples.
        """
        profiles = []
        for item in roster:
            try:
                profile = self._as_profile(item)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid roster entry: {e}")
                continue
            if profile is not None:
                profiles.append(profile)
        return profiles

    def _as_profile(self, item) -> Optional[EnrolledProfile]:
        if isinstance(item, EnrolledProfile):
            return item
        if isinstance(item, dict):
            return EnrolledProfile.from_record(item, self.backend.name)
        if isinstance(item, (tuple, list)) and len(item) == 2:
            identity, value = item
            if value is None:
                return None
            return EnrolledProfile(identity, self.as_embedding(value))
        if isinstance(item, (tuple, list)) and len(item) == 3:
            identity, value, backend = item
            if value is None:
                return None
            return EnrolledProfile(identity, Embedding.from_any(value, backend or self.backend.name))
        raise ValueError(f"Unsupported roster entry: {type(item)}")

    # ---------- Matching ----------

    async def verify_face_detailed(self, captured_image: ImageInput, stored_embedding) -> MatchResult:
        try:
            stored = self.as_embedding(stored_embedding)
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid stored embedding: {e}")
            return MatchResult(Verdict.NO_CANDIDATES, metric=self.matcher.metric.value)

        captured = await self._capture(captured_image)
        result = self.matcher.verify_detailed(captured, stored)
        logger.info(f"Verify: verdict={result.verdict.value} score={result.score}")
        return result

    async def verify_face(self, captured_image: ImageInput, stored_embedding) -> bool:
        """1:1 verification. Returns False on any failure."""
        result = await self.verify_face_detailed(captured_image, stored_embedding)
        return result.matched

    async def search(self, captured_image: ImageInput, roster: Iterable[Any]) -> MatchResult:
        profiles = self.as_roster(roster)
        if not profiles:
            return MatchResult(Verdict.NO_CANDIDATES, metric=self.matcher.metric.value)

        captured = await self._capture(captured_image)
        result = self.matcher.find_best_match(captured, profiles)
        logger.info(
            f"Search over {len(profiles)} profiles: verdict={result.verdict.value} "
            f"identity={result.identity} score={result.score}"
        )
        return result

    async def find_best_match(self, captured_image: ImageInput, roster: Iterable[Any]) -> Any:
        """1:N search. Returns the matched identity or None."""
        result = await self.search(captured_image, roster)
        return result.identity if result.matched else None

    # ---------- Enrollment ----------

    async def encode_multiple(self, images: Sequence[ImageInput],
                              min_valid: Optional[int] = None) -> EncodingResult:
        """Averaged enrollment embedding; the caller persists it."""
        if min_valid is None:
            min_valid = self.min_enrollment_photos
        return await self.encoder.encode_multiple(images, min_valid=min_valid)

    def get_stats(self) -> dict:
        """Return verification service statistics."""
        return self.backend.get_stats()
