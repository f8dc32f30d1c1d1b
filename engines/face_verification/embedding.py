"""
Embedding types: tagged feature vectors and enrolled roster profiles.
Every vector carries the name of the backend that produced it so that
vectors from different backends are never silently compared.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from engines.face_verification.errors import BackendMismatch, DimensionMismatch

logger = logging.getLogger(__name__)


def as_vector(value) -> np.ndarray:
    """Coerce a list, JSON string or numpy array into a 1-d float32 vector."""
    if isinstance(value, str):
        value = json.loads(value)
    if isinstance(value, (list, tuple)):
        return np.asarray(value, dtype=np.float32).reshape(-1)
    if isinstance(value, np.ndarray):
        return value.astype(np.float32).reshape(-1)
    raise ValueError(f"Unsupported embedding type: {type(value)}")


@dataclass(frozen=True, eq=False)
class Embedding:
    """A feature vector plus the tag of the backend that produced it."""
    vector: np.ndarray
    backend: str

    @classmethod
    def from_any(cls, value, backend: str) -> 'Embedding':
        if isinstance(value, Embedding):
            return value
        return cls(vector=as_vector(value), backend=backend)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @property
    def empty(self) -> bool:
        return self.vector.size == 0

    def check_compatible(self, other: 'Embedding') -> None:
        """
        Raise if `other` cannot be scored against this embedding.

        Raises:
            BackendMismatch: produced by a different backend
            DimensionMismatch: same backend, different length
        """
        if self.backend != other.backend:
            raise BackendMismatch(
                f"Cannot compare '{self.backend}' embedding with '{other.backend}' embedding"
            )
        if self.dimension != other.dimension:
            raise DimensionMismatch(
                f"Cannot compare {self.dimension}-d embedding with {other.dimension}-d embedding"
            )

    def to_list(self) -> list:
        return self.vector.tolist()

    def to_dict(self) -> dict:
        return {'backend': self.backend, 'dimension': self.dimension, 'vector': self.to_list()}


@dataclass(frozen=True)
class EnrolledProfile:
    """An identity from the roster together with its stored embedding."""
    identity: Any
    embedding: Embedding
    name: Optional[str] = None

    @property
    def backend(self) -> str:
        return self.embedding.backend

    @classmethod
    def from_record(cls, record: dict, default_backend: str) -> Optional['EnrolledProfile']:
        """
        Build a profile from a roster record.

        Args:
            record: dict with 'id', optional 'name', 'face_encoding'
                (JSON string, list or array) and optional 'face_backend'
            default_backend: tag assumed for legacy untagged encodings

        Returns:
            EnrolledProfile, or None if the record has no usable encoding
        """
        encoding = record.get('face_encoding')
        if encoding is None or (not isinstance(encoding, np.ndarray) and not encoding):
            return None
        try:
            vector = as_vector(encoding)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to parse encoding for {record.get('id')}: {e}")
            return None
        backend = record.get('face_backend') or default_backend
        return cls(
            identity=record.get('id'),
            embedding=Embedding(vector=vector, backend=backend),
            name=record.get('name'),
        )
