"""
Face Matcher: accept/reject decisions over tagged embeddings.

verify():          one captured embedding against one stored embedding.
find_best_match(): linear scan over a roster with a hard threshold and a
                   confidence gap between the best and the runner-up identity.

Both fail closed: a missing capture, an incompatible embedding or an empty
roster never produces a match.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

from engines.face_verification.embedding import Embedding, EnrolledProfile
from engines.face_verification.errors import BackendMismatch, DimensionMismatch
from engines.face_verification.scorer import MatchPolicy

logger = logging.getLogger(__name__)


class Verdict(Enum):
    MATCHED = 'matched'
    BELOW_THRESHOLD = 'below_threshold'
    AMBIGUOUS = 'ambiguous'
    NO_CANDIDATES = 'no_candidates'
    EXTRACTION_FAILED = 'extraction_failed'
    BACKEND_MISMATCH = 'backend_mismatch'


@dataclass
class MatchResult:
    """Result of a verify or roster search. Built once per request."""
    verdict: Verdict
    identity: Any = None
    name: Optional[str] = None
    score: Optional[float] = None
    second_score: Optional[float] = None
    metric: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.verdict is Verdict.MATCHED

    def to_dict(self) -> dict:
        return {
            'matched': self.matched,
            'verdict': self.verdict.value,
            'identity': self.identity,
            'name': self.name,
            'score': _rounded(self.score),
            'second_score': _rounded(self.second_score),
            'metric': self.metric,
        }


def _rounded(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    # +inf is not valid JSON
    if value != value or value in (float('inf'), float('-inf')):
        return None
    return round(value, 4)


class FaceMatcher:
    """
    Applies a MatchPolicy (metric, threshold, minimum gap) to embeddings.

    Responsibilities:
        - Score two embeddings, treating incompatible pairs as the worst score
        - 1:1 verification
        - 1:N best match with confidence-gap rejection
    """

    def __init__(self, policy: MatchPolicy):
        self.policy = policy

    @property
    def metric(self):
        return self.policy.metric

    def verify_detailed(self, captured: Optional[Embedding], stored: Embedding) -> MatchResult:
        metric = self.metric.value
        if captured is None:
            return MatchResult(Verdict.EXTRACTION_FAILED, metric=metric)
        if stored is None or stored.empty:
            return MatchResult(Verdict.NO_CANDIDATES, metric=metric)

        try:
            captured.check_compatible(stored)
        except BackendMismatch as e:
            logger.warning(f"FaceMatcher: {e}, re-enrollment required")
            return MatchResult(Verdict.BACKEND_MISMATCH, score=self.metric.worst, metric=metric)
        except DimensionMismatch as e:
            logger.warning(f"FaceMatcher: {e}")
            return MatchResult(Verdict.BELOW_THRESHOLD, score=self.metric.worst, metric=metric)

        score = self.metric.score(captured.vector, stored.vector)
        passed = self.metric.passes(score, self.policy.threshold)
        logger.debug(f"FaceMatcher: verify {metric}={score:.4f} passed={passed}")
        return MatchResult(
            Verdict.MATCHED if passed else Verdict.BELOW_THRESHOLD,
            score=score,
            metric=metric,
        )

    def verify(self, captured: Optional[Embedding], stored: Embedding) -> bool:
        """True only if the pair passes the policy threshold."""
        return self.verify_detailed(captured, stored).matched

    def _scored(self, captured: Embedding,
                roster: Iterable[EnrolledProfile]) -> Tuple[List[Tuple[EnrolledProfile, float]], int]:
        scored = []
        skipped = 0
        for profile in roster:
            if profile.embedding is None or profile.embedding.empty:
                continue
            try:
                captured.check_compatible(profile.embedding)
            except DimensionMismatch as e:
                skipped += 1
                logger.warning(f"FaceMatcher: skipping {profile.identity}: {e}")
                continue
            score = self.metric.score(captured.vector, profile.embedding.vector)
            if not math.isfinite(score):
                logger.warning(f"FaceMatcher: skipping {profile.identity}: non-finite {self.metric.value} score")
                continue
            scored.append((profile, score))
        return scored, skipped

    def find_best_match(self, captured: Optional[Embedding],
                        roster: Iterable[EnrolledProfile]) -> MatchResult:
        """
        Find the best matching enrolled profile.

        The runner-up is the best score of any *other* identity, so a
        duplicate row for the winning identity never counts as ambiguity.
        Exact ties keep the first-seen profile.

        Returns:
            MatchResult; `identity` is set only when verdict is MATCHED
        """
        metric = self.metric
        if captured is None:
            return MatchResult(Verdict.EXTRACTION_FAILED, metric=metric.value)

        scored, skipped = self._scored(captured, roster)
        if not scored:
            verdict = Verdict.BACKEND_MISMATCH if skipped else Verdict.NO_CANDIDATES
            return MatchResult(verdict, metric=metric.value)

        best_profile, best_score = None, None
        for profile, score in scored:
            if best_score is None or metric.better(score, best_score):
                best_profile, best_score = profile, score

        second_score = None
        for profile, score in scored:
            if profile.identity == best_profile.identity:
                continue
            if second_score is None or metric.better(score, second_score):
                second_score = score

        logger.debug(
            f"FaceMatcher: best={best_profile.identity} {metric.value}={best_score:.4f} "
            f"second={second_score}"
        )

        if not metric.passes(best_score, self.policy.threshold):
            return MatchResult(Verdict.BELOW_THRESHOLD, score=best_score,
                               second_score=second_score, metric=metric.value)

        if second_score is not None and metric.gap(best_score, second_score) < self.policy.min_gap:
            logger.info(
                f"FaceMatcher: ambiguous match for {best_profile.identity} "
                f"(gap {metric.gap(best_score, second_score):.4f} < {self.policy.min_gap})"
            )
            return MatchResult(Verdict.AMBIGUOUS, score=best_score,
                               second_score=second_score, metric=metric.value)

        return MatchResult(
            Verdict.MATCHED,
            identity=best_profile.identity,
            name=best_profile.name,
            score=best_score,
            second_score=second_score,
            metric=metric.value,
        )

    def rank(self, captured: Embedding, roster: Iterable[EnrolledProfile],
             top_k: int = 5) -> List[Tuple[Any, Optional[str], float]]:
        """
        Return top-K (identity, name, score) sorted best first (for debugging/analysis).
        """
        scored, _ = self._scored(captured, roster)
        scored.sort(key=lambda item: item[1], reverse=not self.metric.lower_is_better)
        return [(p.identity, p.name, s) for p, s in scored[:top_k]]

    def get_stats(self) -> dict:
        return self.policy.to_dict()
