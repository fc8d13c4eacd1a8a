from __future__ import annotations

from typing import Sequence

import numpy as np

from ..core.config import Settings, get_settings
from ..core.security import parse_descriptor
from ..types import Candidate, CandidatePool, MatchResult
from .embedding import ArcFaceEmbedder, DlibEmbedder


def match_descriptor(
    descriptor: np.ndarray,
    candidates: CandidatePool | Sequence[Candidate],
    threshold: float,
) -> MatchResult | None:
    """Closest candidate by Euclidean distance, if strictly below `threshold`.

    Equal distances resolve to the earliest candidate in pool order. An empty
    pool is simply no match.
    """
    pool = candidates.candidates if isinstance(candidates, CandidatePool) else list(candidates)
    if not pool:
        return None

    matrix = np.vstack([c.descriptor for c in pool]).astype(np.float32)
    query = parse_descriptor(descriptor, length=matrix.shape[1])

    distances = np.linalg.norm(matrix - query, axis=1)
    # argmin returns the first occurrence of the minimum.
    idx = int(np.argmin(distances))
    best = float(distances[idx])
    if best >= threshold:
        return None
    return MatchResult(person_id=pool[idx].person_id, distance=best)


class FaceMatcher:
    def __init__(self, threshold: float) -> None:
        if threshold <= 0:
            raise ValueError("Match threshold must be positive.")
        self.threshold = threshold

    def match(self, descriptor: np.ndarray, pool: CandidatePool | Sequence[Candidate]) -> MatchResult | None:
        return match_descriptor(descriptor, pool, self.threshold)


def _provider_class(settings: Settings):
    return DlibEmbedder if settings.embedding_backend == "dlib" else ArcFaceEmbedder


def default_threshold(settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    if settings.match_distance_threshold is not None:
        return settings.match_distance_threshold
    return _provider_class(settings).distance_threshold


def default_descriptor_length(settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    if settings.descriptor_length is not None:
        return settings.descriptor_length
    return _provider_class(settings).descriptor_length
