"""Cosine similarity and best-match selection for merge targets.

Comparison is a linear scan with NumPy, adequate for the few thousand posts a
workspace holds.

Selection rules:
- a candidate qualifies when ``score >= threshold`` (inclusive)
- qualifying candidates are ranked by score, highest first
- exact score ties rank the most recently created candidate first
- the first-ranked candidate is the merge target
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np


Candidate = Tuple[str, np.ndarray, datetime]


def cosine_similarity(vec_a: np.ndarray, vec_b: np.ndarray) -> float:
    """Compute cosine similarity between two vectors.

    Returns 0.0 if either vector has zero magnitude.

    Example:
        >>> import numpy as np
        >>> cosine_similarity(np.array([1.0, 0.0]), np.array([1.0, 0.0]))
        1.0
    """
    dot_product = np.dot(vec_a, vec_b)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(dot_product / (norm_a * norm_b))


def to_vector(embedding: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    """Convert a stored embedding to a float64 array; None or empty gives None."""
    if embedding is None or len(embedding) == 0:
        return None
    return np.asarray(embedding, dtype=np.float64)


def find_all_matches(
    new_embedding: np.ndarray,
    candidates: List[Candidate],
    threshold: float = 0.80,
) -> List[Tuple[str, float]]:
    """Rank the qualifying candidates.

    Args:
        new_embedding: Embedding of the new signal.
        candidates: (post_id, embedding, created_at) tuples. Candidates whose
            dimensionality differs from ``new_embedding`` are ignored.
        threshold: Minimum similarity for a match (inclusive).

    Returns:
        (post_id, score) pairs sorted by score descending, newest first on
        ties. Empty if nothing qualifies.

    Example:
        >>> import numpy as np
        >>> from datetime import datetime
        >>> t = datetime(2024, 1, 1)
        >>> find_all_matches(
        ...     np.array([1.0, 0.0]),
        ...     [("p1", np.array([0.9, 0.1]), t), ("p2", np.array([0.0, 1.0]), t)],
        ...     threshold=0.8,
        ... )[0][0]
        'p1'
    """
    matches = []
    for post_id, embedding, created_at in candidates:
        if embedding.shape != new_embedding.shape:
            continue
        score = cosine_similarity(new_embedding, embedding)
        if score >= threshold:
            matches.append((post_id, score, created_at))

    matches.sort(key=lambda m: (m[1], m[2]), reverse=True)
    return [(post_id, score) for post_id, score, _ in matches]
