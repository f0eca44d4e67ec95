"""Reviewer decisions on suggestions.

Modules:
    engine: ResolutionEngine (accept, dismiss, cast_vote) and its errors
"""

from src.resolution.engine import (
    BoardRequiredError,
    InvalidStatusTransitionError,
    ResolutionEngine,
    ResolutionError,
)

__all__ = [
    "BoardRequiredError",
    "InvalidStatusTransitionError",
    "ResolutionEngine",
    "ResolutionError",
]
