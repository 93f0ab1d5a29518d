"""
Exception hierarchy for the recommendation engine.

Only DimensionMismatch and EmptyCandidatePool escape RecommendationEngine.recommend;
the remaining errors are raised by collaborators and absorbed by the engine.
"""


class RecommendationError(Exception):
    """Base exception for recommendation engine errors."""
    pass


class DimensionMismatch(RecommendationError):
    """Raised when two feature vectors of different lengths are compared."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Feature vectors must have the same length (expected {expected}, got {actual})"
        )


class EmptyCandidatePool(RecommendationError):
    """Raised when there are no active careers to recommend from."""

    def __init__(self, message: str = "No active careers available; cannot compute recommendations yet"):
        super().__init__(message)


class CacheUnavailable(RecommendationError):
    """Raised when the result cache backend cannot be read or written."""
    pass


class CatalogWriteBackFailed(RecommendationError):
    """Raised when computed feature vectors cannot be persisted to the catalog."""
    pass
