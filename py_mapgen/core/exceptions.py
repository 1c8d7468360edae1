"""Exception hierarchy for map generation."""


class MapGenerationError(Exception):
    """Base class for every error raised by the generation pipeline."""


class ConfigurationError(MapGenerationError, ValueError):
    """Invalid generation options, detected before any work starts."""


class GeometryDegeneracy(MapGenerationError):
    """The point set cannot be triangulated."""


class AlgorithmNonConvergence(MapGenerationError):
    """Depression resolution kept getting worse and was abandoned.

    The pipeline recovers from this on its own; it is only raised when a
    caller asks for strict generation.
    """

    def __init__(self, message: str, remaining: int = 0, iterations: int = 0):
        super().__init__(message)
        self.remaining = remaining
        self.iterations = iterations


class BoundedSearchExhaustion(MapGenerationError):
    """A retry loop ran out of attempts.

    Logged as a warning; generation proceeds with the best candidate.
    """
