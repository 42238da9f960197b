"""Exception hierarchy for the identity resolution pipeline."""


class RacePhotoSearchError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(RacePhotoSearchError, ValueError):
    """Input rejected at a boundary before it reaches storage."""


class EmbeddingDimensionError(ValidationError):
    """A face embedding has an unsupported or mismatched dimension."""

    def __init__(self, received: int, expected: tuple[int, ...]) -> None:
        self.received = received
        self.expected = expected
        allowed = " or ".join(str(d) for d in expected)
        super().__init__(f"Invalid embedding dimension: expected {allowed}, received {received}")


class InvalidBibError(ValidationError):
    """A string does not follow the bib number grammar."""


class RecognitionBackendError(RacePhotoSearchError):
    """A text recognition backend failed (network, credentials, binary)."""


class RegionError(RacePhotoSearchError):
    """A region cannot be cropped from a variant."""


class PhotoNotFoundError(RacePhotoSearchError):
    """No photo exists with the requested id."""
