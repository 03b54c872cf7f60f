"""
Error taxonomy for the transcription pipeline.
"""


class RenderhubError(Exception):
    """Base class for errors raised by renderhub."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SubmissionError(RenderhubError):
    """A job request was rejected before any task was created."""


class FetchError(RenderhubError):
    """Downloading the source audio failed for good."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """A single download attempt hit a timeout or a dropped connection."""


class StageFailure(RenderhubError):
    """A pipeline stage failed and the task cannot continue."""


class ChunkFailure(RenderhubError):
    """One chunk could not be cut or transcribed; the task carries on without it."""

    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"chunk {index}: {message}")


class TranscriptionError(RenderhubError):
    """The transcription API refused a request or answered with an unusable payload."""
