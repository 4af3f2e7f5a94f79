"""Failure taxonomy shared by the parser, the pipeline and the queue.

Every error carries a stable ``code`` persisted on the job row and a
``retryable`` flag. The flag is the only thing the queue looks at.
"""


class PipelineError(Exception):
    """Base class for all classified job failures."""

    code = "INTERNAL_ERROR"
    retryable = True

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidInput(PipelineError):
    """Malformed command, disallowed host or inconsistent trim window."""

    code = "INVALID_INPUT"
    retryable = False


class AcquisitionFailure(PipelineError):
    """yt-dlp could not probe or fetch the media."""

    code = "ACQUISITION_FAILED"
    retryable = True


class ProcessingFailure(PipelineError):
    """ffmpeg failed after the stream copy and re-encode attempts."""

    code = "PROCESSING_FAILED"
    retryable = True


class SizeLimitExceeded(PipelineError):
    code = "SIZE_LIMIT_EXCEEDED"
    retryable = False


class DeliveryFailure(PipelineError):
    """The chat platform rejected the upload. Never re-acquired."""

    code = "DELIVERY_FAILED"
    retryable = False


class InternalError(PipelineError):
    code = "INTERNAL_ERROR"
    retryable = True


def classify(exc: BaseException) -> PipelineError:
    """Map any exception onto the taxonomy."""
    if isinstance(exc, PipelineError):
        return exc
    return InternalError(f"{type(exc).__name__}: {exc}")
