"""Exceptions raised by the transcription pipeline."""

from typing import Optional

# HTTP statuses worth retrying by the caller
TRANSIENT_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


class TranscriptError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(TranscriptError):
    """Invalid settings, options or missing credentials."""


class UnknownProviderError(ConfigurationError):
    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"Unknown provider: {name}. Available: {', '.join(available)}"
        )


class UnsupportedMediaError(ConfigurationError):
    """The input file extension is not one the pipeline accepts."""


class ProbeError(TranscriptError):
    """Duration or size of a media file could not be determined."""


class CompressionError(TranscriptError):
    """Re-encoding a media file to a lower bitrate failed."""


class ChunkExtractionError(TranscriptError):
    """Extracting a time slice of a media file failed."""


class OversizedInputError(TranscriptError):
    """A unit larger than the provider's ceiling was handed to an adapter."""

    def __init__(self, provider: str, size: int, limit: int):
        self.provider = provider
        self.size = size
        self.limit = limit
        super().__init__(
            f"{provider}: input of {size} bytes exceeds the {limit} byte limit"
        )


class ProviderError(TranscriptError):
    """A remote speech-to-text call failed.

    Attributes:
        provider: Registry name of the provider
        status: HTTP status code, or None when no response was received
        message: Error text reported by the service (or the client)
        transient: Whether retrying the same request may succeed
    """

    def __init__(
        self,
        provider: str,
        status: Optional[int],
        message: str,
        transient: Optional[bool] = None,
    ):
        self.provider = provider
        self.status = status
        self.message = message
        if transient is None:
            transient = status is None or status in TRANSIENT_STATUSES
        self.transient = transient
        label = f"HTTP {status}" if status is not None else "no response"
        super().__init__(f"{provider} transcription failed ({label}): {message}")


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            provider, None, f"request timed out after {timeout:.0f}s", transient=True
        )


class MergeError(TranscriptError):
    """Chunk results could not be reassembled into one transcript."""


class TranscriptionJobError(TranscriptError):
    """A job failed; wraps the underlying error with job context."""

    def __init__(self, job_id: str, stage: str, cause: Exception):
        self.job_id = job_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"Job {job_id} failed during {stage}: {cause}")
