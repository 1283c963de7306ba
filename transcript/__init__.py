"""
Long-form audio/video transcription through remote speech-to-text providers.

Files larger than a provider accepts are compressed or split into
overlapping chunks, transcribed (sequentially or concurrently, as the
provider allows) and merged back into one time-consistent transcript.

Example usage:
    import asyncio
    from transcript import Settings, TranscriptionOptions, transcribe_file

    options = TranscriptionOptions(provider="openai", format="srt")
    output = asyncio.run(transcribe_file("meeting.mp3", options, Settings.from_env()))
    print(output)
"""

from transcript.config import (
    # Configuration
    Settings,
    ProviderConfig,
    DEFAULT_CHUNK_LENGTH,
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_COMPRESS_BITRATE,
)
from transcript.errors import (
    TranscriptError,
    ConfigurationError,
    UnknownProviderError,
    UnsupportedMediaError,
    ProbeError,
    CompressionError,
    ChunkExtractionError,
    OversizedInputError,
    ProviderError,
    ProviderTimeoutError,
    MergeError,
    TranscriptionJobError,
)
from transcript.models import (
    # Data classes
    ChunkInfo,
    ConcurrencyMode,
    MediaFile,
    ProviderCapability,
    Speaker,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from transcript.media import probe_duration, probe_media, file_size, exceeds_ceiling
from transcript.chunker import split_media, compress_media, cleanup_chunks, chunk_workspace
from transcript.merger import merge_text, merge_segments, merge_results
from transcript.formatter import render, output_extension, format_timestamp
from transcript.providers import (
    TranscriptionProvider,
    available_providers,
    get_provider,
    provider_capability,
    register_provider,
)
from transcript.orchestrator import Orchestrator, Stage, transcribe_file

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "Settings",
    "ProviderConfig",
    "DEFAULT_CHUNK_LENGTH",
    "DEFAULT_CHUNK_OVERLAP",
    "DEFAULT_COMPRESS_BITRATE",
    # Errors
    "TranscriptError",
    "ConfigurationError",
    "UnknownProviderError",
    "UnsupportedMediaError",
    "ProbeError",
    "CompressionError",
    "ChunkExtractionError",
    "OversizedInputError",
    "ProviderError",
    "ProviderTimeoutError",
    "MergeError",
    "TranscriptionJobError",
    # Data classes
    "ChunkInfo",
    "ConcurrencyMode",
    "MediaFile",
    "ProviderCapability",
    "Speaker",
    "TranscriptionOptions",
    "TranscriptionResult",
    "TranscriptionSegment",
    # Main functions
    "Orchestrator",
    "Stage",
    "transcribe_file",
    # Lower-level functions
    "probe_duration",
    "probe_media",
    "file_size",
    "exceeds_ceiling",
    "split_media",
    "compress_media",
    "cleanup_chunks",
    "chunk_workspace",
    "merge_text",
    "merge_segments",
    "merge_results",
    "render",
    "output_extension",
    "format_timestamp",
    # Providers
    "TranscriptionProvider",
    "available_providers",
    "get_provider",
    "provider_capability",
    "register_provider",
]
