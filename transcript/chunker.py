"""
Splitting and compressing media so it fits under a provider's size limit.

Chunks are cut with ffmpeg into a job-scoped directory. Each chunk file runs
``overlap_seconds`` past its logical end so a word cut at the boundary is
heard in full by one of the two neighbours.
"""

import logging
import math
import os
import shutil
from contextlib import contextmanager
from typing import Iterator, Optional

from transcript.config import DEFAULT_CHUNK_LENGTH, DEFAULT_CHUNK_OVERLAP, DEFAULT_COMPRESS_BITRATE
from transcript.errors import ChunkExtractionError, CompressionError, ConfigurationError
from transcript.media import file_size, probe_duration, run_command
from transcript.models import ChunkInfo

logger = logging.getLogger(__name__)


def chunk_windows(
    duration: float,
    chunk_seconds: float = DEFAULT_CHUNK_LENGTH,
    overlap_seconds: float = DEFAULT_CHUNK_OVERLAP,
) -> list[tuple[float, float, float]]:
    """Compute the time windows a file of the given duration is cut into.

    Args:
        duration: Total media duration in seconds
        chunk_seconds: Logical length of each chunk
        overlap_seconds: Extra seconds each chunk extends past its logical end

    Returns:
        List of (start, logical_end, window_end) tuples in order

    Raises:
        ConfigurationError: If overlap_seconds is not shorter than chunk_seconds
    """
    if chunk_seconds <= 0:
        raise ConfigurationError("chunk length must be positive")
    if not 0 <= overlap_seconds < chunk_seconds:
        raise ConfigurationError(
            f"chunk overlap ({overlap_seconds}s) must be shorter than "
            f"the chunk length ({chunk_seconds}s)"
        )

    windows = []
    # Starts are computed from the index, not accumulated, to avoid float drift
    for index in range(math.ceil(duration / chunk_seconds)):
        start = index * chunk_seconds
        end = min(start + chunk_seconds, duration)
        window_end = min(start + chunk_seconds + overlap_seconds, duration)
        windows.append((start, end, window_end))
    return windows


async def extract_chunk(source: str, chunk_path: str, start: float, length: float) -> None:
    """Copy a time range of source into chunk_path without re-encoding.

    Raises:
        ChunkExtractionError: If ffmpeg fails or is missing
    """
    cmd = [
        "ffmpeg",
        "-y",
        "-ss",
        f"{start:.3f}",
        "-i",
        source,
        "-t",
        f"{length:.3f}",
        "-vn",  # audio only
        "-acodec",
        "copy",
        chunk_path,
    ]
    try:
        returncode, _, stderr = await run_command(cmd)
    except FileNotFoundError:
        raise ChunkExtractionError("ffmpeg is not installed") from None

    if returncode != 0:
        # Clean up the partial chunk if ffmpeg failed
        try:
            os.unlink(chunk_path)
        except OSError:
            pass
        raise ChunkExtractionError(
            f"ffmpeg failed to extract {source} from {start:.1f}s "
            f"for {length:.1f}s. Error: {stderr.strip()}"
        )


async def split_media(
    path: str,
    out_dir: str,
    chunk_seconds: float = DEFAULT_CHUNK_LENGTH,
    overlap_seconds: float = DEFAULT_CHUNK_OVERLAP,
    duration: Optional[float] = None,
) -> list[ChunkInfo]:
    """Split a media file into overlapping chunks using ffmpeg.

    A file no longer than one chunk is returned as a single chunk pointing at
    the source itself; nothing is extracted in that case.

    Args:
        path: Path to the source media file
        out_dir: Job-scoped directory to store chunk files in
        chunk_seconds: Logical length of each chunk in seconds
        overlap_seconds: Extra seconds each chunk shares with the next one
        duration: Pre-computed duration (optional)

    Returns:
        Chunks ordered by index

    Raises:
        ConfigurationError: If overlap_seconds >= chunk_seconds
        ProbeError: If the duration has to be probed and cannot be
        ChunkExtractionError: If ffmpeg fails on any chunk
    """
    if duration is None:
        duration = await probe_duration(path)
    windows = chunk_windows(duration, chunk_seconds, overlap_seconds)

    if len(windows) <= 1:
        logger.info("%s fits in a single chunk (%.1fs), not splitting", path, duration)
        return [
            ChunkInfo(
                index=0,
                start_time=0.0,
                end_time=duration,
                path=path,
                size=file_size(path),
                window_end=duration,
            )
        ]

    basename, ext = os.path.splitext(os.path.basename(path))
    os.makedirs(out_dir, exist_ok=True)
    logger.info(
        "Splitting %s (%.0fs) into %d chunks of %ss with %ss overlap",
        path, duration, len(windows), chunk_seconds, overlap_seconds,
    )

    chunks = []
    for index, (start, end, window_end) in enumerate(windows):
        chunk_path = os.path.join(out_dir, f"{basename}_chunk_{index:03d}{ext}")
        await extract_chunk(path, chunk_path, start, window_end - start)
        chunk = ChunkInfo(
            index=index,
            start_time=start,
            end_time=end,
            path=chunk_path,
            size=file_size(chunk_path),
            window_end=window_end,
        )
        logger.info(
            "Created chunk %d/%d: %.0fs - %.0fs (%.2fMB)",
            index + 1, len(windows), start, end, chunk.size / 1024 / 1024,
        )
        chunks.append(chunk)
    return chunks


async def compress_media(
    path: str,
    out_path: str,
    target_bitrate: str = DEFAULT_COMPRESS_BITRATE,
) -> str:
    """Re-encode a file as low-bitrate mono Opus speech audio.

    Args:
        path: Source media file
        out_path: Where to write the compressed file
        target_bitrate: ffmpeg bitrate string, e.g. "32k"

    Returns:
        out_path

    Raises:
        CompressionError: If ffmpeg fails or is missing
    """
    logger.info("Compressing %s at %s", path, target_bitrate)
    cmd = [
        "ffmpeg",
        "-y",
        "-i",
        path,
        "-vn",  # drop video
        "-map_metadata",
        "-1",
        "-ac",
        "1",
        "-c:a",
        "libopus",
        "-b:a",
        target_bitrate,
        "-application",
        "voip",
        out_path,
    ]
    try:
        returncode, _, stderr = await run_command(cmd)
    except FileNotFoundError:
        raise CompressionError("ffmpeg is not installed") from None

    if returncode != 0:
        raise CompressionError(f"ffmpeg compression of {path} failed: {stderr.strip()}")
    logger.info("Compressed size: %.2fMB", file_size(out_path) / 1024 / 1024)
    return out_path


def cleanup_chunks(chunk_dir: str) -> None:
    """Remove a chunk directory and everything in it.

    Safe to call on a directory that was never created. Errors are logged,
    never raised.
    """
    if not os.path.exists(chunk_dir):
        return
    try:
        shutil.rmtree(chunk_dir)
        logger.info("Cleaned up temporary chunks in %s", chunk_dir)
    except OSError as e:
        logger.warning("Could not remove chunk directory %s: %s", chunk_dir, e)


@contextmanager
def chunk_workspace(chunk_dir: str) -> Iterator[str]:
    """Yield chunk_dir and remove it on exit, whatever happens inside."""
    try:
        yield chunk_dir
    finally:
        cleanup_chunks(chunk_dir)
