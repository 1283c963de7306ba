"""
Media inspection: duration via ffprobe, size via stat.

Subprocesses run through asyncio so a job suspends while the external
tool works instead of blocking the event loop.
"""

import asyncio
import logging
import os

from transcript.errors import ProbeError, UnsupportedMediaError
from transcript.models import MediaFile

logger = logging.getLogger(__name__)

# Container/codec extensions accepted as input
SUPPORTED_EXTENSIONS = (
    "mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm",
    "ogg", "oga", "opus", "flac", "aac", "mov",
)


async def run_command(cmd: list[str]) -> tuple[int, str, str]:
    """Run an external command and wait for it to exit.

    Args:
        cmd: Program and arguments

    Returns:
        Tuple of (return code, stdout, stderr)

    Raises:
        FileNotFoundError: If the program is not installed
    """
    logger.debug("Running: %s", " ".join(cmd))
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode("utf-8", errors="ignore"),
        stderr.decode("utf-8", errors="ignore"),
    )


async def probe_duration(path: str) -> float:
    """Get duration of a media file in seconds using ffprobe."""
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    try:
        returncode, stdout, stderr = await run_command(cmd)
    except FileNotFoundError:
        raise ProbeError("ffprobe is not installed") from None

    if returncode != 0:
        raise ProbeError(f"ffprobe failed for {path}: {stderr.strip()}")
    try:
        return float(stdout.strip())
    except ValueError:
        raise ProbeError(
            f"Could not parse duration of {path} from ffprobe output {stdout.strip()!r}"
        ) from None


def file_size(path: str) -> int:
    try:
        return os.stat(path).st_size
    except OSError as e:
        raise ProbeError(f"Cannot read {path}: {e}") from e


def exceeds_ceiling(path: str, ceiling_bytes: int) -> bool:
    return file_size(path) > ceiling_bytes


def media_extension(path: str) -> str:
    """Lower-case extension of path without the leading dot."""
    return os.path.splitext(path)[1].lstrip(".").lower()


async def probe_media(path: str) -> MediaFile:
    """Inspect a source file before a job starts.

    Raises:
        UnsupportedMediaError: If the extension is not a supported format
        ProbeError: If the file cannot be read or its duration determined
    """
    extension = media_extension(path)
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedMediaError(
            f"Unsupported file type '.{extension}'. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    size = file_size(path)
    duration = await probe_duration(path)
    return MediaFile(path=path, size=size, duration=duration, extension=extension)
