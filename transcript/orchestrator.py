"""
Job orchestration: size check, compression, chunking, dispatch and merge.

A job moves through these stages::

    init -> size_check -> direct_call ----------------------> merge -> format -> done
                       -> compress_attempt -> direct_call --^
                                           -> chunked_call -^

and fails from whichever stage raised. Every failure leaves the job as a
TranscriptionJobError carrying the job id and stage; no partial transcript
or output file is ever produced.
"""

import asyncio
import logging
import os
import tempfile
import uuid
from enum import Enum
from typing import Callable, Optional

from transcript.chunker import chunk_workspace, compress_media, split_media
from transcript.config import Settings
from transcript.errors import (
    CompressionError,
    ConfigurationError,
    OversizedInputError,
    TranscriptionJobError,
)
from transcript.formatter import normalize_format, output_extension, render
from transcript.media import file_size, probe_media
from transcript.merger import merge_results
from transcript.models import (
    ChunkInfo,
    ConcurrencyMode,
    MediaFile,
    TranscriptionOptions,
    TranscriptionResult,
)
from transcript.providers import TranscriptionProvider, get_provider

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INIT = "init"
    SIZE_CHECK = "size_check"
    COMPRESS_ATTEMPT = "compress_attempt"
    DIRECT_CALL = "direct_call"
    CHUNKED_CALL = "chunked_call"
    MERGE = "merge"
    FORMAT = "format"
    DONE = "done"
    FAILED = "failed"


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


def default_output_path(input_path: str, fmt: str) -> str:
    """Output next to the input, named after it, with the format's extension."""
    base = os.path.splitext(input_path)[0]
    return base + output_extension(fmt)


def write_output(path: str, content: str) -> None:
    """Write content to path atomically, so a failed write leaves nothing behind."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    temp_file = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=directory, prefix=".transcript-", delete=False
    )
    try:
        with temp_file:
            temp_file.write(content)
        os.replace(temp_file.name, path)
    except BaseException:
        if os.path.exists(temp_file.name):
            os.unlink(temp_file.name)
        raise


class Orchestrator:
    """Runs one transcription job against one provider.

    Args:
        provider: Adapter to send audio to
        settings: Chunking and work-directory settings
        job_id: Identifier used in temp file names and errors (generated if omitted)
        progress_callback: Optional callback function for progress messages
    """

    def __init__(
        self,
        provider: TranscriptionProvider,
        settings: Optional[Settings] = None,
        job_id: Optional[str] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.provider = provider
        self.settings = settings or Settings()
        self.job_id = job_id or new_job_id()
        self.progress_callback = progress_callback
        self.stage = Stage.INIT

    @property
    def capability(self):
        return self.provider.capability

    def log(self, msg: str) -> None:
        logger.info("[job %s] %s", self.job_id, msg)
        if self.progress_callback:
            self.progress_callback(msg)

    def enter(self, stage: Stage) -> None:
        logger.debug("[job %s] %s -> %s", self.job_id, self.stage.value, stage.value)
        self.stage = stage

    def fail(self, error: Exception) -> TranscriptionJobError:
        failed_stage = self.stage
        self.stage = Stage.FAILED
        logger.error("[job %s] failed during %s: %s", self.job_id, failed_stage.value, error)
        return TranscriptionJobError(self.job_id, failed_stage.value, error)

    async def run(self, path: str, options: TranscriptionOptions) -> TranscriptionResult:
        """Transcribe a file and return the merged result.

        Raises:
            TranscriptionJobError: Wrapping whatever failed, with job context
        """
        try:
            self.enter(Stage.INIT)
            media = await probe_media(path)
            self.log(
                f"{os.path.basename(path)}: {media.duration:.1f}s, "
                f"{media.size / 1024 / 1024:.2f}MB, provider {self.capability.display_name}"
            )
            work_dir = self.settings.work_dir or os.path.dirname(os.path.abspath(path))

            self.enter(Stage.SIZE_CHECK)
            if media.size <= self.capability.max_input_bytes:
                return await self.direct_call(media, media.path, options)

            self.log(
                f"File exceeds the {self.capability.max_input_bytes / 1024 / 1024:.0f}MB "
                f"limit of {self.capability.display_name}"
            )
            if self.capability.supports_compression:
                result = await self.compress_attempt(media, options, work_dir)
                if result is not None:
                    return result
            return await self.chunked_call(media, options, work_dir)
        except Exception as e:
            raise self.fail(e) from e

    async def run_to_file(
        self,
        path: str,
        options: TranscriptionOptions,
        output_path: Optional[str] = None,
    ) -> str:
        """Transcribe a file, render it and write the output file.

        Returns:
            Path of the written output file
        """
        result = await self.run(path, options)
        try:
            self.enter(Stage.FORMAT)
            fmt = normalize_format(options.format)
            output_path = output_path or default_output_path(path, fmt)
            write_output(output_path, render(result, fmt))
            self.enter(Stage.DONE)
        except Exception as e:
            raise self.fail(e) from e
        self.log(f"Transcript written to {output_path}")
        return output_path

    async def direct_call(
        self, media: MediaFile, unit_path: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """Send one file in a single request and normalize the result."""
        self.enter(Stage.DIRECT_CALL)
        result = await self.provider.transcribe(unit_path, options, duration_hint=media.duration)

        self.enter(Stage.MERGE)
        whole = ChunkInfo(
            index=0,
            start_time=0.0,
            end_time=media.duration,
            path=unit_path,
            size=file_size(unit_path),
        )
        return merge_results(
            [result], [whole], self.provider.name, result.model, result.duration or media.duration
        )

    async def compress_attempt(
        self, media: MediaFile, options: TranscriptionOptions, work_dir: str
    ) -> Optional[TranscriptionResult]:
        """Try to fit the file under the limit by re-encoding it.

        Returns:
            The transcription of the compressed file, or None when compression
            failed or did not shrink the file enough
        """
        self.enter(Stage.COMPRESS_ATTEMPT)
        stem = os.path.splitext(os.path.basename(media.path))[0]
        compressed_path = os.path.join(work_dir, f".compressed_{self.job_id}_{stem}.ogg")
        try:
            try:
                await compress_media(media.path, compressed_path, self.settings.compress_bitrate)
            except CompressionError as e:
                self.log(f"Compression failed, falling back to chunking: {e}")
                return None

            compressed_size = file_size(compressed_path)
            if compressed_size > self.capability.max_input_bytes:
                self.log(
                    f"Compressed file is still {compressed_size / 1024 / 1024:.2f}MB, "
                    "falling back to chunking"
                )
                return None

            self.log("Compressed file fits, transcribing directly")
            return await self.direct_call(media, compressed_path, options)
        finally:
            if os.path.exists(compressed_path):
                os.unlink(compressed_path)

    async def chunked_call(
        self, media: MediaFile, options: TranscriptionOptions, work_dir: str
    ) -> TranscriptionResult:
        """Split the file, transcribe every chunk and merge the results."""
        self.enter(Stage.CHUNKED_CALL)
        chunk_dir = os.path.join(work_dir, f".chunks-{self.job_id}")

        with chunk_workspace(chunk_dir):
            chunks = await split_media(
                media.path,
                chunk_dir,
                self.settings.chunk_seconds,
                self.settings.overlap_seconds,
                duration=media.duration,
            )
            self.log(f"Created {len(chunks)} chunks.")
            for chunk in chunks:
                if chunk.size > self.capability.max_input_bytes:
                    raise OversizedInputError(
                        self.provider.name, chunk.size, self.capability.max_input_bytes
                    )

            if self.capability.concurrency is ConcurrencyMode.PARALLEL:
                results = await self.dispatch_parallel(chunks, options)
            else:
                results = await self.dispatch_sequential(chunks, options)

            self.enter(Stage.MERGE)
            return merge_results(
                results, chunks, self.provider.name, options.model, media.duration
            )

    async def transcribe_chunk(
        self, chunk: ChunkInfo, total: int, options: TranscriptionOptions
    ) -> tuple[int, TranscriptionResult]:
        self.log(f"Transcribing chunk {chunk.index + 1}/{total} ...")
        result = await self.provider.transcribe(
            chunk.path, options, duration_hint=chunk.window_duration
        )
        return chunk.index, result

    async def dispatch_sequential(
        self, chunks: list[ChunkInfo], options: TranscriptionOptions
    ) -> list[TranscriptionResult]:
        """One request at a time, in chunk order; stops at the first failure."""
        results = []
        for chunk in chunks:
            _, result = await self.transcribe_chunk(chunk, len(chunks), options)
            results.append(result)
        return results

    async def dispatch_parallel(
        self, chunks: list[ChunkInfo], options: TranscriptionOptions
    ) -> list[TranscriptionResult]:
        """All requests at once; results are put back in chunk order.

        Requests already in flight when one fails are allowed to finish, then
        everything is discarded and the failure of the lowest chunk index is
        raised.
        """
        outcomes = await asyncio.gather(
            *(self.transcribe_chunk(chunk, len(chunks), options) for chunk in chunks),
            return_exceptions=True,
        )

        failures = [
            (chunk.index, outcome)
            for chunk, outcome in zip(chunks, outcomes)
            if isinstance(outcome, BaseException)
        ]
        if failures:
            index, error = min(failures, key=lambda failure: failure[0])
            if len(failures) > 1:
                self.log(f"{len(failures)} chunks failed; reporting chunk {index + 1}")
            raise error

        # Completion order says nothing about chunk order
        ordered = sorted(outcomes, key=lambda outcome: outcome[0])
        return [result for _, result in ordered]


async def transcribe_file(
    path: str,
    options: TranscriptionOptions,
    settings: Optional[Settings] = None,
    output_path: Optional[str] = None,
    job_id: Optional[str] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> str:
    """Transcribe a file with the provider named in options and write the output.

    Args:
        path: Path to the audio/video file
        options: Provider, language, model, diarization, timestamps and format
        settings: Credentials and chunking settings (defaults read from env)
        output_path: Where to write the transcript (defaults next to the input)
        job_id: Optional job identifier
        progress_callback: Optional callback function for progress messages

    Returns:
        Path of the written transcript

    Raises:
        TranscriptionJobError: If any stage fails, including provider setup
    """
    settings = settings or Settings.from_env()
    job_id = job_id or new_job_id()
    try:
        provider = get_provider(options.provider, settings)
    except ConfigurationError as e:
        raise TranscriptionJobError(job_id, Stage.INIT.value, e) from e

    orchestrator = Orchestrator(provider, settings, job_id, progress_callback)
    return await orchestrator.run_to_file(path, options, output_path)
