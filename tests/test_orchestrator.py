"""
Unit tests for job orchestration.

A fake provider records every call; probing, splitting and compression are
patched at the orchestrator so no ffmpeg or network access is needed.
"""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import pytest

from transcript.config import ProviderConfig, Settings
from transcript.errors import (
    CompressionError,
    MergeError,
    OversizedInputError,
    ProviderError,
    TranscriptionJobError,
    UnknownProviderError,
    UnsupportedMediaError,
)
from transcript.models import (
    ChunkInfo,
    ConcurrencyMode,
    MediaFile,
    ProviderCapability,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from transcript.orchestrator import Orchestrator, Stage, transcribe_file, write_output
from transcript.providers import TranscriptionProvider

CEILING = 1000

PARALLEL = ProviderCapability(
    name="fake",
    display_name="Fake Parallel",
    max_input_bytes=CEILING,
    concurrency=ConcurrencyMode.PARALLEL,
)
SEQUENTIAL = ProviderCapability(
    name="fake",
    display_name="Fake Sequential",
    max_input_bytes=CEILING,
    concurrency=ConcurrencyMode.SEQUENTIAL,
    supports_compression=True,
)


class FakeProvider(TranscriptionProvider):
    """Returns one segment per call, named after the file it was sent."""

    def __init__(self, capability, delays=None, failures=None):
        super().__init__(ProviderConfig(name="fake", api_key="k", base_url="http://fake"))
        self.capability = capability
        self.delays = delays or {}
        self.failures = failures or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _transcribe(self, unit_path, options, timeout):
        name = os.path.basename(unit_path)
        self.calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(name, 0))
            if name in self.failures:
                raise self.failures[name]
            return TranscriptionResult(
                text=f"Overlap. Words of {name}",
                provider=self.name,
                segments=[TranscriptionSegment(id=0, start=1.0, end=2.0, text=name)],
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "talk.mp3"
    path.write_bytes(b"\0" * 10)
    return str(path)


def probed(source, size=5000, duration=90.0):
    """Patch probe_media to report the given size and duration."""
    media = MediaFile(path=source, size=size, duration=duration, extension="mp3")
    return patch("transcript.orchestrator.probe_media", AsyncMock(return_value=media))


def fake_split(chunk_size=100):
    """A split_media stand-in that writes three 30s chunk files."""
    seen = {}

    async def split(path, out_dir, chunk_seconds, overlap_seconds, duration=None):
        seen["out_dir"] = out_dir
        os.makedirs(out_dir)
        chunks = []
        for index in range(3):
            chunk_path = os.path.join(out_dir, f"talk_chunk_{index:03d}.mp3")
            with open(chunk_path, "wb") as f:
                f.write(b"\0" * 10)
            start = index * 30.0
            chunks.append(
                ChunkInfo(
                    index=index,
                    start_time=start,
                    end_time=start + 30,
                    path=chunk_path,
                    size=chunk_size,
                    window_end=min(start + 35, 90.0),
                )
            )
        return chunks

    return AsyncMock(side_effect=split), seen


def settings(tmp_path):
    return Settings(chunk_seconds=30, overlap_seconds=5, work_dir=str(tmp_path))


def options(**kwargs):
    return TranscriptionOptions(provider="fake", **kwargs)


class TestDirectCall:
    """Files under the ceiling go to the provider in one request."""

    def test_small_file_is_never_split(self, source, tmp_path):
        provider = FakeProvider(PARALLEL)
        split, _ = fake_split()
        with probed(source, size=CEILING), patch("transcript.orchestrator.split_media", split):
            result = asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        split.assert_not_called()
        assert provider.calls == ["talk.mp3"]
        assert result.text == "Overlap. Words of talk.mp3"
        assert result.duration == 90.0
        assert result.provider == "fake"

    def test_stage_is_merge_after_run(self, source, tmp_path):
        orchestrator = Orchestrator(FakeProvider(PARALLEL), settings(tmp_path))
        with probed(source, size=10):
            asyncio.run(orchestrator.run(source, options()))
        assert orchestrator.stage is Stage.MERGE


class TestCompressAttempt:
    """Oversized files on compressing providers are re-encoded first."""

    def compressor(self, size):
        async def compress(path, out_path, bitrate):
            with open(out_path, "wb") as f:
                f.write(b"\0" * size)
            return out_path

        return AsyncMock(side_effect=compress)

    def test_compressed_file_sent_directly(self, source, tmp_path):
        provider = FakeProvider(SEQUENTIAL)
        compress = self.compressor(size=500)
        split, _ = fake_split()
        orchestrator = Orchestrator(provider, settings(tmp_path), job_id="job1")
        with probed(source), \
                patch("transcript.orchestrator.compress_media", compress), \
                patch("transcript.orchestrator.split_media", split):
            asyncio.run(orchestrator.run(source, options()))

        compress.assert_awaited_once()
        assert compress.call_args[0][2] == "32k"
        assert provider.calls == [".compressed_job1_talk.ogg"]
        split.assert_not_called()
        assert not any(name.startswith(".chunks-") for name in os.listdir(tmp_path))
        assert not os.path.exists(tmp_path / ".compressed_job1_talk.ogg")

    def test_still_too_large_falls_back_to_chunks(self, source, tmp_path):
        provider = FakeProvider(SEQUENTIAL)
        split, _ = fake_split()
        with probed(source), \
                patch("transcript.orchestrator.compress_media", self.compressor(size=2000)), \
                patch("transcript.orchestrator.split_media", split):
            asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        split.assert_awaited_once()
        assert len(provider.calls) == 3
        assert os.listdir(tmp_path) == ["talk.mp3"]

    def test_compression_failure_falls_back_to_chunks(self, source, tmp_path):
        provider = FakeProvider(SEQUENTIAL)
        split, _ = fake_split()
        compress = AsyncMock(side_effect=CompressionError("libopus missing"))
        with probed(source), \
                patch("transcript.orchestrator.compress_media", compress), \
                patch("transcript.orchestrator.split_media", split):
            asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert len(provider.calls) == 3

    def test_not_attempted_without_support(self, source, tmp_path):
        compress = AsyncMock()
        split, _ = fake_split()
        with probed(source), \
                patch("transcript.orchestrator.compress_media", compress), \
                patch("transcript.orchestrator.split_media", split):
            asyncio.run(Orchestrator(FakeProvider(PARALLEL), settings(tmp_path)).run(source, options()))

        compress.assert_not_called()


class TestChunkedCall:
    """Oversized files are split, dispatched and merged."""

    def test_parallel_results_reordered_by_index(self, source, tmp_path):
        """Chunks finishing in reverse order still merge in chunk order."""
        provider = FakeProvider(
            PARALLEL,
            delays={"talk_chunk_000.mp3": 0.03, "talk_chunk_001.mp3": 0.02, "talk_chunk_002.mp3": 0.01},
        )
        split, seen = fake_split()
        with probed(source), patch("transcript.orchestrator.split_media", split):
            result = asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert provider.max_in_flight == 3
        assert [s.text for s in result.segments] == [
            "talk_chunk_000.mp3", "talk_chunk_001.mp3", "talk_chunk_002.mp3",
        ]
        assert [s.start for s in result.segments] == [1.0, 31.0, 61.0]
        assert result.text == (
            "Overlap. Words of talk_chunk_000.mp3\n\n"
            "Words of talk_chunk_001.mp3\n\n"
            "Words of talk_chunk_002.mp3"
        )
        assert not os.path.exists(seen["out_dir"])

    def test_sequential_one_call_at_a_time(self, source, tmp_path):
        provider = FakeProvider(SEQUENTIAL)
        split, _ = fake_split()
        with probed(source), \
                patch("transcript.orchestrator.compress_media", AsyncMock(side_effect=CompressionError("x"))), \
                patch("transcript.orchestrator.split_media", split):
            asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert provider.max_in_flight == 1
        assert provider.calls == ["talk_chunk_000.mp3", "talk_chunk_001.mp3", "talk_chunk_002.mp3"]

    def test_split_uses_settings_and_probed_duration(self, source, tmp_path):
        split, _ = fake_split()
        orchestrator = Orchestrator(FakeProvider(PARALLEL), settings(tmp_path), job_id="abc")
        with probed(source), patch("transcript.orchestrator.split_media", split):
            asyncio.run(orchestrator.run(source, options()))

        args, kwargs = split.call_args
        assert args == (source, os.path.join(str(tmp_path), ".chunks-abc"), 30, 5)
        assert kwargs == {"duration": 90.0}

    def test_chunk_failure_fails_job(self, source, tmp_path):
        error = ProviderError("fake", 500, "internal error")
        provider = FakeProvider(PARALLEL, failures={"talk_chunk_001.mp3": error})
        split, seen = fake_split()
        output = tmp_path / "talk.txt"
        orchestrator = Orchestrator(provider, settings(tmp_path), job_id="job42")
        with probed(source), patch("transcript.orchestrator.split_media", split):
            with pytest.raises(TranscriptionJobError) as exc_info:
                asyncio.run(orchestrator.run_to_file(source, options(), str(output)))

        assert exc_info.value.job_id == "job42"
        assert exc_info.value.stage == "chunked_call"
        assert exc_info.value.cause is error
        assert orchestrator.stage is Stage.FAILED
        assert not output.exists()
        assert not os.path.exists(seen["out_dir"])

    def test_lowest_failing_chunk_reported(self, source, tmp_path):
        first = ProviderError("fake", 429, "slow down")
        last = ProviderError("fake", 500, "boom")
        provider = FakeProvider(
            PARALLEL,
            delays={"talk_chunk_000.mp3": 0.02},
            failures={"talk_chunk_000.mp3": first, "talk_chunk_002.mp3": last},
        )
        split, _ = fake_split()
        with probed(source), patch("transcript.orchestrator.split_media", split):
            with pytest.raises(TranscriptionJobError) as exc_info:
                asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert exc_info.value.cause is first
        assert len(provider.calls) == 3

    def test_sequential_stops_at_first_failure(self, source, tmp_path):
        provider = FakeProvider(
            SEQUENTIAL, failures={"talk_chunk_000.mp3": ProviderError("fake", 400, "bad audio")}
        )
        split, _ = fake_split()
        with probed(source), \
                patch("transcript.orchestrator.compress_media", AsyncMock(side_effect=CompressionError("x"))), \
                patch("transcript.orchestrator.split_media", split):
            with pytest.raises(TranscriptionJobError):
                asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert provider.calls == ["talk_chunk_000.mp3"]

    def test_merge_failure_removes_chunks(self, source, tmp_path):
        """A merge error fails the job at the merge stage and still cleans up."""
        split, seen = fake_split()
        output = tmp_path / "talk.txt"
        error = MergeError("segment at 31.000s in chunk 1 precedes the previous segment")
        orchestrator = Orchestrator(FakeProvider(PARALLEL), settings(tmp_path), job_id="job7")
        with probed(source), \
                patch("transcript.orchestrator.split_media", split), \
                patch("transcript.orchestrator.merge_results", side_effect=error):
            with pytest.raises(TranscriptionJobError) as exc_info:
                asyncio.run(orchestrator.run_to_file(source, options(), str(output)))

        assert exc_info.value.stage == "merge"
        assert exc_info.value.cause is error
        assert not output.exists()
        assert not os.path.exists(seen["out_dir"])

    def test_oversized_chunk_not_sent(self, source, tmp_path):
        provider = FakeProvider(PARALLEL)
        split, seen = fake_split(chunk_size=CEILING + 1)
        with probed(source), patch("transcript.orchestrator.split_media", split):
            with pytest.raises(TranscriptionJobError) as exc_info:
                asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))

        assert isinstance(exc_info.value.cause, OversizedInputError)
        assert provider.calls == []
        assert not os.path.exists(seen["out_dir"])


class TestRunToFile:
    """Tests for writing the rendered transcript."""

    def test_default_output_next_to_input(self, source, tmp_path):
        orchestrator = Orchestrator(FakeProvider(PARALLEL), settings(tmp_path))
        with probed(source, size=10):
            output = asyncio.run(orchestrator.run_to_file(source, options(format="srt")))

        assert output == str(tmp_path / "talk.srt")
        assert (tmp_path / "talk.srt").read_text() == (
            "1\n00:00:01,000 --> 00:00:02,000\ntalk.mp3\n"
        )
        assert orchestrator.stage is Stage.DONE

    def test_progress_callback(self, source, tmp_path):
        messages = []
        orchestrator = Orchestrator(
            FakeProvider(PARALLEL), settings(tmp_path), progress_callback=messages.append
        )
        with probed(source, size=10):
            asyncio.run(orchestrator.run_to_file(source, options(), str(tmp_path / "out.txt")))
        assert any("Transcript written to" in m for m in messages)

    def test_write_output_replaces_atomically(self, tmp_path):
        path = tmp_path / "out" / "t.txt"
        write_output(str(path), "first")
        write_output(str(path), "second")
        assert path.read_text() == "second"
        assert os.listdir(tmp_path / "out") == ["t.txt"]


class TestJobErrors:
    """Errors carry the job id and the stage that failed."""

    def test_unsupported_media_fails_at_init(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")
        with pytest.raises(TranscriptionJobError) as exc_info:
            asyncio.run(
                Orchestrator(FakeProvider(PARALLEL), job_id="j1").run(str(notes), options())
            )
        assert exc_info.value.stage == "init"
        assert isinstance(exc_info.value.cause, UnsupportedMediaError)
        assert "Job j1 failed during init" in str(exc_info.value)

    def test_unknown_provider(self, source):
        with pytest.raises(TranscriptionJobError) as exc_info:
            asyncio.run(
                transcribe_file(source, TranscriptionOptions(provider="nope"), Settings(), job_id="j2")
            )
        assert exc_info.value.stage == "init"
        assert isinstance(exc_info.value.cause, UnknownProviderError)

    def test_direct_call_failure(self, source, tmp_path):
        provider = FakeProvider(PARALLEL, failures={"talk.mp3": ProviderError("fake", 503, "busy")})
        with probed(source, size=10):
            with pytest.raises(TranscriptionJobError) as exc_info:
                asyncio.run(Orchestrator(provider, settings(tmp_path)).run(source, options()))
        assert exc_info.value.stage == "direct_call"
        assert exc_info.value.cause.transient is True
