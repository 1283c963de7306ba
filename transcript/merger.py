"""
Reassembling per-chunk results into one transcript.

Chunk timestamps are chunk-local; merging shifts them by the chunk's start
time. Text from the overlap between two chunks appears twice, and is
removed with a sentence heuristic: the first sentence of every chunk after
the first is assumed to repeat the tail of the previous chunk.
"""

import re
from typing import Optional, Sequence

from transcript.errors import MergeError
from transcript.models import ChunkInfo, Speaker, TranscriptionResult, TranscriptionSegment

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def merge_text(chunk_texts: Sequence[str]) -> str:
    """Join chunk transcripts, dropping likely-duplicate boundary sentences.

    A chunk that is a single sentence is kept whole, since dropping it would
    lose everything it contributed.
    """
    if not chunk_texts:
        return ""
    if len(chunk_texts) == 1:
        return chunk_texts[0]

    merged = [chunk_texts[0]]
    for text in chunk_texts[1:]:
        sentences = SENTENCE_BOUNDARY.split(text)
        if len(sentences) > 1:
            merged.append(" ".join(sentences[1:]))
        else:
            merged.append(text)
    return "\n\n".join(merged)


def merge_segments(
    chunk_segments: Sequence[Sequence[TranscriptionSegment]],
    chunk_start_times: Sequence[float],
    chunk_end_times: Optional[Sequence[float]] = None,
) -> list[TranscriptionSegment]:
    """Shift chunk-local segments to global time and renumber them.

    Args:
        chunk_segments: Segments of each chunk, in chunk order
        chunk_start_times: Global start time of each chunk
        chunk_end_times: Logical end of each chunk (optional). When given,
            segments of a chunk that start at or after its logical end are
            dropped, since the next chunk covers that audio from its start.

    Returns:
        Segments in global time with ids 0..N-1

    Raises:
        MergeError: If the inputs disagree in length or the merged segments
            are not in time order
    """
    if len(chunk_segments) != len(chunk_start_times):
        raise MergeError(
            f"{len(chunk_segments)} segment lists but {len(chunk_start_times)} start times"
        )
    if chunk_end_times is not None and len(chunk_end_times) != len(chunk_start_times):
        raise MergeError(
            f"{len(chunk_end_times)} end times but {len(chunk_start_times)} start times"
        )

    merged: list[TranscriptionSegment] = []
    last_chunk = len(chunk_segments) - 1
    for i, (segments, offset) in enumerate(zip(chunk_segments, chunk_start_times)):
        for segment in segments:
            start = segment.start + offset
            if chunk_end_times is not None and i < last_chunk and start >= chunk_end_times[i]:
                continue
            if merged and start < merged[-1].start:
                raise MergeError(
                    f"segment at {start:.3f}s in chunk {i} precedes "
                    f"the previous segment at {merged[-1].start:.3f}s"
                )
            merged.append(
                TranscriptionSegment(
                    id=len(merged),
                    start=start,
                    end=segment.end + offset,
                    text=segment.text,
                    speaker=segment.speaker,
                    confidence=segment.confidence,
                )
            )
    return merged


def build_speakers(
    segments: Sequence[TranscriptionSegment],
    names: Optional[dict] = None,
) -> Optional[list[Speaker]]:
    """Collect speakers in order of first appearance.

    Args:
        segments: Segments with (optional) speaker ids
        names: Optional speaker id -> display name mapping

    Returns:
        Speakers with their segment ids, or None if no segment has a speaker
    """
    names = names or {}
    speakers: dict[str, Speaker] = {}
    for segment in segments:
        if not segment.speaker:
            continue
        if segment.speaker not in speakers:
            speakers[segment.speaker] = Speaker(
                id=segment.speaker, name=names.get(segment.speaker)
            )
        speakers[segment.speaker].segments.append(segment.id)
    return list(speakers.values()) or None


def merge_results(
    results: Sequence[TranscriptionResult],
    chunks: Sequence[ChunkInfo],
    provider: str,
    model: Optional[str] = None,
    duration: Optional[float] = None,
) -> TranscriptionResult:
    """Combine ordered chunk results into the job's final result.

    Raises:
        MergeError: If results and chunks do not line up one to one
    """
    if len(results) != len(chunks):
        raise MergeError(f"{len(results)} results for {len(chunks)} chunks")
    if any(chunk.index != i for i, chunk in enumerate(chunks)):
        raise MergeError("chunks are not in index order")

    text = merge_text([r.text for r in results])

    segments = None
    if any(r.segments for r in results):
        segments = merge_segments(
            [r.segments or [] for r in results],
            [c.start_time for c in chunks],
            [c.end_time for c in chunks],
        )

    names = {}
    for r in results:
        for speaker in r.speakers or []:
            if speaker.name:
                names.setdefault(speaker.id, speaker.name)

    return TranscriptionResult(
        text=text,
        segments=segments,
        speakers=build_speakers(segments, names) if segments else None,
        duration=duration,
        language=next((r.language for r in results if r.language), None),
        model=model or next((r.model for r in results if r.model), None),
        provider=provider,
    )
