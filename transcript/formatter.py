"""Rendering a TranscriptionResult as plain text, SRT, WebVTT or JSON."""

import json
import logging

from transcript.models import TranscriptionResult

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS = {
    "text": ".txt",
    "srt": ".srt",
    "vtt": ".vtt",
    "json": ".json",
}
OUTPUT_FORMATS = tuple(OUTPUT_EXTENSIONS)


def normalize_format(fmt: str) -> str:
    """Return fmt if it is a known output format, otherwise "text"."""
    fmt = (fmt or "").lower()
    if fmt == "txt":
        return "text"
    if fmt not in OUTPUT_EXTENSIONS:
        logger.warning("Unknown output format %r, falling back to text", fmt)
        return "text"
    return fmt


def output_extension(fmt: str) -> str:
    return OUTPUT_EXTENSIONS.get((fmt or "").lower(), ".txt")


def format_timestamp(seconds: float, separator: str = ",") -> str:
    """Format seconds as HH:MM:SS<separator>mmm, rounded to the millisecond."""
    total_ms = max(0, round(seconds * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, milliseconds = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{milliseconds:03d}"


def render(result: TranscriptionResult, fmt: str = "text") -> str:
    """Render a result in the requested format.

    Unknown formats are rendered as text rather than raising.
    """
    fmt = normalize_format(fmt)
    if fmt == "srt":
        return format_srt(result)
    if fmt == "vtt":
        return format_vtt(result)
    if fmt == "json":
        return format_json(result)
    return format_text(result)


def _speaker_label(result: TranscriptionResult, speaker_id: str) -> str:
    for speaker in result.speakers or []:
        if speaker.id == speaker_id and speaker.name:
            return speaker.name
    return speaker_id


def format_text(result: TranscriptionResult) -> str:
    """Prose, with a [speaker] line wherever the speaker changes."""
    if not result.segments:
        return result.text

    output = ""
    current_speaker = None
    for segment in result.segments:
        if segment.speaker and segment.speaker != current_speaker:
            current_speaker = segment.speaker
            output += f"\n[{_speaker_label(result, current_speaker)}]\n"
        output += segment.text + " "
    return output.strip()


def _cue_text(result: TranscriptionResult, segment) -> str:
    if segment.speaker:
        return f"<v {_speaker_label(result, segment.speaker)}>{segment.text}"
    return segment.text


def format_srt(result: TranscriptionResult) -> str:
    if not result.segments:
        # No timing available: one zero-length cue with the whole text
        return f"1\n00:00:00,000 --> 00:00:00,000\n{result.text}\n"

    cues = []
    for i, segment in enumerate(result.segments, 1):
        start = format_timestamp(segment.start, ",")
        end = format_timestamp(segment.end, ",")
        cues.append(f"{i}\n{start} --> {end}\n{_cue_text(result, segment)}")
    return "\n\n".join(cues) + "\n"


def format_vtt(result: TranscriptionResult) -> str:
    vtt = "WEBVTT\n\n"
    if not result.segments:
        return vtt + f"00:00:00.000 --> 00:00:00.000\n{result.text}\n"

    cues = []
    for segment in result.segments:
        start = format_timestamp(segment.start, ".")
        end = format_timestamp(segment.end, ".")
        cues.append(f"{start} --> {end}\n{_cue_text(result, segment)}")
    return vtt + "\n\n".join(cues) + "\n"


def format_json(result: TranscriptionResult) -> str:
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
