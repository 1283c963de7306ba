"""ElevenLabs Scribe adapter: speaker diarization and word-level timestamps."""

import os
from typing import Optional

from transcript.errors import ProviderError
from transcript.merger import build_speakers
from transcript.models import (
    ConcurrencyMode,
    ProviderCapability,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from transcript.providers.base import HttpTranscriptionProvider

DEFAULT_MODEL = "scribe_v1"
MAX_FILE_SIZE = 3 * 1024 * 1024 * 1024  # 3GB
MAX_SPEAKERS = 32


class ElevenLabsProvider(HttpTranscriptionProvider):
    capability = ProviderCapability(
        name="elevenlabs",
        display_name="ElevenLabs Scribe",
        max_input_bytes=MAX_FILE_SIZE,
        concurrency=ConcurrencyMode.PARALLEL,
        diarization=True,
        formats=("mp3", "mp4", "wav", "webm", "m4a", "ogg", "oga", "opus", "flac", "aac", "mov"),
    )

    async def _transcribe(
        self, unit_path: str, options: TranscriptionOptions, timeout: float
    ) -> TranscriptionResult:
        model = options.model or DEFAULT_MODEL
        form = {"model_id": model}
        if options.language:
            form["language_code"] = options.language
        if options.diarize:
            form["diarize"] = "true"
            form["num_speakers"] = str(MAX_SPEAKERS)
        form["timestamps_granularity"] = "word" if options.timestamps else "none"

        with open(unit_path, "rb") as audio_file:
            data = await self.post(
                f"{self.config.base_url}/speech-to-text",
                timeout,
                headers={"xi-api-key": self.config.api_key},
                data=form,
                files={"file": (os.path.basename(unit_path), audio_file)},
            )
        return self.format_result(
            data, model, diarize=options.diarize, timestamps=options.timestamps
        )

    def format_result(
        self, data: dict, model: str, diarize: bool = True, timestamps: bool = True
    ) -> TranscriptionResult:
        """Group words into segments, starting a new one on each speaker change.

        Speaker ids are dropped unless diarization was requested, and no
        segments are built when timestamps were not requested.

        Raises:
            ProviderError: If the body does not have the expected shape
        """
        try:
            words = data.get("words") or []
            segments = self._group_words(words, diarize) if timestamps else []
            names = {s["speaker_id"]: s.get("name") for s in data.get("speakers") or []}
            text = data.get("text", "")
            language = data.get("language_code")
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(
                self.name, None, f"unexpected response shape: {e!r}", transient=False
            ) from None

        return TranscriptionResult(
            text=text,
            segments=segments or None,
            speakers=build_speakers(segments, names) if diarize else None,
            language=language,
            model=model,
            provider=self.name,
        )

    def _group_words(self, words: list, diarize: bool) -> list[TranscriptionSegment]:
        segments: list[TranscriptionSegment] = []
        current: Optional[TranscriptionSegment] = None

        for word in words:
            # Spacing and audio-event entries carry no words
            if word.get("type", "word") != "word":
                continue
            text = word.get("text", word.get("word", ""))
            speaker = word.get("speaker_id", word.get("speaker")) if diarize else None
            start, end = float(word["start"]), float(word["end"])
            if current is None or speaker != current.speaker:
                current = TranscriptionSegment(
                    id=len(segments), start=start, end=end, text=text, speaker=speaker
                )
                segments.append(current)
            else:
                current.end = end
                current.text += " " + text
        return segments
