"""
Google Gemini adapter.

Audio is sent inline (base64) with a transcription prompt. Gemini returns
plain text only: speaker labels and timestamps, when requested, appear
inline in that text rather than as structured segments.
"""

import base64

from transcript.errors import ProviderError
from transcript.media import media_extension
from transcript.models import (
    ConcurrencyMode,
    ProviderCapability,
    TranscriptionOptions,
    TranscriptionResult,
)
from transcript.providers.base import HttpTranscriptionProvider

DEFAULT_MODEL = "gemini-2.0-flash"
# Inline requests above this are slow and often rejected; larger files are chunked
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
MAX_OUTPUT_TOKENS = 8192

MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "opus": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


def build_prompt(options: TranscriptionOptions) -> str:
    prompt = "Transcribe this audio accurately. "
    if options.language:
        prompt += f"The audio is in {options.language}. "
    if options.diarize:
        prompt += "Identify and label different speakers (Speaker A, Speaker B, etc.). "
    if options.timestamps:
        prompt += "Include timestamps for each segment in [HH:MM:SS] format. "
    prompt += "Provide only the transcription without any additional commentary."
    return prompt


class GeminiProvider(HttpTranscriptionProvider):
    capability = ProviderCapability(
        name="gemini",
        display_name="Google Gemini",
        max_input_bytes=MAX_FILE_SIZE,
        concurrency=ConcurrencyMode.PARALLEL,
        diarization=False,
        formats=tuple(MIME_TYPES),
    )
    inline_speaker_labels = True

    async def _transcribe(
        self, unit_path: str, options: TranscriptionOptions, timeout: float
    ) -> TranscriptionResult:
        model = options.model or DEFAULT_MODEL
        with open(unit_path, "rb") as audio_file:
            audio = base64.b64encode(audio_file.read()).decode("ascii")
        mime_type = MIME_TYPES.get(media_extension(unit_path), "audio/mpeg")

        body = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": audio}},
                        {"text": build_prompt(options)},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0, "maxOutputTokens": MAX_OUTPUT_TOKENS},
        }
        data = await self.post(
            f"{self.config.base_url}/models/{model}:generateContent",
            timeout,
            headers={"x-goog-api-key": self.config.api_key},
            json=body,
        )

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(
                self.name, None, "response contains no transcript text", transient=False
            ) from None
        return TranscriptionResult(text=text.strip(), model=model, provider=self.name)
