"""
OpenAI Whisper adapter.

Whisper accepts at most 25MB per request and is rate limited per key, so
chunks are sent one at a time. Large files are first re-encoded as
low-bitrate speech audio, which usually avoids chunking altogether.
"""

from typing import Optional

import openai
from openai import AsyncOpenAI

from transcript.config import ProviderConfig
from transcript.errors import ProviderError, ProviderTimeoutError
from transcript.models import (
    ConcurrencyMode,
    ProviderCapability,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from transcript.providers.base import TranscriptionProvider

DEFAULT_MODEL = "whisper-1"
MAX_FILE_SIZE = 25 * 1024 * 1024  # 25MB


class OpenAIProvider(TranscriptionProvider):
    capability = ProviderCapability(
        name="openai",
        display_name="OpenAI Whisper",
        max_input_bytes=MAX_FILE_SIZE,
        concurrency=ConcurrencyMode.SEQUENTIAL,
        diarization=False,
        supports_compression=True,
        formats=("mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm", "ogg", "oga", "flac"),
    )

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        self.client = client

    async def _transcribe(
        self, unit_path: str, options: TranscriptionOptions, timeout: float
    ) -> TranscriptionResult:
        model = options.model or DEFAULT_MODEL
        client = self.client or AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            max_retries=0,
        )
        try:
            with open(unit_path, "rb") as audio_file:
                kwargs = {
                    "model": model,
                    "file": audio_file,
                    "response_format": "verbose_json" if options.timestamps else "json",
                    "timeout": timeout,
                }
                if options.language:
                    kwargs["language"] = options.language
                if options.timestamps:
                    kwargs["timestamp_granularities"] = ["segment", "word"]
                transcript = await client.audio.transcriptions.create(**kwargs)
        except openai.APITimeoutError:
            raise ProviderTimeoutError(self.name, timeout) from None
        except openai.APIStatusError as e:
            raise ProviderError(self.name, e.status_code, e.message) from e
        except openai.APIError as e:
            # Connection failures and unparsable responses
            raise ProviderError(self.name, None, str(e)) from e
        finally:
            if client is not self.client:
                await client.close()

        return self.format_result(transcript, model)

    def format_result(self, data, model: str) -> TranscriptionResult:
        """Convert a Whisper response into a TranscriptionResult.

        Raises:
            ProviderError: If the response does not have the expected shape
        """
        segments = []
        try:
            for i, seg in enumerate(_field(data, "segments") or []):
                no_speech_prob = _field(seg, "no_speech_prob")
                segments.append(
                    TranscriptionSegment(
                        id=i,
                        start=float(_field(seg, "start")),
                        end=float(_field(seg, "end")),
                        text=_field(seg, "text").strip(),
                        confidence=None if no_speech_prob is None else 1 - no_speech_prob,
                    )
                )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(
                self.name, None, f"unexpected response shape: {e!r}", transient=False
            ) from None

        text = data if isinstance(data, str) else _field(data, "text")
        if text is None:
            raise ProviderError(self.name, None, "response has no transcript text", transient=False)
        return TranscriptionResult(
            text=text,
            segments=segments or None,
            duration=_field(data, "duration"),
            language=_field(data, "language"),
            model=model,
            provider=self.name,
        )


def _field(obj, name: str):
    """Read a field from an SDK model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)
