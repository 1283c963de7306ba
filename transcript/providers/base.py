"""
Shared contract for speech-to-text provider adapters.

An adapter transcribes exactly one unit of work (a whole file or one chunk)
per call. It never splits, never retries and never holds per-job state; the
orchestrator decides what to send and in which order.
"""

import logging
import os
from typing import Optional

import httpx

from transcript.config import ProviderConfig
from transcript.errors import OversizedInputError, ProviderError, ProviderTimeoutError
from transcript.media import file_size
from transcript.models import ProviderCapability, TranscriptionOptions, TranscriptionResult

logger = logging.getLogger(__name__)


class TranscriptionProvider:
    """Base class for provider adapters.

    Subclasses set ``capability`` and implement ``_transcribe``.
    """

    capability: ProviderCapability
    # Speaker labels can still be asked for in the transcript text itself
    inline_speaker_labels = False

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.capability.name

    async def transcribe(
        self,
        unit_path: str,
        options: TranscriptionOptions,
        duration_hint: Optional[float] = None,
    ) -> TranscriptionResult:
        """Transcribe a single file.

        Args:
            unit_path: File to send, already under the provider's size limit
            options: Job options (language, model, diarization, timestamps)
            duration_hint: Expected audio length, used to scale the timeout

        Returns:
            TranscriptionResult with chunk-local timestamps

        Raises:
            OversizedInputError: If the file exceeds capability.max_input_bytes
            ProviderError: If the service rejects the request or times out
        """
        self.check_size(unit_path)
        if options.diarize and not (self.capability.diarization or self.inline_speaker_labels):
            logger.warning(
                "%s does not return speaker labels; ignoring diarization",
                self.capability.display_name,
            )
        timeout = self.config.timeout_for(duration_hint)
        logger.info(
            "[%s] Transcribing %s (timeout %.0fs)", self.name, os.path.basename(unit_path), timeout
        )
        result = await self._transcribe(unit_path, options, timeout)
        logger.info("[%s] Transcription complete", self.name)
        return result

    async def _transcribe(
        self, unit_path: str, options: TranscriptionOptions, timeout: float
    ) -> TranscriptionResult:
        raise NotImplementedError

    def check_size(self, unit_path: str) -> int:
        size = file_size(unit_path)
        if size > self.capability.max_input_bytes:
            raise OversizedInputError(self.name, size, self.capability.max_input_bytes)
        return size


class HttpTranscriptionProvider(TranscriptionProvider):
    """Adapter that talks to its service with a plain httpx client.

    A fresh client is opened per call so adapters stay stateless; tests can
    pass a ``transport`` to intercept requests.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self.transport = transport

    async def post(self, url: str, timeout: float, **kwargs) -> dict:
        """POST to the service and return the decoded JSON body.

        Raises:
            ProviderTimeoutError: If the request times out
            ProviderError: On a non-success status, transport failure or
                an unparsable body
        """
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException:
            raise ProviderTimeoutError(self.name, timeout) from None
        except httpx.HTTPError as e:
            raise ProviderError(self.name, None, str(e)) from e

        if not response.is_success:
            raise ProviderError(self.name, response.status_code, response.text.strip())
        try:
            return response.json()
        except ValueError:
            raise ProviderError(
                self.name, response.status_code, "response body is not valid JSON",
                transient=False,
            ) from None
