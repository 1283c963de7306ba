"""
Provider registry.

Maps a provider name to a factory that builds an adapter from Settings.
Adding a provider means registering a factory here; the orchestrator only
ever sees the TranscriptionProvider interface.
"""

from typing import Callable

from transcript.config import Settings
from transcript.errors import UnknownProviderError
from transcript.models import ProviderCapability
from transcript.providers.base import HttpTranscriptionProvider, TranscriptionProvider
from transcript.providers.elevenlabs import ElevenLabsProvider
from transcript.providers.gemini import GeminiProvider
from transcript.providers.openai_whisper import OpenAIProvider

ProviderFactory = Callable[[Settings], TranscriptionProvider]

_REGISTRY: dict[str, tuple[ProviderCapability, ProviderFactory]] = {}


def register_provider(
    capability: ProviderCapability, factory: ProviderFactory
) -> None:
    """Register (or replace) the factory for capability.name."""
    _REGISTRY[capability.name] = (capability, factory)


def available_providers() -> list[str]:
    return sorted(_REGISTRY)


def provider_capability(name: str) -> ProviderCapability:
    """Look up a provider's capability without building it (no credentials needed)."""
    try:
        return _REGISTRY[name][0]
    except KeyError:
        raise UnknownProviderError(name, available_providers()) from None


def get_provider(name: str, settings: Settings) -> TranscriptionProvider:
    """Build the adapter registered under name.

    Raises:
        UnknownProviderError: If no provider is registered under name
        ConfigurationError: If the provider's credentials are missing
    """
    provider_capability(name)
    _, factory = _REGISTRY[name]
    return factory(settings)


for _provider_class in (ElevenLabsProvider, GeminiProvider, OpenAIProvider):
    register_provider(
        _provider_class.capability,
        lambda settings, cls=_provider_class: cls(settings.provider_config(cls.capability.name)),
    )


__all__ = [
    "ProviderFactory",
    "TranscriptionProvider",
    "HttpTranscriptionProvider",
    "ElevenLabsProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "register_provider",
    "available_providers",
    "provider_capability",
    "get_provider",
]
