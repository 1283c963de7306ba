"""
Configuration for the transcription pipeline.

Settings are read from the environment once, at the edge of the program
(CLI or API startup), and passed down explicitly. Nothing below this module
reads os.environ on its own.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from transcript.errors import ConfigurationError

# Default configuration
DEFAULT_CHUNK_LENGTH = 600  # seconds (10 minutes)
DEFAULT_CHUNK_OVERLAP = 10  # seconds shared with the next chunk
DEFAULT_COMPRESS_BITRATE = "32k"
DEFAULT_REQUEST_TIMEOUT = 120.0  # seconds per request, before scaling
DEFAULT_TIMEOUT_PER_AUDIO_SECOND = 2.0
DEFAULT_OUTPUT_FORMAT = "text"

# Provider name -> (API key variable, default base URL)
PROVIDER_ENDPOINTS = {
    "openai": ("OPENAI_API_KEY", "https://api.openai.com/v1"),
    "elevenlabs": ("ELEVENLABS_API_KEY", "https://api.elevenlabs.io/v1"),
    "gemini": ("GOOGLE_API_KEY", "https://generativelanguage.googleapis.com/v1beta"),
}


@dataclass(frozen=True)
class ProviderConfig:
    """Everything an adapter needs to reach its service."""

    name: str
    api_key: str
    base_url: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    timeout_per_audio_second: float = DEFAULT_TIMEOUT_PER_AUDIO_SECOND

    def timeout_for(self, duration_hint: Optional[float] = None) -> float:
        """Request timeout scaled to the expected audio duration."""
        if not duration_hint:
            return self.request_timeout
        return self.request_timeout + self.timeout_per_audio_second * duration_hint

    def __repr__(self):
        # Keep credentials out of logs and tracebacks
        return f"ProviderConfig(name={self.name!r}, base_url={self.base_url!r})"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once and passed by reference."""

    api_keys: Mapping[str, str] = field(default_factory=dict)
    base_urls: Mapping[str, str] = field(default_factory=dict)
    chunk_seconds: float = DEFAULT_CHUNK_LENGTH
    overlap_seconds: float = DEFAULT_CHUNK_OVERLAP
    compress_bitrate: str = DEFAULT_COMPRESS_BITRATE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    timeout_per_audio_second: float = DEFAULT_TIMEOUT_PER_AUDIO_SECOND
    work_dir: Optional[str] = None

    def __post_init__(self):
        if self.chunk_seconds <= 0:
            raise ConfigurationError("chunk length must be positive")
        if self.overlap_seconds < 0:
            raise ConfigurationError("chunk overlap cannot be negative")
        if self.overlap_seconds >= self.chunk_seconds:
            raise ConfigurationError(
                f"chunk overlap ({self.overlap_seconds}s) must be shorter than "
                f"the chunk length ({self.chunk_seconds}s)"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        api_keys = {}
        base_urls = {}
        for name, (key_var, _) in PROVIDER_ENDPOINTS.items():
            if env.get(key_var):
                api_keys[name] = env[key_var]
            url_var = f"TRANSCRIPT_{name.upper()}_BASE_URL"
            if env.get(url_var):
                base_urls[name] = env[url_var]

        return cls(
            api_keys=api_keys,
            base_urls=base_urls,
            chunk_seconds=_env_float(env, "TRANSCRIPT_CHUNK_SECONDS", DEFAULT_CHUNK_LENGTH),
            overlap_seconds=_env_float(env, "TRANSCRIPT_OVERLAP_SECONDS", DEFAULT_CHUNK_OVERLAP),
            compress_bitrate=env.get("TRANSCRIPT_COMPRESS_BITRATE", DEFAULT_COMPRESS_BITRATE),
            request_timeout=_env_float(env, "TRANSCRIPT_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            timeout_per_audio_second=_env_float(
                env, "TRANSCRIPT_TIMEOUT_PER_AUDIO_SECOND", DEFAULT_TIMEOUT_PER_AUDIO_SECOND
            ),
            work_dir=env.get("TRANSCRIPT_WORK_DIR") or None,
        )

    def with_api_key(self, provider: str, api_key: str) -> "Settings":
        """Return a copy with one provider's API key replaced."""
        keys = dict(self.api_keys)
        keys[provider] = api_key
        return replace(self, api_keys=keys)

    def provider_config(self, name: str) -> ProviderConfig:
        """Build the connection config for one provider.

        Raises:
            ConfigurationError: If the provider's API key is not set
        """
        key_var, default_url = PROVIDER_ENDPOINTS.get(name, (f"{name.upper()}_API_KEY", ""))
        api_key = self.api_keys.get(name)
        if not api_key:
            raise ConfigurationError(f"{key_var} environment variable is required")
        return ProviderConfig(
            name=name,
            api_key=api_key,
            base_url=self.base_urls.get(name, default_url).rstrip("/"),
            request_timeout=self.request_timeout,
            timeout_per_audio_second=self.timeout_per_audio_second,
        )

    def __repr__(self):
        return (
            f"Settings(providers={sorted(self.api_keys)}, chunk_seconds={self.chunk_seconds}, "
            f"overlap_seconds={self.overlap_seconds}, work_dir={self.work_dir!r})"
        )


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
