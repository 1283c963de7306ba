"""Command line interface for the transcription pipeline."""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from transcript.config import Settings
from transcript.errors import TranscriptError
from transcript.formatter import OUTPUT_FORMATS
from transcript.media import SUPPORTED_EXTENSIONS
from transcript.models import TranscriptionOptions
from transcript.orchestrator import transcribe_file
from transcript.providers import available_providers, provider_capability


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcript",
        description="Speech-to-text with automatic compression and chunking for large files",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    commands = parser.add_subparsers(dest="command")

    transcribe = commands.add_parser("transcribe", help="Transcribe an audio/video file")
    transcribe.add_argument(
        "--input",
        required=True,
        help=f"Input audio/video file ({', '.join('.' + e for e in SUPPORTED_EXTENSIONS)})",
    )
    transcribe.add_argument(
        "--output", help="Output file path (defaults to input name + format extension)"
    )
    transcribe.add_argument(
        "--provider", required=True, help=f"Provider: {', '.join(available_providers())}"
    )
    transcribe.add_argument("--language", help="Language code, e.g. en, es, fr")
    transcribe.add_argument("--model", help="Specific model to use")
    transcribe.add_argument(
        "--diarize", action="store_true", help="Enable speaker diarization"
    )
    transcribe.add_argument(
        "--no-timestamps",
        dest="timestamps",
        action="store_false",
        help="Do not request segment/word timestamps",
    )
    transcribe.add_argument(
        "--format", default="text", help=f"Output format: {', '.join(OUTPUT_FORMATS)}"
    )
    transcribe.add_argument("--chunk-seconds", type=float, help="Chunk length in seconds")
    transcribe.add_argument("--overlap-seconds", type=float, help="Chunk overlap in seconds")

    commands.add_parser("providers", help="Show available providers and their limits")

    serve = commands.add_parser("serve", help="Run the HTTP job API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def describe_providers() -> str:
    lines = ["Available transcription providers:", ""]
    for name in available_providers():
        capability = provider_capability(name)
        lines.append(f"{name.upper()} ({capability.display_name})")
        lines.append(f"  Max file size: {capability.max_input_bytes / 1024 / 1024:.0f}MB")
        lines.append(f"  Chunk dispatch: {capability.concurrency.value}")
        lines.append(f"  Speaker diarization: {'yes' if capability.diarization else 'no'}")
        if capability.supports_compression:
            lines.append("  Large files: compressed first, chunked if still too large")
        lines.append("")
    return "\n".join(lines)


def run_transcribe(args, settings: Settings) -> int:
    options = TranscriptionOptions(
        provider=args.provider,
        language=args.language,
        model=args.model,
        diarize=args.diarize,
        timestamps=args.timestamps,
        format=args.format,
    )
    output_path = asyncio.run(
        transcribe_file(args.input, options, settings, output_path=args.output)
    )
    print(f"Transcription complete!\nOutput: {output_path}")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "providers":
        print(describe_providers())
        return 0

    if args.command == "serve":
        import uvicorn

        uvicorn.run("transcript.api:app", host=args.host, port=args.port)
        return 0

    if args.command != "transcribe":
        parser.print_help()
        return 1

    try:
        settings = Settings.from_env()
        overrides = {}
        if args.chunk_seconds is not None:
            overrides["chunk_seconds"] = args.chunk_seconds
        if args.overlap_seconds is not None:
            overrides["overlap_seconds"] = args.overlap_seconds
        if overrides:
            settings = replace(settings, **overrides)
        return run_transcribe(args, settings)
    except TranscriptError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
