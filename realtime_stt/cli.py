"""
Command-line interface for realtime-stt.

Subcommands:
- realtime-stt stream FILE: stream an audio file through a recording and print
  utterances (or stable segments) as they become final
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from . import __version__
from .audio import DEFAULT_CHUNK_SIZE, FileAudioSource
from .client import RealtimeClient
from .config import ClientSettings, SttSessionConfig
from .exceptions import ConfigurationError, RealtimeSttError
from .models import RealtimeResult, RealtimeSegment, RealtimeUtterance, RecordingState
from .segment_buffer import RealtimeSegmentBuffer
from .session import Connector
from .utterance_buffer import RealtimeUtteranceBuffer

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Show lifecycle logs with --verbose, warnings and errors otherwise."""
    level = logging.DEBUG if verbose else logging.WARNING

    # Configure basic format first (only works on first call)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Always set level directly (works on subsequent calls)
    logging.getLogger().setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="realtime-stt",
        description="Real-time speech-to-text streaming client.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # ============================================================================
    # stream subcommand
    # ============================================================================
    p_stream = subparsers.add_parser(
        "stream",
        help="Stream an audio file and print transcribed utterances.",
    )
    p_stream.add_argument("file", type=Path, help="Audio file to stream.")
    p_stream.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to ClientSettings JSON file. Precedence: CLI flags > config file > env vars > defaults.",
    )
    p_stream.add_argument("--model", default=None, help="Model name (default: stt-rt-preview).")
    p_stream.add_argument(
        "--api-key",
        default=None,
        help="API key (default: REALTIME_STT_API_KEY).",
    )
    p_stream.add_argument("--url", default=None, help="WebSocket endpoint URL.")
    p_stream.add_argument(
        "--audio-format",
        default="auto",
        help='Audio format, e.g. "pcm_s16le" (default: auto-detect).',
    )
    p_stream.add_argument("--sample-rate", type=int, default=None, help="Sample rate for raw PCM.")
    p_stream.add_argument("--num-channels", type=int, default=None, help="Channel count for raw PCM.")
    p_stream.add_argument(
        "--language-hint",
        action="append",
        default=None,
        dest="language_hints",
        help="Expected language code (repeatable).",
    )
    p_stream.add_argument("--diarize", action="store_true", help="Enable speaker diarization.")
    p_stream.add_argument("--language-id", action="store_true", help="Enable language identification.")
    p_stream.add_argument(
        "--endpoints",
        action="store_true",
        help="Enable endpoint detection; utterances are printed at each endpoint.",
    )
    p_stream.add_argument(
        "--segments",
        action="store_true",
        help="Print stable segments as they are released instead of utterances.",
    )
    p_stream.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text).",
    )
    p_stream.add_argument(
        "--pace",
        type=float,
        default=0.12,
        help="Seconds between chunks to simulate real time; 0 sends as fast as possible (default: 0.12).",
    )
    p_stream.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help=f"Bytes per audio chunk (default: {DEFAULT_CHUNK_SIZE}).",
    )
    p_stream.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    return parser


def _settings_from_args(args: argparse.Namespace) -> ClientSettings:
    return ClientSettings.load(
        config_file=args.config,
        ws_url=args.url,
        api_key=args.api_key,
        model=args.model,
    )


def _session_config_from_args(args: argparse.Namespace, settings: ClientSettings) -> SttSessionConfig:
    """Build the session configuration; flags left unset are omitted from the config frame."""
    return SttSessionConfig(
        model=settings.model,
        audio_format=args.audio_format,
        sample_rate=args.sample_rate,
        num_channels=args.num_channels,
        language_hints=args.language_hints,
        enable_speaker_diarization=True if args.diarize else None,
        enable_language_identification=True if args.language_id else None,
        enable_endpoint_detection=True if args.endpoints else None,
    )


class _Printer:
    """Writes segments and utterances in the selected format."""

    def __init__(self, fmt: str, out: TextIO) -> None:
        self.fmt = fmt
        self.out = out

    def write(self, item: RealtimeSegment | RealtimeUtterance) -> None:
        if self.fmt == "json":
            print(json.dumps(item.to_dict(), ensure_ascii=False), file=self.out)
            return
        text = item.text.strip()
        if not text:
            return
        prefix = f"[{item.speaker}] " if item.speaker else ""
        print(f"{prefix}{text}", file=self.out, flush=True)


async def run_stream(
    args: argparse.Namespace,
    connector: Connector | None = None,
    out: TextIO | None = None,
) -> int:
    """Stream ``args.file`` and print results until the service finishes.

    Raises:
        RealtimeSttError: If the recording ends with an error.
    """
    settings = _settings_from_args(args)
    config = _session_config_from_args(args, settings)
    client = RealtimeClient.from_settings(settings, connector=connector)

    if args.chunk_size <= 0:
        raise ConfigurationError(f"--chunk-size must be positive, got {args.chunk_size}")
    source = FileAudioSource(args.file, chunk_size=args.chunk_size, pace_sec=args.pace or None)

    printer = _Printer(args.format, out or sys.stdout)
    segment_buffer = RealtimeSegmentBuffer()
    utterance_buffer = RealtimeUtteranceBuffer()
    errors: list[Exception] = []

    def on_result(result: RealtimeResult) -> None:
        if args.segments:
            for segment in segment_buffer.add(result):
                printer.write(segment)
        else:
            utterance_buffer.add_result(result)

    def on_endpoint() -> None:
        if args.segments:
            return
        utterance = utterance_buffer.mark_endpoint()
        if utterance is not None:
            printer.write(utterance)

    recording = client.record(config, source)
    recording.on("result", on_result)
    recording.on("endpoint", on_endpoint)
    recording.on("error", errors.append)

    logger.info("Streaming %s", args.file)

    exhausted = asyncio.ensure_future(source.wait_exhausted())
    closed = asyncio.ensure_future(recording.wait_closed())
    try:
        await asyncio.wait({exhausted, closed}, return_when=asyncio.FIRST_COMPLETED)
        if not recording.state.is_terminal:
            await recording.stop()
    finally:
        exhausted.cancel()
        if not closed.done():
            recording.cancel()
        await closed

    if recording.state == RecordingState.ERROR:
        raise errors[0] if errors else RealtimeSttError("Recording failed")

    # Text after the last endpoint (or everything, without endpoint detection).
    if args.segments:
        for segment in segment_buffer.flush_all():
            printer.write(segment)
    else:
        tail = utterance_buffer.mark_endpoint()
        if tail is not None:
            printer.write(tail)

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """
    Main CLI entry point.

    Returns:
        0 on success, 1 on RealtimeSttError, 2 on unexpected error.
    """
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        setup_logging(args.verbose)

        if args.command == "stream":
            return asyncio.run(run_stream(args))

        parser.error(f"Unknown command: {args.command}")
        return 2

    except RealtimeSttError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
