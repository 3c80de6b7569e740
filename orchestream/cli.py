"""
Orchestream command-line interface.

Usage:
    python -m orchestream search "artist - song" --limit 5
    python -m orchestream resolve https://archive.org/details/item
    python -m orchestream stream URL --output track.m4a --max-bytes 1048576
    python -m orchestream status
    python -m orchestream engines

Results are printed to stdout as JSON; logs go to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from orchestream import __version__
from orchestream.config import load_config
from orchestream.engines.base import EngineCapability, StreamOptions
from orchestream.errors import AdmissionError, AllEnginesFailedError
from orchestream.streaming.orchestrator import StreamOrchestrator
from orchestream.utils.logging_setup import setup_logging_from_config

logger = logging.getLogger(__name__)

# Probe inputs for the engines command
PROBE_QUERY = "test"
PROBE_URLS = {
    "youtube": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "archive_org": "https://archive.org/details/test_audio",
    "direct_http": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3",
}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run_search(orchestrator: StreamOrchestrator, args: argparse.Namespace) -> int:
    tracks = await orchestrator.search(args.query, limit=args.limit)
    _print_json([track.to_dict() for track in tracks])
    return 0


async def _run_resolve(orchestrator: StreamOrchestrator, args: argparse.Namespace) -> int:
    track = await orchestrator.resolve(args.url)
    _print_json(track.to_dict())
    return 0


async def _run_stream(orchestrator: StreamOrchestrator, args: argparse.Namespace) -> int:
    options = StreamOptions(preferred_quality=args.quality, retry_on_error=not args.no_retry)
    handle = await orchestrator.open_stream(args.target, options)

    sink = open(args.output, "wb") if args.output else None
    try:
        async with handle:
            async for chunk in handle:
                if sink is not None:
                    sink.write(chunk)
                if args.max_bytes and handle.bytes_read >= args.max_bytes:
                    break
    finally:
        if sink is not None:
            sink.close()

    _print_json(handle.to_dict())
    return 0


async def _run_status(orchestrator: StreamOrchestrator, args: argparse.Namespace) -> int:
    report = await orchestrator.health.run_health_check()
    status = orchestrator.get_system_status()
    status["health_report"] = report.to_dict()
    _print_json(status)
    return 0


async def _run_engines(orchestrator: StreamOrchestrator, args: argparse.Namespace) -> int:
    """Probe every engine's declared capabilities directly."""
    results = {}
    for entry in orchestrator.registry:
        engine = entry.engine
        timeout = orchestrator.config.engine_config(engine.name).per_attempt_timeout
        checks: dict[str, Any] = {}

        for capability in sorted(entry.descriptor.capabilities, key=lambda c: c.value):
            try:
                if capability == EngineCapability.SEARCH:
                    tracks = await asyncio.wait_for(engine.search(PROBE_QUERY, 1, timeout), timeout)
                    checks[capability.value] = {"ok": True, "results": len(tracks)}
                elif capability == EngineCapability.RESOLVE_URL:
                    url = PROBE_URLS.get(engine.name)
                    if url is None:
                        checks[capability.value] = {"ok": None, "error": "no probe URL"}
                        continue
                    track = await asyncio.wait_for(engine.resolve_url(url, timeout), timeout)
                    checks[capability.value] = {"ok": True, "title": track.title}
                else:
                    checks[capability.value] = {"ok": None, "error": "not probed"}
            except Exception as e:
                checks[capability.value] = {"ok": False, "error": str(e) or e.__class__.__name__}

        results[engine.name] = {
            "descriptor": entry.descriptor.to_dict(),
            "checks": checks,
        }

    _print_json(results)
    return 0


COMMANDS = {
    "search": _run_search,
    "resolve": _run_resolve,
    "stream": _run_stream,
    "status": _run_status,
    "engines": _run_engines,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestream",
        description="Multi-source audio streaming orchestrator",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Search all engines in priority order")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=10)

    resolve = subparsers.add_parser("resolve", help="Resolve a URL to track metadata")
    resolve.add_argument("url")

    stream = subparsers.add_parser("stream", help="Open a stream and read it")
    stream.add_argument("target", help="URL to stream")
    stream.add_argument("--output", "-o", help="Write the bytes to this file")
    stream.add_argument("--max-bytes", type=int, default=0, help="Stop after this many bytes")
    stream.add_argument("--quality", default="bestaudio")
    stream.add_argument("--no-retry", action="store_true", help="Single attempt per engine")

    subparsers.add_parser("status", help="Show engine, admission and health status")
    subparsers.add_parser("engines", help="Probe every engine's capabilities")

    return parser


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level.upper()
    setup_logging_from_config(config.logging)

    # The CLI is a one-shot process
    config.health.enabled = False

    orchestrator = StreamOrchestrator(config)
    await orchestrator.start()
    try:
        return await COMMANDS[args.command](orchestrator, args)
    except AllEnginesFailedError as e:
        logger.error(str(e))
        _print_json({"error": "all_engines_failed", **e.to_dict()})
        return 2
    except AdmissionError as e:
        logger.error(str(e))
        _print_json({"error": "admission", "message": str(e)})
        return 3
    finally:
        await orchestrator.shutdown(grace_period=0)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
