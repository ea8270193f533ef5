"""
Command-line interface for Podlens.

This module provides the command-line interface for the Podlens application,
handling argument parsing, input validation, and command dispatch.

Key Functions:
- build_parser: Create and configure the argument parser
- build_config: Turn parsed arguments into a validated ServerConfig
- main: Main entry point for the CLI application

Commands:
- serve: Run the HTTP/WebSocket server
- tail: Stream logs of the matching pods to the terminal
- fetch: Fetch historical logs of the matching pods and export them

Example:
    ```bash
    podlens serve --namespace prod --port 8080
    podlens tail --pod '^api-' --namespace prod --timezone UTC
    podlens fetch --pod '^api-' --since 1h --previous --format json --output api.json
    ```
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional, Pattern

from .server import run_server
from .kube import load_kube, KubeTransport
from .models import ServerConfig
from .session import LogSession
from .streaming import StreamState
from .validation import (
    validate_regex_pattern, validate_port, validate_host, validate_timezone,
    validate_export_format, validate_time_filter, validate_max_buffer_entries,
)
from .view import raw_lines
from .exceptions import InvalidPatternError, InvalidDurationError, ConfigurationError
from .constants import (
    DEFAULT_HOST, DEFAULT_PORT, DEFAULT_MAX_BUFFER_ENTRIES, DEFAULT_TIMEZONE,
    DEFAULT_LOG_LEVEL, DEFAULT_UVICORN_LOG_LEVEL,
)

log = logging.getLogger('podlens')


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        log.warning(f"[config] Invalid {name}, using default: {default}")
        return default


def build_parser() -> argparse.ArgumentParser:
    """
    Build and configure the command-line argument parser.

    Environment variables are used as defaults where appropriate.

    Returns:
        argparse.ArgumentParser: Configured argument parser with all options

    Environment Variables:
        PODLENS_HOST: Default host to bind to (default: localhost)
        PODLENS_PORT: Default port to bind to (default: 8080)
        PODLENS_TIMEZONE: Default display timezone (default: Local)
        PODLENS_MAX_BUFFER_ENTRIES: Entry cap per viewer session (default: 50000)
    """
    env_host = os.getenv('PODLENS_HOST', DEFAULT_HOST)
    env_port = _env_int('PODLENS_PORT', DEFAULT_PORT)
    env_tz = os.getenv('PODLENS_TIMEZONE', DEFAULT_TIMEZONE)
    env_buffer = _env_int('PODLENS_MAX_BUFFER_ENTRIES', DEFAULT_MAX_BUFFER_ENTRIES)

    p = argparse.ArgumentParser("podlens", description="Multi-pod Kubernetes log viewer")
    p.add_argument("command", choices=['serve', 'tail', 'fetch'], help="Subcommand to run")
    p.add_argument("--pod", help="Regex pattern to match pod names (e.g. ^api-) (default: all pods)")
    p.add_argument("--namespace", default="default", help="Namespace to read logs from")
    p.add_argument("--kubeconfig", default=None, help="Path to kubeconfig (defaults to kube rules)")
    p.add_argument("--context", default=None, help="Kubecontext override")
    p.add_argument("--container", default=None, help="Container name (default: each pod's default container)")
    p.add_argument("--since", default=None, help="Only logs newer than this duration, e.g. 5m, 1h, 2d")
    p.add_argument("--previous", action="store_true", help="Fetch logs of the previous container instance")
    p.add_argument("--format", default="txt", help="Export format for fetch: txt, json or csv")
    p.add_argument("--output", default=None, help="File to write fetched logs to (default: stdout)")
    p.add_argument("--timezone", default=env_tz, help="Display timezone: Local, UTC or an IANA name (env: PODLENS_TIMEZONE)")
    p.add_argument("--no-timestamps", action="store_true", help="Hide timestamps in text output")
    p.add_argument("--max-entries", type=int, default=env_buffer, help="Buffer cap per session (env: PODLENS_MAX_BUFFER_ENTRIES)")
    p.add_argument("--host", default=env_host, help="Host to bind (env: PODLENS_HOST)")
    p.add_argument("--port", type=int, default=env_port, help="Port for HTTP server (env: PODLENS_PORT)")
    return p


def build_config(args: argparse.Namespace) -> ServerConfig:
    """
    Validate parsed arguments into a ServerConfig.

    Raises:
        ConfigurationError: If any server setting is invalid
    """
    return ServerConfig(
        host=validate_host(args.host),
        port=validate_port(args.port),
        namespace=args.namespace,
        kubeconfig=args.kubeconfig,
        context=args.context,
        max_buffer_entries=validate_max_buffer_entries(args.max_entries),
        default_timezone=validate_timezone(args.timezone),
        log_level=os.getenv('PODLENS_LOG_LEVEL', DEFAULT_LOG_LEVEL),
        uvicorn_log_level=os.getenv('PODLENS_UVICORN_LEVEL', DEFAULT_UVICORN_LOG_LEVEL),
    )


async def _open_session(config: ServerConfig, pod_regex: Optional[Pattern[str]], live: bool) -> LogSession:
    kube = await load_kube(config.kubeconfig, config.context)
    transport = KubeTransport(kube, config.namespace, pod_regex)
    return LogSession(transport, max_entries=config.max_buffer_entries,
                      timezone=config.default_timezone, live=live)


async def run_tail(config: ServerConfig, pod_regex: Optional[Pattern[str]], args: argparse.Namespace) -> int:
    """Stream logs of the matching pods to stdout until the stream ends."""
    session = await _open_session(config, pod_regex, live=True)
    session.set_view_options(show_timestamps=not args.no_timestamps)
    done = asyncio.Event()

    def on_event(event, payload):
        if event in ('append', 'reset') and payload:
            for line in raw_lines(payload, session.options):
                print(line, flush=True)
        elif event == 'status' and payload['state'] == StreamState.IDLE.value:
            done.set()

    session.add_listener(on_event)
    try:
        pods = await session.transport.list_pods()
        if not pods:
            print(f"No pods found in namespace {config.namespace}", file=sys.stderr)
            return 1
        await session.update_selection(sources=pods, container=args.container, time_filter=args.since)
        if session.stream.active:
            await done.wait()
        if session.stream.last_error:
            print(f"Log stream error: {session.stream.last_error}", file=sys.stderr)
            return 1
        return 0
    finally:
        await session.close()


async def run_fetch(config: ServerConfig, pod_regex: Optional[Pattern[str]], args: argparse.Namespace) -> int:
    """Fetch historical logs of the matching pods and write an export."""
    session = await _open_session(config, pod_regex, live=False)
    session.set_view_options(show_timestamps=not args.no_timestamps)
    try:
        pods = await session.transport.list_pods()
        if not pods:
            print(f"No pods found in namespace {config.namespace}", file=sys.stderr)
            return 1
        await session.update_selection(sources=pods, container=args.container,
                                       time_filter=args.since, previous=args.previous)
        result = session.export(args.format)
        if args.output:
            with open(args.output, 'wb') as f:
                f.write(result.content)
            print(f"Wrote {len(session.buffer)} entries to {args.output}", file=sys.stderr)
        else:
            text = result.content.decode("utf-8")
            sys.stdout.write(text if text.endswith("\n") or not text else text + "\n")
        return 0
    finally:
        await session.close()


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the Podlens CLI application.

    Raises:
        SystemExit: On configuration errors (exit code 2) or runtime errors (exit code 1)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate inputs
    try:
        pod_regex = None
        if args.pod:
            pod_regex = validate_regex_pattern(args.pod)
        config = build_config(args)
        args.since = validate_time_filter(args.since)
        args.format = validate_export_format(args.format)
    except (InvalidPatternError, InvalidDurationError, ConfigurationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.command == 'serve':
            asyncio.run(run_server(config, pod_regex))
            code = 0
        elif args.command == 'tail':
            code = asyncio.run(run_tail(config, pod_regex, args))
        else:
            code = asyncio.run(run_fetch(config, pod_regex, args))
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
        code = 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":  # pragma: no cover
    main()
