"""CLI entry point for ActionSync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

import httpx

from .config import Config, load_config
from .device import ActionSync
from .errors import ActionSyncError

DEFAULT_SERVER_URL = "http://localhost:3000"


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, for piping CLI logs into other tools."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        origin = getattr(record, "origin", None)
        if origin:
            entry["origin"] = origin
        if record.exc_info:
            entry["exc"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(entry, default=str)


LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Send log records to stderr so command output on stdout stays parseable.

    An explicit ``log_level`` wins over ``verbose``.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    logging.basicConfig(level=level, handlers=[handler])

    # httpx logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _server_url(args: argparse.Namespace, config: Config) -> str:
    return args.url or config.sync.server_url or DEFAULT_SERVER_URL


def _open_device(args: argparse.Namespace) -> ActionSync | None:
    """Build a persistent, non-auto-syncing device from config and flags."""
    config = load_config(args.config)
    if args.origin:
        config.device.origin = args.origin
    if args.url:
        config.sync.server_url = args.url
    if not config.device.origin:
        print("A device origin is required (--origin or device.origin)", file=sys.stderr)
        return None

    config.sync.auto_sync = False
    device = ActionSync.from_config(config)
    device.load()
    return device


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the log authority server."""
    import uvicorn

    from .authority import create_app

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    print("Starting ActionSync authority")
    print(f"Sync endpoint: http://{host}:{port}/sync")
    print(f"Health check:  http://{host}:{port}/health")

    app = create_app(config)
    verbose = getattr(args, "verbose", False)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
    )
    await server.serve()
    return 0


async def _request(method: str, url: str) -> int:
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.request(method, url)
    except httpx.TransportError as e:
        print(f"Could not reach {url}: {e}", file=sys.stderr)
        return 1

    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.is_success else 1


async def cmd_health(args: argparse.Namespace) -> int:
    """Query the authority's health endpoint."""
    config = load_config(args.config)
    return await _request("GET", f"{_server_url(args, config)}/health")


async def cmd_stats(args: argparse.Namespace) -> int:
    """Query the authority's statistics."""
    config = load_config(args.config)
    return await _request("GET", f"{_server_url(args, config)}/stats")


async def cmd_clear(args: argparse.Namespace) -> int:
    """Reset the authority's log."""
    config = load_config(args.config)
    return await _request("POST", f"{_server_url(args, config)}/clear")


def cmd_dispatch(args: argparse.Namespace) -> int:
    """Queue an action on the local device."""
    device = _open_device(args)
    if device is None:
        return 1

    try:
        payload = json.loads(args.payload)
        action_id = device.dispatch(payload, args.dedup_key or None)
    except json.JSONDecodeError as e:
        print(f"Payload is not valid JSON: {e}", file=sys.stderr)
        return 1
    except ActionSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        device.close()

    print(action_id)
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Sync the local device once and print received payloads."""
    device = _open_device(args)
    if device is None:
        return 1

    try:
        result = await device.sync()
    except ActionSyncError as e:
        print(f"Sync failed: {e}", file=sys.stderr)
        return 1
    finally:
        device.close()

    print(json.dumps({
        "pushed": result.pushed,
        "watermark": str(result.watermark),
        "payloads": result.applied_payloads,
    }, indent=2))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export the pending queue as a JSON document."""
    device = _open_device(args)
    if device is None:
        return 1

    try:
        text = device.reexport_last() if args.last else device.export()
    except ActionSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        device.close()

    if args.output:
        Path(args.output).write_text(text)
        print(f"Exported to {args.output}")
    else:
        print(text)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Print the payloads of an export document in replay order."""
    device = _open_device(args)
    if device is None:
        return 1

    try:
        text = Path(args.file).read_text()
        payloads = device.import_json(text)
    except OSError as e:
        print(f"Could not read {args.file}: {e}", file=sys.stderr)
        return 1
    except ActionSyncError as e:
        print(f"Import failed: {e}", file=sys.stderr)
        return 1
    finally:
        device.close()

    print(json.dumps(payloads, indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show the local device's queue status."""
    device = _open_device(args)
    if device is None:
        return 1

    try:
        print(json.dumps(device.get_status(), indent=2))
    finally:
        device.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="actionsync",
        description="Event-sourced action log synchronized across devices",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=sorted(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help=f"Authority URL (default: sync.server_url or {DEFAULT_SERVER_URL})",
    )
    parser.add_argument(
        "--origin",
        type=str,
        default=None,
        help="Device origin for local commands (default: device.origin)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Server commands
    serve_parser = subparsers.add_parser("serve", help="Run the log authority server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    subparsers.add_parser("health", help="Check authority health").set_defaults(func=cmd_health)
    subparsers.add_parser("stats", help="Show authority statistics").set_defaults(func=cmd_stats)
    subparsers.add_parser("clear", help="Reset the authority log").set_defaults(func=cmd_clear)

    # Device commands
    dispatch_parser = subparsers.add_parser("dispatch", help="Queue an action")
    dispatch_parser.add_argument("payload", help="Action payload as a JSON object")
    dispatch_parser.add_argument(
        "-k", "--dedup-key",
        action="append",
        help="Payload field identifying the logical entity (repeatable)",
    )
    dispatch_parser.set_defaults(func=cmd_dispatch)

    subparsers.add_parser("sync", help="Sync once with the authority").set_defaults(func=cmd_sync)
    subparsers.add_parser("status", help="Show local queue status").set_defaults(func=cmd_status)

    export_parser = subparsers.add_parser("export", help="Export pending actions")
    export_parser.add_argument("-o", "--output", help="Write to file instead of stdout")
    export_parser.add_argument(
        "--last",
        action="store_true",
        help="Re-export the last exported document",
    )
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Replay an exported document")
    import_parser.add_argument("file", help="Path to an export document")
    import_parser.set_defaults(func=cmd_import)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
