"""Command line interface for the NSE proxy."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional, TextIO

from nse_proxy.batch.compiler import http_status_for
from nse_proxy.batch.orchestrator import BatchOrchestrator
from nse_proxy.config.settings import ProxySettings, load_settings
from nse_proxy.errors import ConfigurationError, InputError
from nse_proxy.models import BatchStatus
from nse_proxy.security.validation import parse_symbol_list, sanitize_symbols
from nse_proxy.upstream.endpoints import valid_endpoint_names

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(
        prog="nse-proxy",
        description="Fetch NSE quote data through a browser-like upstream session",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch", help="Fetch a batch of symbols and print the JSON result", allow_abbrev=False
    )
    fetch.add_argument(
        "--symbols",
        required=True,
        help="Comma-separated symbols, e.g. RELIANCE,TCS,HDFCBANK",
    )
    fetch.add_argument(
        "--endpoint",
        choices=valid_endpoint_names(),
        default="quote",
        help="Upstream endpoint kind",
    )
    fetch.add_argument(
        "--window-size",
        type=int,
        help="Maximum concurrent upstream requests per window",
    )
    fetch.add_argument(
        "--deadline",
        type=float,
        help="Processing deadline in seconds",
    )
    fetch.add_argument(
        "--delay",
        type=float,
        help="Pause between windows in seconds",
    )
    fetch.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation (0 for compact output)",
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP proxy with uvicorn", allow_abbrev=False)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("endpoints", help="List supported endpoint kinds")
    return parser


def _settings_for(args: argparse.Namespace) -> ProxySettings:
    overrides = {}
    if args.window_size is not None:
        overrides["window_size"] = args.window_size
    if args.deadline is not None:
        overrides["processing_deadline"] = args.deadline
    if args.delay is not None:
        overrides["window_delay"] = args.delay
    return load_settings(**overrides)


def run_fetch(
    args: argparse.Namespace,
    *,
    orchestrator: BatchOrchestrator | None = None,
    out: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    try:
        symbols = sanitize_symbols(parse_symbol_list(args.symbols))
        orchestrator = orchestrator or BatchOrchestrator(_settings_for(args))
    except (InputError, ConfigurationError) as error:
        print(json.dumps({"error": error.user_message, "code": error.code.value}), file=sys.stderr)
        return EXIT_USAGE

    result = asyncio.run(orchestrator.run_batch(symbols, args.endpoint))
    payload = result.to_payload()
    payload["meta"]["httpStatus"] = http_status_for(result)
    print(json.dumps(payload, indent=args.indent or None, ensure_ascii=False), file=out)
    return EXIT_OK if result.status is BatchStatus.COMPLETE_SUCCESS else EXIT_FAILURES


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "endpoints":
        for name in valid_endpoint_names():
            print(name)
        return EXIT_OK
    if args.command == "serve":
        import uvicorn

        uvicorn.run("nse_proxy.app.api:app", host=args.host, port=args.port, reload=False)
        return EXIT_OK
    return run_fetch(args)


__all__ = ["build_parser", "main", "run_fetch"]
