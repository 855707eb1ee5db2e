"""Command line entry point: run the router or inspect model mappings."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from app.core.config import Settings, setup_logging
from app.transform.model_mapper import ModelMapper

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="max-plan-router",
        description="Proxy OpenAI-style requests to the Anthropic messages API.",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", help="Bind address (default: $HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Bind port (default: $PORT or 3000)")
    serve.add_argument("--log-level", help="Log level (default: $LOG_LEVEL or INFO)")

    resolve = subparsers.add_parser("resolve", help="Show how model names are mapped")
    resolve.add_argument("models", nargs="+", metavar="MODEL")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
        args.host = None
        args.port = None
        args.log_level = None
    return args


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from app.main import create_app

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    settings = dataclasses.replace(settings, **overrides)

    setup_logging(settings.log_level)
    logger.info(
        f"Starting router on http://{settings.host}:{settings.port} "
        f"-> {settings.upstream_base_url}"
    )

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def cmd_resolve(args: argparse.Namespace, settings: Settings) -> int:
    mapper = ModelMapper.from_settings(settings)
    for model in args.models:
        print(mapper.resolve_with_reason(model).describe())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env()

    if args.command == "resolve":
        return cmd_resolve(args, settings)
    return cmd_serve(args, settings)


if __name__ == "__main__":
    sys.exit(main())
