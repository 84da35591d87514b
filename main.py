"""Command-line interface for the user directory service."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import httpx

from userdirectory.config import Settings, load_settings
from userdirectory.errors import StoreFailure
from userdirectory.store import UserStore, open_store

logger = logging.getLogger("userdirectory.main")

_DEFAULT_SERVICE_URL = "http://localhost:5000"


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML settings file (default: USER_DIRECTORY_CONFIG or config/settings.yaml)",
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User directory service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    init_parser = subparsers.add_parser(
        "init-db", help="Create the users table/collection and its indexes"
    )
    _add_config_argument(init_parser)

    serve_parser = subparsers.add_parser("serve", help="Start the REST + SOAP listener")
    serve_parser.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default: PORT or 5000)",
    )
    _add_config_argument(serve_parser)

    status_parser = subparsers.add_parser(
        "status", help="Query the health probe of a running service"
    )
    status_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of the running service (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "status"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    try:
        return load_settings(Path(config).expanduser() if config else None)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _open_store(settings: Settings) -> UserStore:
    """Open and initialise the record store, refusing to continue without it."""

    store = open_store(settings)
    try:
        store.initialize()
    except StoreFailure as exc:
        raise SystemExit(f"Record store unavailable: {exc}") from exc

    if not store.ping():
        raise SystemExit(f"Record store unavailable: {settings.store} did not answer a ping")

    logger.info("Record store ready (%s)", settings.store)
    return store


def _serve(*, settings: Settings, store: UserStore) -> None:
    from userdirectory.service import create_app
    import uvicorn

    logger.info("Starting user directory on http://%s:%s", settings.host, settings.port)
    logger.info("SOAP service     -> %s", settings.soap_path)
    logger.info("WSDL             -> %s?wsdl", settings.soap_path)
    logger.info("REST API         -> %s", settings.api_prefix)

    app = create_app(settings=settings, store=store)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


def _show_status(service_url: str) -> int:
    endpoint = service_url.rstrip("/") + "/health"

    try:
        response = httpx.get(endpoint, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact user directory: {exc}")
        return 1

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return 1

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    print(f"Service:  {payload.get('service', 'unknown')}")
    print(f"Status:   {payload.get('status', 'unknown')}")
    print(f"Store:    {payload.get('mongodb', 'unknown')}")
    print(f"Checked:  {payload.get('timestamp', 'unknown')}")
    return 0 if payload.get("mongodb") == "connected" else 1


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "status":
        raise SystemExit(_show_status(args.service_url))

    settings = _load_settings(args.config)
    if args.command == "serve":
        overrides = {}
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = args.port
        if overrides:
            settings = replace(settings, **overrides)

    store = _open_store(settings)

    if args.command == "serve":
        _serve(settings=settings, store=store)
    elif args.command == "init-db":
        print("Record store initialisation complete.")


if __name__ == "__main__":
    main()
