"""Command line entry point serving the facility auth API with uvicorn."""

from __future__ import annotations

import argparse
import os

import uvicorn

APP_FACTORY = "facility_auth.app:create_app"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="facility-auth",
        description="Serve the facility auth API.",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Configuration file loaded into the environment at startup.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind.")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Serve the app through its factory so reload and workers can re-import it.

    Worker processes inherit ENV_FILE, which ``create_app`` reads.
    """
    args = build_parser().parse_args(argv)
    if args.workers < 1:
        msg = "--workers must be at least 1"
        raise SystemExit(msg)

    os.environ["ENV_FILE"] = args.env_file
    uvicorn.run(
        APP_FACTORY,
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
    )


if __name__ == "__main__":
    main()
