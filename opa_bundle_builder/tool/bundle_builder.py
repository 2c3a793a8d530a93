"""Command line tool for building and serving OPA bundles from ConfigMaps."""

import argparse
import asyncio
import logging
import os
import sys
import traceback

from opa_bundle_builder.config import LOG_LEVEL_ENV
from opa_bundle_builder.exceptions import BundleBuilderException
from . import build, serve

_LOGGER = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Assembles policy ConfigMaps into an Open Policy Agent bundle.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        default=os.environ.get(LOG_LEVEL_ENV, "").upper() or None,
        help=f"Log level, defaults to the {LOG_LEVEL_ENV} environment variable",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    serve.ServeAction.register(subparsers)
    build.BuildAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """opa-bundle-builder command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level or logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except BundleBuilderException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("opa-bundle-builder error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
