"""Command that runs the demo publisher or one of the demo subscribers."""

from __future__ import annotations

import argparse

from .logx import COLOR_GRAY, Logger
from .publisher import run_publisher
from .subscriber import run_subscriber


def main(argv: list[str] | None = None) -> int:
    """Run the app chosen by -mode; an unknown mode returns 1."""
    parser = argparse.ArgumentParser(prog="pubsub-demo", description="pub/sub demo apps")
    parser.add_argument("-mode", "--mode", default="publisher", help="publisher|subscriber")
    parser.add_argument("-role", "--role", default="painel", help="painel|alertas")
    args = parser.parse_args(argv)

    if args.mode == "publisher":
        return run_publisher()
    if args.mode == "subscriber":
        return run_subscriber(args.role)

    log = Logger("EXAMPLES", COLOR_GRAY)
    log.warn("Modo invalido: %s", args.mode)
    log.info("Use: -mode publisher|subscriber -role painel|alertas")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())