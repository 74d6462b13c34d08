"""Command that runs a broker until SIGINT or SIGTERM."""

from __future__ import annotations

import argparse
import signal
import threading

from .broker import Broker
from .logx import COLOR_CYAN, Logger


def parse_address(addr: str) -> tuple[str, int]:
    """Parse "host:port" (host may be empty or a bracketed IPv6 address)."""
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port in address {addr!r}") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range in address {addr!r}")
    return host, port


def main(argv: list[str] | None = None) -> int:
    """Start a broker on the given address and serve until interrupted."""
    parser = argparse.ArgumentParser(prog="pubsub-broker", description="pub/sub broker")
    parser.add_argument(
        "-addr",
        "--addr",
        default=":9000",
        type=parse_address,
        help="broker listen address",
    )
    args = parser.parse_args(argv)
    host, port = args.addr
    shown = f"{host}:{port}"

    log = Logger("BROKER", COLOR_CYAN)
    log.info("Broker iniciando em %s", shown)

    broker = Broker()
    try:
        broker.start((host, port))
    except OSError as exc:
        log.error("Erro ao iniciar broker: %s", exc)
        return 1

    stop = threading.Event()

    def _on_signal(signum: int, frame: object) -> None:
        stop.set()

    previous = {
        sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        while not stop.wait(0.2):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    log.info("Encerrando broker...")
    broker.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())