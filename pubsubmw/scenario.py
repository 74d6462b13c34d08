"""Shared pieces of the industrial IoT demo: topics, settings and printing."""

from __future__ import annotations

import functools
import json
import os
import random
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

from .client import Client, PubSubError, Subscription
from .logx import Logger

TOPIC_TEMPERATURA = "temperatura_maquina"
TOPIC_PRESSAO = "pressao"
TOPIC_FALHA_MOTOR = "falha_motor"
TOPIC_CONSUMO = "consumo_energia"

_ALL_TOPICS = (TOPIC_TEMPERATURA, TOPIC_PRESSAO, TOPIC_FALHA_MOTOR, TOPIC_CONSUMO)

_ACTIONS = ("novo", "atualizacao", "cancelamento")
_LEVELS = ("info", "warning", "critical")

_STOP_POLL = 0.2


def all_topics() -> list[str]:
    """Return every topic of the scenario, as a fresh list."""
    return list(_ALL_TOPICS)


def topics_except_last() -> list[str]:
    """Return every topic of the scenario except the last one."""
    return list(_ALL_TOPICS[:-1])


def _get_env(key: str, fallback: str) -> str:
    return os.environ.get(key) or fallback


def load_dotenv(path: str | os.PathLike[str]) -> None:
    """Load simple KEY=VALUE lines into the environment.

    Blank lines and lines starting with '#' are skipped, surrounding quotes
    are stripped from values, and variables that already hold a non-empty
    value are left alone. A missing file is ignored.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError:
        return

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip().strip("\"'")
        if key and not os.environ.get(key):
            os.environ[key] = value


@functools.lru_cache(maxsize=None)
def _ensure_env_loaded() -> None:
    load_dotenv(".env")


def default_broker_addr() -> str:
    """Return the broker list used when BROKER_ADDR is not set."""
    return ",".join(f"localhost:{port}" for port in range(9000, 9002))


def get_broker_addr() -> str:
    """Return BROKER_ADDR (after reading .env once) or the default list."""
    _ensure_env_loaded()
    return _get_env("BROKER_ADDR", default_broker_addr())


def _compact_json(raw: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in raw:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            out.append(ch)
        elif ch not in " \t\r\n":
            out.append(ch)
    return "".join(out)


def _format_json_line(raw: bytes | bytearray | str) -> str:
    if not raw:
        return "{}"
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
    try:
        json.loads(text)
    except ValueError:
        return text
    return _compact_json(text)


def format_payload(value: Any) -> str:
    """Render a payload as one line of compact JSON.

    Bytes and strings are taken as raw JSON text; None (no payload) shows
    as "{}"; anything else is serialized. Text that is not valid JSON, or a
    value that cannot be serialized, is shown as it is.
    """
    if value is None:
        return "{}"
    if isinstance(value, (bytes, bytearray, str)):
        return _format_json_line(value)
    try:
        payload = json.dumps(
            value, separators=(",", ":"), ensure_ascii=False, sort_keys=True, allow_nan=False
        )
    except (TypeError, ValueError):
        return str(value)
    return _format_json_line(payload)


def print_loop(logger: Logger, topic: str, subscription: Subscription) -> None:
    """Log every message of ``subscription`` until it is closed."""
    for msg in subscription:
        logger.info("RECV topic=%s payload=%s", topic, format_payload(msg.data))


def subscribe_topics(client: Client, topics: Iterable[str]) -> dict[str, Subscription]:
    """Subscribe ``client`` to each topic; the first failure is raised."""
    subs: dict[str, Subscription] = {}
    for topic in topics:
        try:
            subs[topic] = client.subscribe(topic)
        except PubSubError as exc:
            raise PubSubError(f"inscricao {topic}: {exc}") from exc
    return subs


def start_print_loops(
    logger: Logger, subscriptions: Mapping[str, Subscription]
) -> list[threading.Thread]:
    """Start one printing thread per subscription and return the threads."""
    threads = []
    for topic, sub in subscriptions.items():
        thread = threading.Thread(
            target=print_loop, args=(logger, topic, sub), name=f"print-{topic}", daemon=True
        )
        thread.start()
        threads.append(thread)
    return threads


def pick_action(rng: random.Random) -> str:
    """Pick a random action name."""
    return rng.choice(_ACTIONS)


def pick_level(rng: random.Random) -> str:
    """Pick a random severity level."""
    return rng.choice(_LEVELS)


def _wait_for_stop(stop: threading.Event) -> None:
    """Block until ``stop`` is set or the user presses CTRL+C."""
    try:
        while not stop.wait(_STOP_POLL):
            pass
    except KeyboardInterrupt:
        stop.set()