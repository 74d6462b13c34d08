"""Demo publisher: periodic industrial sensor readings on several topics."""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .client import Client, PubSubError
from .logx import COLOR_GREEN, Logger
from .scenario import (
    TOPIC_CONSUMO,
    TOPIC_FALHA_MOTOR,
    TOPIC_PRESSAO,
    TOPIC_TEMPERATURA,
    _wait_for_stop,
    format_payload,
    get_broker_addr,
)

_SEVERIDADES = ("baixa", "media", "alta")


@dataclass(frozen=True)
class TopicSpec:
    """A topic, how often to publish on it, and how to build a payload."""

    name: str
    interval: float
    build: Callable[[random.Random], Any]


def _temperatura(rng: random.Random) -> dict[str, Any]:
    return {"valor": 70 + rng.random() * 10, "unit": "C", "sensor": "T-01"}


def _pressao(rng: random.Random) -> dict[str, Any]:
    return {"valor": 3.0 + rng.random() * 1.5, "unit": "bar", "linha": "A"}


def _falha_motor(rng: random.Random) -> dict[str, Any]:
    return {
        "codigo": int(100 + rng.random() * 50),
        "gravidade": rng.choice(_SEVERIDADES),
        "motor": "M-3",
    }


def _consumo(rng: random.Random) -> dict[str, Any]:
    return {"kwh": 120 + rng.random() * 35, "linha": "B"}


def default_specs() -> list[TopicSpec]:
    """Return the four sensor feeds of the scenario."""
    return [
        TopicSpec(TOPIC_TEMPERATURA, 2.0, _temperatura),
        TopicSpec(TOPIC_PRESSAO, 3.0, _pressao),
        TopicSpec(TOPIC_FALHA_MOTOR, 5.0, _falha_motor),
        TopicSpec(TOPIC_CONSUMO, 4.0, _consumo),
    ]


def _publish_loop(
    client: Client, spec: TopicSpec, seed: int, stop: threading.Event, log: Logger
) -> None:
    rng = random.Random(seed)
    while not stop.wait(spec.interval):
        payload = spec.build(rng)
        log.info("PUB topic=%s payload=%s", spec.name, format_payload(payload))
        try:
            client.publish(spec.name, payload)
        except (PubSubError, TypeError, ValueError) as exc:
            log.error("publish %s: %s", spec.name, exc)


def run_publisher(stop: threading.Event | None = None) -> int:
    """Publish every feed on its own interval until ``stop`` is set or CTRL+C.

    Brokers come from ``BROKER_ADDR`` (or the defaults). Returns 0 after a
    normal shutdown and 1 when the client cannot be created.
    """
    log = Logger("PUB-IOT", COLOR_GREEN)
    log.info("Publisher IoT Industrial iniciado")

    addr = get_broker_addr()
    try:
        client = Client(addr)
    except ValueError as exc:
        log.error("Falha ao criar client: %s", exc)
        return 1

    stop = stop if stop is not None else threading.Event()

    with client:
        log.info("Brokers configurados: %s", addr)
        base_seed = time.time_ns()
        threads = []
        for idx, spec in enumerate(default_specs()):
            thread = threading.Thread(
                target=_publish_loop,
                args=(client, spec, base_seed + idx, stop, log),
                name=f"publish-{spec.name}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)

        _wait_for_stop(stop)
        log.info("Publisher IoT Industrial encerrando")
        for thread in threads:
            thread.join()
    return 0