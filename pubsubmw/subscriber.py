"""Demo subscriber: dashboard or maintenance alerts."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .client import Client, PubSubError
from .logx import COLOR_BLUE, COLOR_YELLOW, Logger
from .scenario import (
    _wait_for_stop,
    all_topics,
    get_broker_addr,
    start_print_loops,
    subscribe_topics,
    topics_except_last,
)

ROLE_PAINEL = "painel"
ROLE_ALERTAS = "alertas"


@dataclass(frozen=True)
class RoleSettings:
    """How a subscriber role presents itself and which topics it follows."""

    component: str
    color: str
    topics: list[str]
    started: str
    ending: str


def normalize_role(role: str) -> str:
    """Return a valid role; anything unknown becomes the dashboard role."""
    role = role.strip().lower()
    return role if role in (ROLE_PAINEL, ROLE_ALERTAS) else ROLE_PAINEL


def role_settings(role: str) -> RoleSettings:
    """Return the settings of ``role`` (normalized first)."""
    if normalize_role(role) == ROLE_ALERTAS:
        return RoleSettings(
            component="ALERTAS",
            color=COLOR_YELLOW,
            topics=all_topics(),
            started="Alertas de manutencao iniciado",
            ending="Alertas de manutencao encerrando",
        )
    return RoleSettings(
        component="PAINEL",
        color=COLOR_BLUE,
        topics=topics_except_last(),
        started="Painel industrial iniciado",
        ending="Painel industrial encerrando",
    )


def run_subscriber(role: str, stop: threading.Event | None = None) -> int:
    """Subscribe to the role's topics and print messages until stopped.

    Brokers come from ``BROKER_ADDR`` (or the defaults). Returns 0 after a
    normal shutdown and 1 when setup fails.
    """
    settings = role_settings(role)
    log = Logger(settings.component, settings.color)
    log.info(settings.started)

    addr = get_broker_addr()
    try:
        client = Client(addr)
    except ValueError as exc:
        log.error("Falha ao criar client: %s", exc)
        return 1

    stop = stop if stop is not None else threading.Event()
    with client:
        log.info("Brokers configurados: %s", addr)
        try:
            subs = subscribe_topics(client, settings.topics)
        except PubSubError as exc:
            log.error("Falha ao inscrever topicos: %s", exc)
            return 1
        log.info("Inscrito em: %s", ", ".join(settings.topics))

        threads = start_print_loops(log, subs)
        _wait_for_stop(stop)
        log.info(settings.ending)

    for thread in threads:
        thread.join()
    return 0