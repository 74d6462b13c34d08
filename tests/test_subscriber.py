import io
import socket
import threading
import time

import pytest

from pubsubmw.broker import Broker
from pubsubmw.client import Client
from pubsubmw.logx import COLOR_BLUE, COLOR_YELLOW, Logger
from pubsubmw.scenario import TOPIC_CONSUMO, TOPIC_PRESSAO, all_topics, topics_except_last
from pubsubmw.subscriber import normalize_role, role_settings, run_subscriber


@pytest.fixture
def broker_addr():
    b = Broker(logger=Logger("T", "", out=io.StringIO()))
    b.start(("127.0.0.1", 0))
    yield f"127.0.0.1:{b.address()[1]}"
    b.stop()


def _unused_addr():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"127.0.0.1:{port}"


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class _Captured:
    """Accumulates captured stdout across repeated reads."""

    def __init__(self, capsys):
        self._capsys = capsys
        self._parts = []

    def text(self):
        self._parts.append(self._capsys.readouterr().out)
        return "".join(self._parts)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("painel", "painel"),
        ("alertas", "alertas"),
        ("  ALERTAS ", "alertas"),
        ("Painel", "painel"),
        ("unknown", "painel"),
        ("", "painel"),
    ],
)
def test_normalize_role(raw, expected):
    assert normalize_role(raw) == expected


def test_role_settings_alertas():
    s = role_settings("alertas")
    assert s.component == "ALERTAS"
    assert s.color == COLOR_YELLOW
    assert s.topics == all_topics()
    assert s.started == "Alertas de manutencao iniciado"


def test_role_settings_default_is_painel():
    s = role_settings("whatever")
    assert s.component == "PAINEL"
    assert s.color == COLOR_BLUE
    assert s.topics == topics_except_last()
    assert TOPIC_CONSUMO not in s.topics
    assert s.ending == "Painel industrial encerrando"


def test_run_subscriber_fails_without_broker(monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", _unused_addr())
    code = run_subscriber("painel", threading.Event())
    assert code == 1
    assert "Falha ao inscrever topicos" in capsys.readouterr().out


def test_run_subscriber_prints_received_messages(broker_addr, monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", broker_addr)
    captured = _Captured(capsys)
    stop = threading.Event()
    result = {}

    def target():
        result["code"] = run_subscriber("alertas", stop)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    assert _wait_for(lambda: "Inscrito em:" in captured.text())

    with Client(broker_addr) as producer:
        producer.publish(TOPIC_PRESSAO, {"valor": 3})
    assert _wait_for(lambda: 'RECV topic=pressao payload={"valor":3}' in captured.text())

    stop.set()
    thread.join(timeout=10)
    assert not thread.is_alive()
    assert result["code"] == 0
    text = captured.text()
    assert "Inscrito em: " + ", ".join(all_topics()) in text
    assert "Alertas de manutencao encerrando" in text