import io
import json
import random
import threading
import time

import pytest

from pubsubmw.broker import Broker
from pubsubmw.client import Client
from pubsubmw.logx import Logger
from pubsubmw.publisher import default_specs, run_publisher
from pubsubmw.scenario import TOPIC_TEMPERATURA, all_topics


@pytest.fixture
def broker_addr():
    b = Broker(logger=Logger("T", "", out=io.StringIO()))
    b.start(("127.0.0.1", 0))
    yield f"127.0.0.1:{b.address()[1]}"
    b.stop()


class _Captured:
    """Accumulates captured stdout across repeated reads."""

    def __init__(self, capsys):
        self._capsys = capsys
        self._parts = []

    def text(self):
        self._parts.append(self._capsys.readouterr().out)
        return "".join(self._parts)


def _wait_for(predicate, timeout):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_default_specs_cover_all_topics():
    specs = default_specs()
    assert [s.name for s in specs] == all_topics()
    assert [s.interval for s in specs] == [2.0, 3.0, 5.0, 4.0]


@pytest.mark.parametrize("seed", range(20))
def test_default_specs_payload_ranges(seed):
    temp, press, falha, consumo = default_specs()
    rng = random.Random(seed)

    t = temp.build(rng)
    assert 70 <= t["valor"] < 80
    assert t["unit"] == "C"

    p = press.build(rng)
    assert 3.0 <= p["valor"] < 4.5
    assert p["unit"] == "bar"

    f = falha.build(rng)
    assert 100 <= f["codigo"] < 150
    assert f["gravidade"] in {"baixa", "media", "alta"}
    assert f["motor"] == "M-3"

    c = consumo.build(rng)
    assert 120 <= c["kwh"] < 155
    assert c["linha"] == "B"


def test_run_publisher_bad_address_returns_error(monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", " , ")
    code = run_publisher(threading.Event())
    assert code == 1
    assert "Falha ao criar client" in capsys.readouterr().out


def test_run_publisher_delivers_messages(broker_addr, monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", broker_addr)
    captured = _Captured(capsys)
    stop = threading.Event()
    result = {}

    def target():
        result["code"] = run_publisher(stop)

    with Client(broker_addr) as consumer:
        sub = consumer.subscribe(TOPIC_TEMPERATURA)
        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        msg = sub.get(timeout=8)
        stop.set()
        thread.join(timeout=15)

    assert not thread.is_alive()
    assert result["code"] == 0
    assert msg.topic == TOPIC_TEMPERATURA
    payload = json.loads(msg.data)
    assert payload["unit"] == "C"
    assert payload["sensor"] == "T-01"
    assert 70 <= payload["valor"] < 80
    text = captured.text()
    assert f"PUB topic={TOPIC_TEMPERATURA} payload=" in text
    assert "Publisher IoT Industrial encerrando" in text


def test_run_publisher_logs_publish_errors(broker_addr, monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", broker_addr)
    captured = _Captured(capsys)
    stop = threading.Event()
    thread = threading.Thread(target=run_publisher, args=(stop,), daemon=True)
    thread.start()
    _wait_for(lambda: "no_subscribers" in captured.text(), timeout=10)
    stop.set()
    thread.join(timeout=15)
    assert not thread.is_alive()
    assert f"publish {TOPIC_TEMPERATURA}: no_subscribers" in captured.text()