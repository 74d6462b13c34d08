import argparse
import signal
import socket
import threading
import time

import pytest

from pubsubmw.broker_cli import main, parse_address


def test_parse_address_empty_host():
    assert parse_address(":9000") == ("", 9000)


def test_parse_address_with_host():
    assert parse_address("127.0.0.1:0") == ("127.0.0.1", 0)


def test_parse_address_ipv6():
    assert parse_address("[::1]:9001") == ("::1", 9001)


@pytest.mark.parametrize("bad", ["9000", "host:abc", "host:70000", "host:-1"])
def test_parse_address_rejects(bad):
    with pytest.raises(argparse.ArgumentTypeError):
        parse_address(bad)


def test_main_rejects_bad_address():
    with pytest.raises(SystemExit) as info:
        main(["-addr", "nope"])
    assert info.value.code == 2


def test_main_reports_port_in_use(capsys):
    blocker = socket.socket()
    try:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        code = main(["--addr", f"127.0.0.1:{port}"])
    finally:
        blocker.close()
    out = capsys.readouterr().out
    assert code == 1
    assert "Erro ao iniciar broker" in out


def test_main_runs_until_interrupted(capsys):
    original = signal.getsignal(signal.SIGINT)

    def interrupt():
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            if signal.getsignal(signal.SIGINT) is not original:
                signal.raise_signal(signal.SIGINT)
                return
            time.sleep(0.02)

    thread = threading.Thread(target=interrupt)
    thread.start()
    code = main(["-addr", "127.0.0.1:0"])
    thread.join()

    out = capsys.readouterr().out
    assert code == 0
    assert "Broker iniciando em 127.0.0.1:0" in out
    assert "Encerrando broker..." in out
    assert signal.getsignal(signal.SIGINT) is original