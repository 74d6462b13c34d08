import socket

from pubsubmw.demo_cli import main


def _unused_addr():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"127.0.0.1:{port}"


def test_invalid_mode(capsys, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    assert main(["-mode", "bogus"]) == 1
    out = capsys.readouterr().out
    assert "[EXAMPLES] WARN | Modo invalido: bogus" in out
    assert "Use: -mode publisher|subscriber -role painel|alertas" in out


def test_invalid_mode_equals_form(capsys, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    assert main(["-mode=other"]) == 1
    assert "Modo invalido: other" in capsys.readouterr().out


def test_publisher_mode_with_empty_broker_list(capsys, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", ",")
    assert main(["-mode", "publisher"]) == 1
    out = capsys.readouterr().out
    assert "[PUB-IOT] ERROR | Falha ao criar client" in out


def test_subscriber_mode_without_broker(capsys, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("BROKER_ADDR", _unused_addr())
    assert main(["-mode", "subscriber", "-role", "alertas"]) == 1
    out = capsys.readouterr().out
    assert "[ALERTAS] INFO | Alertas de manutencao iniciado" in out
    assert "Falha ao inscrever topicos" in out