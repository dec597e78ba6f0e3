"""Tests for the lab-shells command line."""

import json

import pytest

from lab_shells.cli import main as cli
from tests.mocks.session_mock import handshake


class TestResolve:
    def test_container(self, capsys):
        cli.main(["resolve", handshake("linux", "web1")])
        info = json.loads(capsys.readouterr().out)

        assert info["kind"] == "container_exec"
        assert info["target"] == "web1"
        assert info["command"] == ["docker", "exec", "-it", "web1", "sh"]

    def test_network_device(self, capsys):
        cli.main(["resolve", handshake("eos", "leaf1", "10.0.0.5")])
        info = json.loads(capsys.readouterr().out)

        assert info["kind"] == "network_device_ssh"
        assert info["ssh"] == {"host": "10.0.0.5", "port": 22, "username": "admin", "connect_timeout": 10.0}

    def test_config_file(self, tmp_path, capsys):
        path = tmp_path / "gateway.yaml"
        path.write_text("container_runtime: podman\n")

        cli.main(["--config", str(path), "resolve", handshake("linux", "web1")])
        info = json.loads(capsys.readouterr().out)

        assert info["command"][0] == "podman"

    def test_rejected_handshake(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["resolve", handshake("toaster", "x")])

        assert exc.value.code == 1
        assert "UnsupportedKind" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--config", str(tmp_path / "missing.yaml"), "resolve", handshake()])

        assert exc.value.code == 2


def test_no_command():
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 1


def test_serve(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    cli.main(["serve", "--port", "4000", "--log-level", "DEBUG"])

    app, kwargs = calls[0]
    assert kwargs == {"host": "0.0.0.0", "port": 4000, "log_level": "debug"}
    assert app.state.config.port == 4000
    assert app.state.gateway is None
