import json
import signal

import pytest
import requests
from docker.constants import DEFAULT_DOCKER_API_VERSION
from docker.errors import DockerException

import cli
from pcr import db, docker_ops

from conftest import UPSTREAM_TEMPLATE


@pytest.fixture
def docker_env(monkeypatch, fake_docker):
    fake_docker.add_image("sha256:a", ["registry.example/app:v1"], ["8080"])
    fake_docker.add_container("c1", "sha256:a", "2024-01-01T00:00:00Z", ports=["8080"], name="app-1", ipaddr="10.0.0.3")
    monkeypatch.setattr(cli, "lazy_docker_client", lambda base_url=None: fake_docker)
    return fake_docker


def test_topology_prints_json(docker_env, capsys):
    assert cli.main(["topology"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert list(data) == ["app"]
    assert data["app"]["port"] == "8080"
    assert data["app"]["containers"][0]["weight"] == 100
    assert data["app"]["containers"][0]["ipaddr"] == "10.0.0.3"


def test_topology_fails_when_runtime_is_down(docker_env):
    docker_env.fail_list = True
    assert cli.main(["topology"]) == 1


def test_render_prints_without_writing(docker_env, config_dir, capsys):
    (config_dir / "upstreams.conf.j2").write_text(UPSTREAM_TEMPLATE)

    assert cli.main(["--config-dir", str(config_dir), "render"]) == 0

    out = capsys.readouterr().out
    assert "server 10.0.0.3:8080 weight=100;" in out
    assert not (config_dir / "upstreams.conf").exists()


def test_render_failure_exit_code(docker_env, config_dir):
    (config_dir / "bad.conf.j2").write_text("{{ images.nope }}")
    assert cli.main(["--config-dir", str(config_dir), "render"]) == 1


def test_once_writes_and_upgrades(docker_env, config_dir, tmp_path, monkeypatch):
    (config_dir / "upstreams.conf.j2").write_text(UPSTREAM_TEMPLATE)
    upgrades = []
    monkeypatch.setattr(cli.ProxySupervisor, "upgrade", lambda self: upgrades.append(self.handle.pid_file) or True)

    pid_file = str(tmp_path / "proxy.pid")
    assert cli.main(["--config-dir", str(config_dir), "--pid-file", pid_file, "once"]) == 0
    assert "10.0.0.3:8080" in (config_dir / "upstreams.conf").read_text()
    assert upgrades == [pid_file]

    assert cli.main(["--config-dir", str(config_dir), "--pid-file", pid_file, "once"]) == 0
    assert upgrades == [pid_file]


def test_events_requires_journal(capsys, monkeypatch):
    monkeypatch.setattr(cli, "settings", cli.replace(cli.settings, db_path=None))
    assert cli.main(["events"]) == 1
    assert "No event journal configured" in capsys.readouterr().err


def test_events_lists_journal(tmp_path, capsys, monkeypatch):
    path = str(tmp_path / "journal.db")
    db.init_db(path)
    db.record_event(path, "info", "first")
    db.record_event(path, "warn", "second", service_name="app")
    monkeypatch.setattr(cli, "settings", cli.replace(cli.settings, db_path=path))

    assert cli.main(["events", "--limit", "1"]) == 0

    rows = json.loads(capsys.readouterr().out)
    assert [(r["level"], r["message"], r["service_name"]) for r in rows] == [("WARN", "second", "app")]


def test_run_starts_while_daemon_is_down(fake_docker, config_dir, tmp_path, monkeypatch, capsys):
    fake_docker.list_error = requests.exceptions.ConnectionError("Connection aborted.")
    fake_docker.fail_list = True
    constructed = []

    def from_env(**kwargs):
        constructed.append(kwargs)
        if "version" not in kwargs:
            raise DockerException("Error while fetching server API version")
        return fake_docker

    monkeypatch.setattr(docker_ops.docker, "from_env", from_env)
    monkeypatch.setattr(docker_ops.docker, "DockerClient", lambda base_url=None, **kwargs: from_env(**kwargs))

    class OneShotWatcher:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return None

        def watch(self, timeout=None):
            return signal.SIGTERM

    calls = []
    monkeypatch.setattr(cli, "SignalWatcher", OneShotWatcher)
    monkeypatch.setattr(cli.ProxySupervisor, "start", lambda self: calls.append("start") or True)
    monkeypatch.setattr(cli.ProxySupervisor, "stop", lambda self: calls.append("stop"))

    pid_file = str(tmp_path / "proxy.pid")
    assert cli.main(["--config-dir", str(config_dir), "--pid-file", pid_file, "run"]) == 0

    assert constructed == [{}, {"version": DEFAULT_DOCKER_API_VERSION}]
    assert calls == ["start", "stop"]
    out = capsys.readouterr().out
    assert "Docker is not reachable yet" in out
    assert "keeping current configuration" in out
