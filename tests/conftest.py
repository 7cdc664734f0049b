from __future__ import annotations

import sys
from typing import Any

import pytest
from docker.errors import APIError, NotFound

# Ensure project root is importable (so `import cli` works without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from pcr import log  # noqa: E402
from pcr.settings import Settings  # noqa: E402


class FakeImage:
    def __init__(self, image_id: str, tags: list[str] | None, ports: list[str] | None):
        self.id = image_id
        self.attrs = {
            "Id": image_id,
            "RepoTags": tags,
            "Config": {"ExposedPorts": {f"{p}/tcp": {} for p in ports} if ports else None},
        }


class FakeContainer:
    def __init__(
        self,
        container_id: str,
        image_id: str,
        name: str,
        created: str,
        ports: list[str] | None,
        ipaddr: str = "172.17.0.2",
        env: list[str] | None = None,
    ):
        self.id = container_id
        self.attrs = {
            "Id": container_id,
            "Name": f"/{name}",
            "Image": image_id,
            "Created": created,
            "Config": {
                "ExposedPorts": {f"{p}/tcp": {} for p in ports} if ports else None,
                "Env": env or [],
            },
            "NetworkSettings": {"IPAddress": ipaddr, "Networks": {}},
        }


class _FakeImages:
    def __init__(self, client: "FakeDocker"):
        self.client = client

    def get(self, image_id: str) -> FakeImage:
        if image_id not in self.client.images_by_id:
            raise NotFound(f"No such image: {image_id}")
        return self.client.images_by_id[image_id]


class _FakeContainers:
    def __init__(self, client: "FakeDocker"):
        self.client = client
        self.calls: list[dict[str, Any]] = []

    def list(self, **kwargs: Any) -> list[FakeContainer]:
        self.calls.append(kwargs)
        if self.client.list_error is not None:
            raise self.client.list_error
        if self.client.fail_list:
            raise APIError("daemon unavailable")
        return list(self.client.container_list)


class FakeDocker:
    """Just enough of docker.DockerClient for the topology builder."""

    def __init__(self) -> None:
        self.images_by_id: dict[str, FakeImage] = {}
        self.container_list: list[FakeContainer] = []
        self.fail_list = False
        self.list_error: Exception | None = None
        self.images = _FakeImages(self)
        self.containers = _FakeContainers(self)

    def add_image(self, image_id: str, tags: list[str] | None, ports: list[str] | None) -> FakeImage:
        img = FakeImage(image_id, tags, ports)
        self.images_by_id[image_id] = img
        return img

    def add_container(
        self,
        container_id: str,
        image_id: str,
        created: str,
        ports: list[str] | None = None,
        name: str | None = None,
        ipaddr: str = "172.17.0.2",
        env: list[str] | None = None,
    ) -> FakeContainer:
        c = FakeContainer(container_id, image_id, name or container_id, created, ports, ipaddr=ipaddr, env=env)
        self.container_list.append(c)
        return c

    def ping(self) -> bool:
        if self.fail_list:
            raise APIError("daemon unavailable")
        return True


class FakeSupervisor:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.reap_results: list[tuple[int, int] | None] = []

    def start(self) -> bool:
        self.calls.append("start")
        return True

    def upgrade(self) -> bool:
        self.calls.append("upgrade")
        return True

    def reload(self) -> bool:
        self.calls.append("reload")
        return True

    def stop(self) -> None:
        self.calls.append("stop")

    def reap(self) -> tuple[int, int] | None:
        self.calls.append("reap")
        return self.reap_results.pop(0) if self.reap_results else None


@pytest.fixture(autouse=True)
def _quiet_log():
    log.configure_from_settings(Settings(log_level="DEBUG", db_path=None))
    yield
    log.configure_from_settings(Settings(db_path=None))


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def config_dir(tmp_path):
    d = tmp_path / "conf.d"
    d.mkdir()
    return d


UPSTREAM_TEMPLATE = """\
{% for name, image in images.items() %}
upstream {{ name }} {
{% for c in image.containers %}
  server {{ c.ipaddr }}:{{ c.port }} weight={{ c.weight }};
{% endfor %}
}
{% endfor %}
"""
