from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import docker
from docker.constants import DEFAULT_DOCKER_API_VERSION
from docker.errors import DockerException, NotFound
from requests.exceptions import RequestException

from .log import Level, log_event
from .runtime import EnvValue
from .settings import settings


def docker_client(base_url: str | None = None, version: str | None = None) -> docker.DockerClient:
    url = base_url if base_url is not None else settings.docker_base_url
    kwargs = {"version": version} if version else {}
    if url:
        return docker.DockerClient(base_url=url, **kwargs)
    return docker.from_env(**kwargs)


def lazy_docker_client(base_url: str | None = None) -> docker.DockerClient:
    """Client that can be built while the daemon is still down.

    Version negotiation needs a live daemon; when it fails the client is
    rebuilt with a pinned API version, which connects on first use.
    """
    try:
        return docker_client(base_url)
    except DockerException as e:
        log_event(Level.WARN, f"Docker API version negotiation failed ({e}); using API {DEFAULT_DOCKER_API_VERSION}")
        return docker_client(base_url, version=DEFAULT_DOCKER_API_VERSION)


def docker_available(client: Any) -> bool:
    try:
        client.ping()
        return True
    except (DockerException, RequestException):
        return False


def exposed_ports(attrs: dict[str, Any]) -> list[str]:
    """Ports from ``Config.ExposedPorts`` without the ``/proto`` suffix."""
    config = attrs.get("Config") or {}
    return [key.split("/", 1)[0] for key in (config.get("ExposedPorts") or {})]


def parse_env(entries: list[str] | None) -> dict[str, EnvValue]:
    """Parse a ``KEY=VALUE`` list; repeated keys collect into a list."""
    env: dict[str, EnvValue] = {}
    for entry in entries or []:
        key, _, value = entry.partition("=")
        current = env.get(key)
        if current is None:
            env[key] = value
        elif isinstance(current, list):
            current.append(value)
        else:
            env[key] = [current, value]
    return env


@dataclass(frozen=True)
class ImageView:
    """Read-only view over an image's inspect payload."""

    id: str
    attrs: dict[str, Any]

    @classmethod
    def wrap(cls, image: Any) -> "ImageView":
        return cls(id=image.id, attrs=image.attrs or {})

    @property
    def ports(self) -> list[str]:
        return exposed_ports(self.attrs)

    @property
    def repo_tags(self) -> list[str]:
        return list(self.attrs.get("RepoTags") or [])


@dataclass(frozen=True)
class ContainerView:
    """Read-only view over a container's inspect payload."""

    id: str
    attrs: dict[str, Any]

    @classmethod
    def wrap(cls, container: Any) -> "ContainerView":
        return cls(id=container.id, attrs=container.attrs or {})

    @property
    def name(self) -> str | None:
        raw = self.attrs.get("Name")
        return raw.lstrip("/") if raw else None

    @property
    def image_id(self) -> str | None:
        return self.attrs.get("Image")

    @property
    def created(self) -> str:
        return self.attrs.get("Created") or ""

    @property
    def ports(self) -> list[str]:
        return exposed_ports(self.attrs)

    @property
    def env(self) -> dict[str, EnvValue]:
        return parse_env((self.attrs.get("Config") or {}).get("Env"))

    @property
    def ipaddr(self) -> str | None:
        net = self.attrs.get("NetworkSettings") or {}
        if net.get("IPAddress"):
            return net["IPAddress"]
        # User-defined networks leave the legacy field empty.
        for network in (net.get("Networks") or {}).values():
            if network and network.get("IPAddress"):
                return network["IPAddress"]
        return None


def list_containers(client: Any) -> list[ContainerView] | None:
    """Running containers, or None when the runtime cannot be queried."""
    try:
        containers = client.containers.list(ignore_removed=True)
    except (DockerException, RequestException) as e:
        log_event(Level.ERROR, f"Listing containers failed: {type(e).__name__}: {e}")
        return None
    return [ContainerView.wrap(c) for c in containers]


def resolve_image(client: Any, container: ContainerView) -> ImageView | None:
    if not container.image_id:
        return None
    try:
        return ImageView.wrap(client.images.get(container.image_id))
    except NotFound:
        log_event(Level.DEBUG, f"Image {container.image_id} for container {container.name or container.id} is gone")
        return None
    except (DockerException, RequestException) as e:
        log_event(Level.WARN, f"Resolving image for {container.name or container.id} failed: {type(e).__name__}: {e}")
        return None
