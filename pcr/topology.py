from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from .docker_ops import ContainerView, ImageView, list_containers, resolve_image
from .log import Level, log_event
from .runtime import CANARY_WEIGHT, DEFAULT_WEIGHT, ContainerRecord, Service, ServiceTopology

# Strip "registry/path/" prefix and ":tag" suffix.
_KEY_RE = re.compile(r"^(?:.*/|)([^:]*)(?::.*|)$")
# RFC3339Nano as written by docker: trailing zeros of the fraction are dropped.
_CREATED_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$")


def service_key(repo_tag: str | None) -> str | None:
    """``registry.example/team/app:v1`` -> ``app``."""
    if not repo_tag:
        return None
    m = _KEY_RE.match(repo_tag)
    if not m or not m.group(1):
        return None
    return m.group(1)


def created_sort_key(created: str) -> tuple:
    """Sort key for a container creation time, exact to the nanosecond.

    Unparseable values sort after every parsed one, by their raw text.
    """
    m = _CREATED_RE.match(created or "")
    if not m:
        return (1, created or "")
    base, fraction, offset = m.groups()
    if offset == "Z":
        offset = "+00:00"
    try:
        ts = datetime.fromisoformat(base + offset)
    except ValueError:
        return (1, created)
    nanos = int((fraction or "").ljust(9, "0")[:9])
    return (0, ts, nanos)


def assign_weights(containers: list[ContainerRecord]) -> list[ContainerRecord]:
    """Sort by creation time; the oldest gets the canary weight, the rest 1."""
    ordered = sorted(containers, key=lambda c: created_sort_key(c.created))
    out: list[ContainerRecord] = []
    for i, c in enumerate(ordered):
        out.append(
            ContainerRecord(
                id=c.id,
                name=c.name,
                created=c.created,
                ipaddr=c.ipaddr,
                port=c.port,
                weight=CANARY_WEIGHT if i == 0 else DEFAULT_WEIGHT,
                env=c.env,
            )
        )
    return out


class TopologyBuilder:
    """Derives the weighted service topology from a docker runtime snapshot."""

    def __init__(self, client: Any):
        self.client = client
        self._conflicts: set[tuple[str, str]] = set()

    def build(self) -> ServiceTopology | None:
        """Snapshot the runtime.

        Returns None when the runtime could not be listed at all, so callers
        can tell "no containers" apart from "no answer".
        """
        containers = list_containers(self.client)
        if containers is None:
            return None

        services: dict[str, Service] = {}
        self._conflicts = set()
        for container in containers:
            image = resolve_image(self.client, container)
            if image is None:
                continue
            self._add(services, container, image)

        topology: ServiceTopology = {}
        for key in sorted(services):
            svc = services[key]
            svc.containers = assign_weights(svc.containers)
            topology[key] = svc
        return topology

    def _add(self, services: dict[str, Service], container: ContainerView, image: ImageView) -> None:
        image_ports = image.ports
        container_ports = container.ports
        if not image_ports or not container_ports:
            return

        tags = image.repo_tags
        key = service_key(tags[0] if tags else None)
        if key is None:
            return

        svc = services.get(key)
        if svc is None:
            svc = Service(id=image.id, port=image_ports[0], image_name=tags[0])
            services[key] = svc
        elif svc.id != image.id and (key, image.id) not in self._conflicts:
            self._conflicts.add((key, image.id))
            log_event(
                Level.WARN,
                f"Service '{key}' maps to images {svc.image_name} ({svc.id[:19]}) and {tags[0]} ({image.id[:19]}); "
                f"keeping the first, aggregating containers from both",
                service_name=key,
            )

        svc.containers.append(
            ContainerRecord(
                id=container.id,
                name=container.name,
                created=container.created,
                ipaddr=container.ipaddr,
                port=container_ports[0],
                env=container.env,
            )
        )
