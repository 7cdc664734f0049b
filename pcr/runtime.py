from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Union

CANARY_WEIGHT = 100
DEFAULT_WEIGHT = 1

EnvValue = Union[str, List[str]]


@dataclass(frozen=True)
class ContainerRecord:
    id: str
    name: str | None
    created: str
    ipaddr: str | None
    port: str
    weight: int = DEFAULT_WEIGHT
    env: Dict[str, EnvValue] = field(default_factory=dict, compare=False)


@dataclass
class Service:
    """Routable backend set for one service key."""

    id: str  # representative image id
    port: str  # primary exposed port of the image
    image_name: str
    containers: list[ContainerRecord] = field(default_factory=list)


# service key -> Service, iterated in key order
ServiceTopology = Dict[str, Service]


class ProcessState(str, Enum):
    UNKNOWN = "unknown"
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def topology_to_dict(topology: ServiceTopology) -> dict[str, Any]:
    return {key: asdict(svc) for key, svc in topology.items()}
