# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Runtime state of containers: lifecycle states, identities and what the engine
reports about a running container.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import InvalidStateTransition


class ContainerState(str, Enum):
    """Lifecycle state of a container managed by pytainers."""

    REQUESTED = "requested"
    CREATED = "created"
    STARTED = "started"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"
    REMOVED = "removed"


_TRANSITIONS = {
    ContainerState.REQUESTED: {ContainerState.CREATED},
    ContainerState.CREATED: {ContainerState.STARTED, ContainerState.STOPPED},
    ContainerState.STARTED: {ContainerState.READY, ContainerState.FAILED, ContainerState.STOPPED},
    ContainerState.READY: {ContainerState.STOPPED},
    ContainerState.FAILED: {ContainerState.STOPPED},
    ContainerState.STOPPED: {ContainerState.REMOVED},
    ContainerState.REMOVED: set(),
}


def advance(current: ContainerState, requested: ContainerState) -> ContainerState:
    """
    Validates a forward transition.

    :raises InvalidStateTransition: If ``requested`` is not reachable from ``current``.
    """
    if requested not in _TRANSITIONS[current]:
        raise InvalidStateTransition(current, requested)
    return requested


class EngineStatus(str, Enum):
    """Container status as reported by the engine."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EngineStatus":
        value = (value or "").strip().lower()
        if value in ("stopped", "configured"):
            # podman spellings
            return cls.EXITED if value == "stopped" else cls.CREATED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def terminated(self) -> bool:
        return self in (EngineStatus.EXITED, EngineStatus.DEAD)


class HealthStatus(str, Enum):
    """Engine-side health status of a container."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured

    @classmethod
    def parse(cls, value: Optional[str]) -> "HealthStatus":
        try:
            return cls((value or "none").strip().lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class ContainerIdentity:
    """Engine-assigned id plus the unique, time-ordered name pytainers gave it."""

    id: str
    name: str

    @property
    def short_id(self) -> str:
        return self.id[:12]

    def __str__(self) -> str:
        return f"{self.name} ({self.short_id})"


@dataclass(frozen=True)
class PortBinding:
    host_ip: str
    host_port: int

    @property
    def is_ipv4(self) -> bool:
        return ":" not in self.host_ip


@dataclass(frozen=True)
class NetworkAttachment:
    """Address of a container on one engine network."""

    ip_address: Optional[str] = None
    gateway: Optional[str] = None


@dataclass
class ContainerInfo:
    """Parsed inspect output for one container."""

    id: str
    name: str = ""
    status: EngineStatus = EngineStatus.UNKNOWN
    exit_code: Optional[int] = None
    health: HealthStatus = HealthStatus.NONE
    ports: Dict[str, List[PortBinding]] = field(default_factory=dict)
    networks: Dict[str, NetworkAttachment] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class ExecResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class LogChunk:
    """Log output of a container, one string per stream."""

    stdout: str = ""
    stderr: str = ""

    def stream(self, name: str) -> str:
        return self.stderr if name == "stderr" else self.stdout


@dataclass(frozen=True)
class ContainerListing:
    """One row of ``<engine> ps --all``."""

    id: str
    names: Tuple[str, ...]
    status: EngineStatus
