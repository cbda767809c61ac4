import threading
from typing import Dict, List, Optional

import pytest

from pytainers.ENGINES.base import EngineBackend
from pytainers.errors import EngineError
from pytainers.MODELS.container_state import (
    ContainerIdentity,
    ContainerInfo,
    ContainerListing,
    EngineStatus,
    ExecResult,
    HealthStatus,
    LogChunk,
    NetworkAttachment,
    PortBinding,
)


class StubEngine(EngineBackend):
    """
    In-memory engine recording every call, for tests that need no real engine.
    """

    name = "stub"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls: List[tuple] = []
        self.lock = threading.Lock()
        self.container_id = "abc123"
        self.ports: Dict[str, List[PortBinding]] = {}
        self.status = EngineStatus.RUNNING
        self.exit_code: Optional[int] = None
        self.health = HealthStatus.NONE
        self.log_chunks: List[LogChunk] = []
        self.exec_results: List[ExecResult] = []
        self.fail_on: Dict[str, Exception] = {}
        self.compose_services: Dict[str, ContainerIdentity] = {}
        self.inspect_delay = 0.0
        self.status_by_id: Dict[str, EngineStatus] = {}
        self.timeouts: List[tuple] = []
        self.existing: Dict[str, ContainerListing] = {}
        self.networks: Dict[str, NetworkAttachment] = {}
        self.inside = False
        self.host_network: Optional[str] = None
        self.created_specs: list = []

    def _record(self, *call):
        with self.lock:
            self.calls.append(call)
        error = self.fail_on.get(call[0])
        if error is not None:
            raise error

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def version_args(self):
        return ["version"]

    def extract_version(self, document):
        return "1.0.0", "1.0.0"

    def version(self):
        return "1.0.0"

    def compose_command(self, project, *args):
        raise NotImplementedError

    def compose_ps(self, project):
        return []

    def create(self, spec, name, labels=None):
        self._record("create", spec.image, name, dict(labels or {}))
        self.created_specs.append(spec)
        return ContainerIdentity(id=self.container_id, name=name)

    def start(self, identity):
        self._record("start", identity.id)

    def inspect(self, identity, timeout=None):
        if self.inspect_delay:
            threading.Event().wait(self.inspect_delay)
        self.timeouts.append(("inspect", timeout))
        self._record("inspect", identity.id)
        return ContainerInfo(
            id=identity.id,
            name=identity.name,
            status=self.status_by_id.get(identity.id, self.status),
            exit_code=self.exit_code,
            health=self.health,
            ports=self.ports,
            networks=self.networks,
        )

    def logs(self, identity, since=None, timeout=None):
        self.timeouts.append(("logs", timeout))
        self._record("logs", identity.id, since)
        if self.log_chunks:
            return self.log_chunks.pop(0)
        return LogChunk()

    def exec(self, identity, command, timeout=None):
        self._record("exec", identity.id, list(command), timeout)
        if self.exec_results:
            return self.exec_results.pop(0)
        return ExecResult(exit_code=0)

    def stop(self, identity, grace=10):
        self._record("stop", identity.id, grace)

    def remove(self, identity):
        self._record("remove", identity.id)

    def unpause(self, identity):
        self._record("unpause", identity.id)

    def find_container(self, name):
        self._record("find_container", name)
        return self.existing.get(name)

    def create_network(self, name, labels=None):
        self._record("create_network", name, dict(labels or {}))

    def remove_network(self, name):
        self._record("remove_network", name)

    def create_volume(self, name, labels=None):
        self._record("create_volume", name, dict(labels or {}))

    def remove_volume(self, name):
        self._record("remove_volume", name)

    def inside_container(self):
        return self.inside

    def find_host_network(self):
        self._record("find_host_network")
        return self.host_network

    def compose_up(self, project):
        self._record("compose_up", project.name)
        return dict(self.compose_services)

    def compose_down(self, project):
        self._record("compose_down", project.name)


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def engine_error(operation: str, stderr: str = "boom") -> EngineError:
    return EngineError(f"stub {operation}", 1, stderr)


@pytest.fixture
def engine():
    return StubEngine()


@pytest.fixture
def clock():
    return FakeClock()
