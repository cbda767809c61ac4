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
Lifecycle of a single disposable container: create, start, wait, tear down.
"""
import logging
import threading
from typing import List, Optional, Sequence

from ..ENGINES.detection import detect_engine
from ..errors import PytainersError
from ..MODELS.container_spec import ContainerSpec
from ..MODELS.container_state import ContainerIdentity, ContainerState, EngineStatus, ExecResult, LogChunk, advance
from ..MODELS.settings import RuntimeSettings, load_settings
from ..MODELS.wait_strategy import WaitPolicy
from ..UTILS.identity import IdentityAllocator
from .port_resolver import ExposedPort, PortResolver
from .wait_evaluator import WaitOutcome, WaitStrategyEvaluator

logger = logging.getLogger(__name__)

MANAGED_LABEL = "org.pytainers.managed"


class ContainerLifecycle:
    """
    Drives one container from a spec to a ready handle and back to nothing.

    Use it as a context manager to tear the container down on scope exit::

        with ContainerLifecycle(engine, spec) as redis:
            port = redis.host_port(6379)

    A container whose readiness wait times out or fails is left running so its
    logs can be read; the raised error carries this handle.
    """

    def __init__(self,
                 engine,
                 spec: ContainerSpec,
                 allocator: Optional[IdentityAllocator] = None,
                 policy: Optional[WaitPolicy] = None,
                 resolver: Optional[PortResolver] = None,
                 evaluator: Optional[WaitStrategyEvaluator] = None,
                 stop_grace: int = 10,
                 keep: bool = False):
        """
        :param engine: Engine backend running the container.
        :param spec: What to run.
        :param allocator: Source of unique container names.
        :param policy: Readiness timeout, interval and attempt cap.
        :param resolver: Port resolver shared with the evaluator.
        :param evaluator: Readiness evaluator; built from ``engine`` and ``resolver`` by default.
        :param stop_grace: Seconds the engine waits before killing the container on stop.
        :param keep: Detach as soon as the container is created.
        """
        self.engine = engine
        self.spec = spec
        self.allocator = allocator or IdentityAllocator()
        self.policy = policy or WaitPolicy()
        if resolver is None:
            resolver = evaluator.resolver if evaluator is not None else PortResolver(engine)
        self.resolver = resolver
        self.evaluator = evaluator or WaitStrategyEvaluator(engine, resolver)
        self.stop_grace = stop_grace
        self.keep = keep

        self.identity: Optional[ContainerIdentity] = None
        self.outcome: Optional[WaitOutcome] = None
        self.cleanup_errors: List[BaseException] = []
        self.detached = False
        self.reused = False
        self.network: Optional[str] = spec.network
        self._state = ContainerState.REQUESTED
        self._torn_down = False
        self._lock = threading.Lock()

    @property
    def state(self) -> ContainerState:
        return self._state

    def _transition(self, requested: ContainerState) -> None:
        self._state = advance(self._state, requested)
        logger.debug("Container %s is now %s", self.identity, requested.value)

    def _require_identity(self) -> ContainerIdentity:
        if self.identity is None:
            raise PytainersError(f"Container for {self.spec.image} has not been created")
        return self.identity

    def start(self) -> "ContainerLifecycle":
        """
        Creates and starts the container, then waits until it is ready.

        A spec with a ``container_name`` first adopts an existing container of
        that name. A paused one is unpaused and a stopped one started again; a
        dead one is removed and replaced.

        :raises EngineError: If create or start fails; nothing is left behind.
        :raises WaitTimeout: If readiness is not reached in time.
        :raises WaitFailed: If a readiness check fails terminally.
        """
        if self._state != ContainerState.REQUESTED:
            advance(self._state, ContainerState.CREATED)

        if not (self.spec.container_name and self._adopt(self.spec.container_name)):
            self._create_and_start()

        self.outcome = self.evaluator.evaluate(self.identity, self.spec.wait_strategies, self.policy)
        if not self.outcome.ready:
            self._transition(ContainerState.FAILED)
            logger.warning("Container %s is not ready and is left running for inspection", self.identity)
            self.outcome.raise_for_status(f"container {self.identity}", container=self)
        self._transition(ContainerState.READY)
        logger.info("Container %s is ready after %.2fs", self.identity, self.outcome.elapsed)
        return self

    def _adopt(self, name: str) -> bool:
        existing = self.engine.find_container(name)
        if existing is None:
            return False
        identity = ContainerIdentity(id=existing.id, name=name)
        if existing.status == EngineStatus.DEAD:
            logger.info("Replacing dead container %s", identity)
            self.engine.remove(identity)
            return False
        if existing.status in (EngineStatus.REMOVING, EngineStatus.UNKNOWN):
            return False

        self.identity = identity
        self.reused = True
        self._transition(ContainerState.CREATED)
        logger.info("Reusing %s container %s", existing.status.value, identity)
        if existing.status == EngineStatus.PAUSED:
            self.engine.unpause(identity)
        elif existing.status in (EngineStatus.CREATED, EngineStatus.EXITED):
            self.engine.start(identity)
        self._transition(ContainerState.STARTED)
        return True

    def _create_and_start(self) -> None:
        spec = self.spec
        if spec.network is None and self.engine.inside_container():
            # Started from inside a container: join its network
            try:
                network = self.engine.find_host_network()
            except PytainersError as e:
                logger.warning("Cannot determine the network of the current container: %s", e)
                network = None
            if network:
                spec = spec.model_copy(update={"network": network})

        name = spec.container_name or self.allocator.container_name(spec.hint)
        self.identity = self.engine.create(spec, name, {MANAGED_LABEL: "true"})
        self.network = spec.network
        self._transition(ContainerState.CREATED)
        if self.keep:
            self.detach()

        for mapping in spec.ports:
            if mapping.host_port is not None:
                self.resolver.register_fixed(self.identity, mapping.container_port,
                                             mapping.host_port, mapping.protocol)

        try:
            self.engine.start(self.identity)
        except PytainersError:
            self._discard()
            raise
        self._transition(ContainerState.STARTED)

    def _discard(self) -> None:
        # The container exists but never ran: remove it so there is nothing to track.
        # On failure it stays CREATED and an explicit teardown() can retry.
        try:
            self.engine.remove(self.identity)
        except PytainersError as e:
            logger.error("Failed to remove container %s after a failed start: %s", self.identity, e)
            self.cleanup_errors.append(e)
            return
        with self._lock:
            self._torn_down = True
        self._transition(ContainerState.STOPPED)
        self._transition(ContainerState.REMOVED)
        self.resolver.forget(self.identity)

    def detach(self) -> ContainerIdentity:
        """Keeps the container running after the scope ends."""
        self.detached = True
        logger.info("Detached container %s, it will not be removed", self.identity)
        return self._require_identity()

    def teardown(self) -> None:
        """
        Stops and removes the container. Only the first call does anything.

        A container with a fixed ``container_name`` is stopped but kept.

        :raises PytainersError: The first stop or remove error; removal is tried even if stop failed.
        """
        with self._lock:
            if self._torn_down or self.identity is None:
                return
            self._torn_down = True

        errors: List[PytainersError] = []
        if self._state in (ContainerState.STARTED, ContainerState.READY, ContainerState.FAILED):
            try:
                self.engine.stop(self.identity, self.stop_grace)
            except PytainersError as e:
                logger.warning("Failed to stop container %s: %s", self.identity, e)
                errors.append(e)
        self._transition(ContainerState.STOPPED)

        if self.spec.container_name:
            # Named containers outlive the scope so the next run can adopt them
            logger.info("Leaving named container %s stopped", self.identity)
        else:
            try:
                self.engine.remove(self.identity)
            except PytainersError as e:
                logger.warning("Failed to remove container %s: %s", self.identity, e)
                errors.append(e)
            else:
                self._transition(ContainerState.REMOVED)
        self.resolver.forget(self.identity)
        if errors:
            raise errors[0]

    # -- accessors ------------------------------------------------------------

    def port(self, container_port: int, protocol: str = "tcp") -> ExposedPort:
        return self.resolver.port(self._require_identity(), container_port, protocol)

    def host_port(self, container_port: int, protocol: str = "tcp") -> int:
        """
        :raises PortNotBound: If the engine published no host port for it.
        """
        return self.resolver.resolve(self._require_identity(), container_port, protocol)

    def network_ip(self, network: Optional[str] = None) -> str:
        """
        Address of the container on ``network``, by default the one it was created on.

        :raises NetworkError: If the container has no address there.
        """
        return self.engine.network_ip(self._require_identity(), network or self.network)

    def logs(self) -> LogChunk:
        return self.engine.logs(self._require_identity())

    def exec(self, command: Sequence[str], timeout: Optional[float] = None) -> ExecResult:
        return self.engine.exec(self._require_identity(), list(command), timeout)

    def __enter__(self) -> "ContainerLifecycle":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.detached:
            logger.info("Leaving detached container %s running", self.identity)
            return
        try:
            self.teardown()
        except PytainersError as e:
            logger.error("Automatic teardown of container %s failed: %s", self.identity, e)
            self.cleanup_errors.append(e)

    def __repr__(self) -> str:
        return f"ContainerLifecycle({self.spec.image!r}, state={self._state.value}, id={self.identity})"


def run_container(spec: ContainerSpec,
                  engine=None,
                  settings: Optional[RuntimeSettings] = None,
                  **kwargs) -> ContainerLifecycle:
    """
    Starts ``spec`` with defaults taken from the runtime settings.

    The engine is auto-detected unless given. Returns the ready lifecycle,
    which the caller is responsible for tearing down.
    """
    settings = settings or load_settings()
    engine = engine or detect_engine(settings=settings)
    kwargs.setdefault("allocator", IdentityAllocator(settings.name_prefix))
    kwargs.setdefault("policy", settings.wait_policy)
    kwargs.setdefault("stop_grace", settings.stop_grace)
    kwargs.setdefault("keep", settings.keep)
    return ContainerLifecycle(engine, spec, **kwargs).start()
