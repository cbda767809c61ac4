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
A compose deployment owned by a test: its generated files, services and containers.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import PytainersError
from .container_state import ContainerIdentity
from .orchestration_config import OrchestrationConfig

logger = logging.getLogger(__name__)


class ComposeProject:
    """
    Runtime state of one compose project.

    The project name is the name of its temporary directory, so two projects
    never share containers, networks or volumes.
    """

    def __init__(self,
                 guard,
                 compose_files: Sequence[str],
                 config: OrchestrationConfig,
                 wait_strategies: Optional[Dict[str, List[Any]]] = None,
                 exposed_ports: Optional[Dict[str, List[int]]] = None,
                 lookup_timeout: float = 60.0,
                 lookup_interval: float = 0.5,
                 environment: Optional[Dict[str, str]] = None):
        self.guard = guard
        self.compose_files = list(compose_files)
        self.config = config
        self.wait_strategies = dict(wait_strategies or {})
        self.exposed_ports = dict(exposed_ports or {})
        self.lookup_timeout = lookup_timeout
        self.lookup_interval = lookup_interval
        self.environment = dict(environment or {})

        self.identities: Dict[str, ContainerIdentity] = {}
        self.resolver = None
        self.detached = False
        self.is_down = False
        self._down: Optional[Callable[["ComposeProject"], None]] = None

    @property
    def name(self) -> str:
        return self.guard.name

    @property
    def directory(self) -> str:
        return self.guard.path

    @property
    def service_names(self) -> List[str]:
        """Services that must have a container once the project is up."""
        declared = list(self.wait_strategies)
        declared += [name for name in self.exposed_ports if name not in declared]
        return declared or list(self.config.services)

    def dependencies(self) -> Dict[str, List[str]]:
        return self.config.dependencies()

    def identity(self, service: str) -> ContainerIdentity:
        try:
            return self.identities[service]
        except KeyError:
            raise PytainersError(f"Service '{service}' of project {self.name} has no container") from None

    def port(self, service: str, container_port: int, protocol: str = "tcp"):
        if self.resolver is None:
            raise PytainersError(f"Compose project {self.name} is not up")
        return self.resolver.port(self.identity(service), container_port, protocol)

    def host_port(self, service: str, container_port: int, protocol: str = "tcp") -> int:
        """
        :raises PortNotBound: If the service did not publish ``container_port``.
        """
        return self.port(service, container_port, protocol).host_port

    def detach(self) -> str:
        """Keeps the services running and the directory on disk after the scope ends."""
        self.detached = True
        self.guard.detach()
        logger.info("Detached compose project %s", self.name)
        return self.name

    def __enter__(self) -> "ComposeProject":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.detached:
            return
        if self._down is not None:
            try:
                self._down(self)
            except PytainersError as e:
                logger.error("Automatic teardown of compose project %s failed: %s", self.name, e)
        self.guard.__exit__(exc_type, exc, tb)

    def __repr__(self) -> str:
        return f"ComposeProject({self.name!r}, services={list(self.config.services)})"
