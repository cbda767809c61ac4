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
Bringing compose projects up, waiting for their services and tearing them down.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from ..MODELS.compose_project import ComposeProject
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.wait_strategy import WaitPolicy
from ..PARSERS.compose_parser import ComposeParser, render
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..UTILS.identity import IdentityAllocator
from ..UTILS.temp_resources import TemporaryFile, TemporaryResourceGuard
from .port_resolver import PortResolver
from .wait_evaluator import WaitStrategyEvaluator

logger = logging.getLogger(__name__)

DEFAULT_COMPOSE_FILE = "docker-compose.yaml"

ComposeContent = Union[str, Mapping[str, Any], OrchestrationConfig]


def _as_text(content: ComposeContent) -> str:
    if isinstance(content, str):
        return content
    return render(content)


def _as_file_map(service_files: Any) -> Dict[str, ComposeContent]:
    if isinstance(service_files, (str, OrchestrationConfig)):
        return {DEFAULT_COMPOSE_FILE: service_files}
    if isinstance(service_files, Mapping):
        if "services" in service_files:
            return {DEFAULT_COMPOSE_FILE: service_files}
        return dict(service_files)
    raise TypeError(f"Unsupported compose content: {type(service_files).__name__}")


class ComposeOrchestrator:
    """
    Runs compose projects through an engine backend.

    :param engine: Engine backend providing compose up/down.
    :param policy: Readiness policy applied to every service wait; its timeout also
        bounds the lookup of service containers.
    :param allocator: Names the project directories (and thus the projects).
    :param evaluator: Readiness evaluator shared by all services.
    """

    def __init__(self,
                 engine,
                 policy: Optional[WaitPolicy] = None,
                 allocator: Optional[IdentityAllocator] = None,
                 evaluator: Optional[WaitStrategyEvaluator] = None,
                 base_dir: Optional[str] = None):
        self.engine = engine
        self.policy = policy or WaitPolicy()
        self.allocator = allocator or IdentityAllocator()
        self.evaluator = evaluator or WaitStrategyEvaluator(engine, PortResolver(engine))
        self.resolver = self.evaluator.resolver
        self.base_dir = base_dir
        self.parser = ComposeParser()

    def build_project(self,
                      name: str,
                      service_files: Any,
                      wait_strategies: Optional[Dict[str, List[Any]]] = None,
                      exposed_ports: Optional[Dict[str, List[int]]] = None,
                      environment: Optional[Dict[str, str]] = None) -> ComposeProject:
        """
        Writes the compose files into a fresh temporary directory.

        :param name: Hint for the project (and directory) name.
        :param service_files: A compose document (YAML text, mapping or
            OrchestrationConfig) or a mapping of relative file paths to documents.
            The first file is the primary compose file.
        :param wait_strategies: Service name to the strategies it must satisfy.
        :param exposed_ports: Service name to the container ports tests will resolve.
        :raises ValueError: If a service is referenced that the primary file does not declare.
        """
        files = {path: _as_text(content) for path, content in _as_file_map(service_files).items()}
        if not files:
            raise ValueError("At least one compose file is required")
        primary = next(iter(files))
        config = self.parser.parse_from_string(files[primary])

        wait_strategies = dict(wait_strategies or {})
        exposed_ports = dict(exposed_ports or {})
        unknown = sorted((set(wait_strategies) | set(exposed_ports)) - set(config.services))
        if unknown:
            raise ValueError(
                f"Services {', '.join(unknown)} are not declared in {primary} "
                f"(declared: {', '.join(config.services) or 'none'})"
            )

        guard = TemporaryResourceGuard.acquire(
            name,
            [TemporaryFile(path, text) for path, text in files.items()],
            base_dir=self.base_dir,
            allocator=self.allocator,
        )
        project = ComposeProject(
            guard,
            list(files),
            config,
            wait_strategies=wait_strategies,
            exposed_ports=exposed_ports,
            lookup_timeout=self.policy.timeout,
            lookup_interval=self.policy.interval,
            environment=environment,
        )
        project._down = self.down
        logger.info("Compose project %s prepared in %s", project.name, project.directory)
        return project

    def up(self, project: ComposeProject) -> ComposeProject:
        """
        Starts the project and waits for every service, dependencies first.

        On any failure the project is taken down once and the first error is re-raised.

        :raises EngineError: If compose up fails.
        :raises WaitTimeout: If a service container is missing or not ready in time.
        :raises WaitFailed: If a service fails a readiness check.
        """
        project.resolver = self.resolver
        project._down = self.down
        try:
            project.identities = self.engine.compose_up(project)
            self._register_fixed_ports(project)
            for service in DependencyResolver.resolve_order(project.dependencies()):
                strategies = project.wait_strategies.get(service)
                if not strategies:
                    continue
                identity = project.identity(service)
                logger.info("Waiting for service %s (%s)", service, identity)
                outcome = self.evaluator.evaluate(identity, strategies, self.policy)
                outcome.raise_for_status(f"service '{service}' of {project.name}", container=project)
        except BaseException:
            logger.warning("Compose project %s failed to start, taking it down", project.name)
            try:
                self.down(project)
            except Exception as cleanup:
                logger.error("Failed to take down compose project %s: %s", project.name, cleanup)
            raise
        logger.info("Compose project %s is ready", project.name)
        return project

    def _register_fixed_ports(self, project: ComposeProject) -> None:
        for service, definition in project.config.services.items():
            identity = project.identities.get(service)
            if identity is None:
                continue
            for port in definition.ports:
                if port.published:
                    self.resolver.register_fixed(identity, port.target, port.published, port.protocol)

    def down(self, project: ComposeProject) -> None:
        """Stops and removes the project's containers and volumes. Only the first call does anything."""
        if project.is_down:
            return
        project.is_down = True
        try:
            self.engine.compose_down(project)
        finally:
            for identity in project.identities.values():
                self.resolver.forget(identity)
