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
Common command construction and result parsing for container engines.

Every engine is driven through its CLI. Subclasses only describe what differs
between docker, podman and nerdctl: flag spelling, version output and how a
compose deployment is addressed.
"""
import ipaddress
import logging
import os
import re
import socket
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..errors import NetworkError, NotInstalled, ParseError, WaitTimeout
from ..MODELS.container_spec import ContainerSpec
from ..MODELS.container_state import ContainerIdentity, ContainerInfo, ContainerListing, ExecResult, LogChunk
from ..PARSERS.engine_output import (
    parse_container_listing,
    parse_inspect,
    parse_network_names,
    parse_single_document,
    parse_subnets,
    parse_version,
)
from ..RUNNERS.command_runner import EngineCommand

if TYPE_CHECKING:
    from ..MODELS.compose_project import ComposeProject

logger = logging.getLogger(__name__)

_CONTAINER_ID = re.compile(r"^[0-9a-f]{12,64}$")
_DEFAULT = object()

# Engine-provided networks, never the network of a user container
BUILTIN_NETWORKS = ("bridge", "host", "none", "podman")


class EngineBackend(ABC):
    """
    Lifecycle operations for one container engine.

    :param binary: Engine executable, defaults to the engine name.
    :param command_timeout: Upper bound in seconds for any single engine call.
    :param host: Address where published ports are reachable.
    """

    name: str = ""
    minimal_version: Tuple[int, int, int] = (0, 0, 0)
    # Created by the engine at the root of every container it runs
    container_marker = "/.dockerenv"

    def __init__(self,
                 binary: Optional[str] = None,
                 command_timeout: float = 120.0,
                 host: str = "127.0.0.1"):
        self.binary = binary or self.name
        self.command_timeout = command_timeout
        self.host = host
        self._version: Optional[str] = None
        self._compose_version: Any = _DEFAULT

    def __str__(self) -> str:
        if self._version:
            return f"{self.name} {self._version}"
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}(binary={self.binary!r})"

    # -- command construction -------------------------------------------------

    def command(self, *args: str, timeout: Any = _DEFAULT,
                cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> EngineCommand:
        if timeout is _DEFAULT:
            timeout = self.command_timeout
        return EngineCommand(self.binary, args, cwd=cwd, env=env, timeout=timeout)

    def multi_value(self, flag: str, values: Sequence[str]) -> List[str]:
        """Renders a repeatable option. Docker style: ``--env A=1 --env B=2``."""
        args: List[str] = []
        for value in values:
            args.extend([flag, value])
        return args

    @abstractmethod
    def version_args(self) -> List[str]:
        """Arguments of the command printing the engine version as JSON."""

    @abstractmethod
    def extract_version(self, document: Dict[str, Any]) -> Tuple[str, str]:
        """
        Returns (display version, version checked against ``minimal_version``).
        """

    @abstractmethod
    def compose_command(self, project: "ComposeProject", *args: str) -> EngineCommand:
        """Compose invocation addressing ``project`` by directory and name."""

    @abstractmethod
    def compose_ps(self, project: "ComposeProject") -> List[Dict[str, Any]]:
        """Lists the containers of a compose project as raw JSON documents."""

    def compose_down_args(self) -> List[str]:
        return ["down", "--volumes", "--remove-orphans"]

    def create_args(self, spec: ContainerSpec, name: str,
                    labels: Optional[Mapping[str, str]] = None) -> List[str]:
        """
        Builds the arguments of ``<engine> create`` for ``spec``.
        """
        all_labels = dict(spec.labels)
        all_labels.update(labels or {})

        args = ["create", "--name", name]
        args += self.multi_value("--label", [f"{k}={v}" for k, v in all_labels.items()])
        args += self.multi_value("--env", [f"{k}={v}" for k, v in spec.environment.items()])
        args += self.multi_value("--publish", [port.publish_arg() for port in spec.ports])
        args += self.multi_value("--mount", [mount.mount_arg() for mount in spec.mounts])
        if spec.network:
            args += self.multi_value("--network", [spec.network])
        if spec.health_check:
            args += spec.health_check.to_args()
        if spec.entrypoint is not None:
            args += self.multi_value("--entrypoint", [spec.entrypoint])
        args.append(spec.image_ref.descriptor)
        args.extend(spec.command)
        return args

    # -- discovery ------------------------------------------------------------

    def _query_version(self) -> Tuple[str, str]:
        cmd = self.command(*self.version_args(), timeout=min(self.command_timeout, 30.0))
        document = parse_single_document(cmd.text(), str(cmd))
        try:
            return self.extract_version(document)
        except (AttributeError, KeyError, TypeError) as e:
            raise ParseError(str(cmd), str(document), f"no version field: {e}") from e

    def version(self) -> str:
        """
        Queries the engine version.

        :raises NotInstalled: If the binary is missing.
        :raises EngineError: If the engine does not answer.
        :raises ParseError: If the version output is unexpected.
        """
        if self._version is None:
            self._version, _ = self._query_version()
        return self._version

    def ensure_available(self) -> str:
        """
        Checks that the engine answers and is recent enough.

        :raises NotInstalled: If the engine is missing or too old.
        """
        display, checked = self._query_version()
        current = parse_version(checked)
        if current is None or current < self.minimal_version:
            minimal = ".".join(str(part) for part in self.minimal_version)
            raise NotInstalled([(self.name, f"version {checked} is older than {minimal}")])
        self._version = display
        return display

    def compose_version(self) -> Optional[str]:
        """Version of the compose implementation, or None when unavailable."""
        return None

    # -- container operations -------------------------------------------------

    def create(self, spec: ContainerSpec, name: str,
               labels: Optional[Mapping[str, str]] = None) -> ContainerIdentity:
        """
        Creates (without starting) a container named ``name``.

        :raises EngineError: If the engine refuses to create the container.
        :raises ParseError: If no container id is printed.
        """
        cmd = self.command(*self.create_args(spec, name, labels))
        logger.info("Creating container %s from %s", name, spec.image_ref.descriptor)
        output = cmd.text()
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines or not _CONTAINER_ID.match(lines[-1]):
            raise ParseError(str(cmd), output, "no container id in output")
        return ContainerIdentity(id=lines[-1], name=name)

    def start(self, identity: ContainerIdentity) -> None:
        self.command("start", identity.id).run()
        logger.info("Container %s started", identity)

    def inspect(self, identity: ContainerIdentity, timeout: Optional[float] = None) -> ContainerInfo:
        cmd = self.command("inspect", "--type", "container", identity.id,
                           timeout=timeout if timeout is not None else self.command_timeout)
        return parse_inspect(cmd.text(), str(cmd))

    def logs(self, identity: ContainerIdentity, since: Optional[str] = None,
             timeout: Optional[float] = None) -> LogChunk:
        """
        Reads timestamped container logs, optionally only those since ``since``.
        """
        args = ["logs", "--timestamps"]
        if since:
            args += ["--since", since]
        result = self.command(*args, identity.id,
                              timeout=timeout if timeout is not None else self.command_timeout).run()
        return LogChunk(stdout=result.stdout, stderr=result.stderr)

    def exec(self, identity: ContainerIdentity, command: Sequence[str],
             timeout: Optional[float] = None) -> ExecResult:
        """
        Runs ``command`` inside the container. A non-zero exit is a result, not an error.

        :raises EngineError: If the call does not finish within ``timeout``.
        """
        cmd = self.command("exec", identity.id, *command,
                           timeout=timeout if timeout is not None else self.command_timeout)
        result = cmd.run(check=False)
        return ExecResult(exit_code=result.returncode, stdout=result.stdout, stderr=result.stderr)

    def stop(self, identity: ContainerIdentity, grace: int = 10) -> None:
        self.command("stop", "--time", str(grace), identity.id,
                     timeout=self.command_timeout + grace).run()
        logger.info("Container %s stopped", identity)

    def remove(self, identity: ContainerIdentity) -> None:
        self.command("rm", "--force", "--volumes", identity.id).run()
        logger.info("Container %s removed", identity)

    def unpause(self, identity: ContainerIdentity) -> None:
        self.command("unpause", identity.id).run()
        logger.info("Container %s unpaused", identity)

    def listing_format_args(self) -> List[str]:
        """Option making ``ps`` and ``network ls`` print JSON."""
        return ["--format", "json"]

    def find_container(self, name: str) -> Optional[ContainerListing]:
        """
        Looks up a container, running or not, by its exact name.

        :return: The listing row, or None when no container has that name.
        """
        cmd = self.command("ps", "--all", "--no-trunc", "--filter", f"name={name}",
                           *self.listing_format_args())
        for entry in cmd.json():
            listing = parse_container_listing(entry)
            # The name filter also matches substrings
            if listing is not None and name in listing.names:
                return listing
        return None

    # -- networks and volumes -------------------------------------------------

    def _label_args(self, labels: Optional[Mapping[str, str]]) -> List[str]:
        return self.multi_value("--label", [f"{k}={v}" for k, v in (labels or {}).items()])

    def create_network(self, name: str, labels: Optional[Mapping[str, str]] = None) -> None:
        self.command("network", "create", *self._label_args(labels), name).run()
        logger.info("Network %s created", name)

    def remove_network(self, name: str) -> None:
        self.command("network", "rm", name).run()
        logger.info("Network %s removed", name)

    def create_volume(self, name: str, labels: Optional[Mapping[str, str]] = None) -> None:
        self.command("volume", "create", *self._label_args(labels), name).run()
        logger.info("Volume %s created", name)

    def remove_volume(self, name: str) -> None:
        self.command("volume", "rm", "--force", name).run()
        logger.info("Volume %s removed", name)

    def network_ip(self, identity: ContainerIdentity, network: Optional[str] = None) -> str:
        """
        Address of the container on ``network``, or on its only network when omitted.

        :raises NetworkError: If the container has no address there.
        """
        info = self.inspect(identity)
        if network is None:
            if len(info.networks) != 1:
                attached = ", ".join(sorted(info.networks)) or "none"
                raise NetworkError(f"Container {identity} is on several networks or none ({attached}), name one")
            network = next(iter(info.networks))
        attachment = info.networks.get(network)
        if attachment is None or not attachment.ip_address:
            raise NetworkError(f"Container {identity} has no address on network '{network}'")
        return attachment.ip_address

    # -- host discovery -------------------------------------------------------

    def inside_container(self) -> bool:
        return os.path.exists(self.container_marker)

    def default_gateway_ip(self) -> str:
        """
        Gateway of the container this process runs in.

        :raises NetworkError: Unless the container has exactly one gateway.
        :raises EngineError: If the engine does not know the current host as a container.
        """
        hostname = os.environ.get("HOSTNAME") or socket.gethostname()
        info = self.inspect(ContainerIdentity(id=hostname, name=hostname))
        gateways = sorted({attachment.gateway for attachment in info.networks.values() if attachment.gateway})
        if len(gateways) != 1:
            raise NetworkError(f"Expected one gateway for container {hostname}, found {gateways or 'none'}")
        return gateways[0]

    def detect_host(self) -> str:
        """
        Address where published ports are reachable from this process.

        Inside a container (docker in docker) that is the gateway of its network.
        """
        if self.inside_container():
            return self.default_gateway_ip()
        return "127.0.0.1"

    def find_host_network(self) -> Optional[str]:
        """
        The user-defined network whose subnet holds the engine host address.

        Returns None unless exactly one network matches.
        """
        host = ipaddress.ip_address(self.detect_host())
        cmd = self.command("network", "ls", *self.listing_format_args())
        matches = []
        for name in parse_network_names(cmd.text(), str(cmd)):
            if name in BUILTIN_NETWORKS:
                continue
            inspect = self.command("network", "inspect", name)
            for subnet in parse_subnets(inspect.text(), str(inspect)):
                try:
                    if host in ipaddress.ip_network(subnet, strict=False):
                        matches.append(name)
                        break
                except ValueError:
                    logger.debug("Ignoring subnet %r of network %s", subnet, name)
        if len(matches) != 1:
            logger.debug("No single network holds %s: %s", host, matches)
            return None
        return matches[0]

    # -- compose operations ---------------------------------------------------

    def compose_up(self, project: "ComposeProject") -> Dict[str, ContainerIdentity]:
        """
        Starts every service of ``project`` and returns their containers.

        Waits (bounded by ``project.lookup_timeout``) until every declared
        service shows up in the engine's listing.

        :raises EngineError: If compose up fails.
        :raises WaitTimeout: If declared services never get a container.
        """
        logger.info("Launching compose project %s from %s", project.name, project.directory)
        self.compose_command(project, "up", "--detach").run()

        required = set(project.service_names)
        started = time.monotonic()
        retrying = Retrying(
            stop=stop_after_delay(project.lookup_timeout),
            wait=wait_fixed(project.lookup_interval),
            retry=retry_if_result(lambda found: not required.issubset(found)),
        )
        try:
            found = retrying(self.compose_services, project)
        except RetryError as e:
            found = e.last_attempt.result()
            missing = sorted(required.difference(found))
            raise WaitTimeout(
                f"compose project {project.name}",
                [f"container for service '{name}'" for name in missing],
                time.monotonic() - started,
            ) from e
        return found

    def compose_services(self, project: "ComposeProject") -> Dict[str, ContainerIdentity]:
        services: Dict[str, ContainerIdentity] = {}
        for entry in self.compose_ps(project):
            labels = entry.get("Labels")
            service = entry.get("Service")
            if not service and isinstance(labels, dict):
                service = labels.get("com.docker.compose.service")
            container_id = entry.get("ID") or entry.get("Id")
            if not service or not container_id:
                continue
            names = entry.get("Name") or entry.get("Names") or ""
            if isinstance(names, list):
                names = names[0] if names else ""
            services[service] = ContainerIdentity(id=container_id, name=names.lstrip("/"))
        return services

    def compose_down(self, project: "ComposeProject") -> None:
        self.compose_command(project, *self.compose_down_args()).run()
        logger.info("Compose project %s stopped", project.name)

    def compose_file_args(self, project: "ComposeProject") -> List[str]:
        args: List[str] = []
        for file_name in project.compose_files:
            args += ["--file", os.path.join(project.directory, file_name)]
        return args
