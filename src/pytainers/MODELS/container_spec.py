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
Models describing a single container to provision: image, ports, mounts,
environment and readiness checks.
"""
import os
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .image_reference import ImageReference
from .wait_strategy import WaitStrategy

_CONTAINER_NAME = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")


class PortMapping(BaseModel):
    """
    A container port to publish, optionally pinned to a fixed host port.
    """

    model_config = ConfigDict(frozen=True)

    container_port: int = Field(gt=0, lt=65536)
    host_port: Optional[int] = Field(default=None, gt=0, lt=65536)
    protocol: Literal["tcp", "udp", "sctp"] = "tcp"

    @property
    def key(self) -> str:
        """Key used by the engine in its port-binding structure, e.g. '80/tcp'."""
        return f"{self.container_port}/{self.protocol}"

    def publish_arg(self) -> str:
        if self.host_port is not None:
            return f"{self.host_port}:{self.container_port}/{self.protocol}"
        return self.key

    @classmethod
    def parse(cls, value: str) -> "PortMapping":
        """
        Parses '80', '80/udp', '8080:80' or '8080:80/tcp'.
        """
        spec, _, protocol = value.partition("/")
        host, _, container = spec.rpartition(":")
        try:
            return cls(
                container_port=int(container),
                host_port=int(host) if host else None,
                protocol=protocol or "tcp",
            )
        except ValueError as e:
            raise ValueError(f"Invalid port mapping '{value}'") from e


class VolumeMount(BaseModel):
    """
    A bind mount, named volume or tmpfs mounted into the container.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["bind", "volume", "tmpfs"] = "bind"
    source: Optional[str] = None
    target: str
    read_only: bool = False

    @model_validator(mode="after")
    def _check_source(self) -> "VolumeMount":
        if self.type != "tmpfs" and not self.source:
            raise ValueError(f"{self.type} mount for {self.target} needs a source")
        if not self.target.startswith("/"):
            raise ValueError(f"Mount target must be absolute: {self.target}")
        return self

    def mount_arg(self) -> str:
        """Renders the value of a ``--mount`` flag."""
        if self.type == "tmpfs":
            return f"type=tmpfs,target={self.target}"
        source = os.path.abspath(self.source) if self.type == "bind" else self.source
        arg = f"type={self.type},source={source},target={self.target}"
        if self.read_only:
            arg += ",readonly"
        return arg


class ContainerHealthCheck(BaseModel):
    """
    Health check registered with the engine when the container is created.
    Durations are in seconds.
    """

    model_config = ConfigDict(frozen=True)

    command: str
    interval: float = 1.0
    retries: int = 10
    start_period: float = 1.0
    timeout: float = 30.0

    def to_args(self) -> List[str]:
        return [
            f"--health-cmd={self.command}",
            f"--health-interval={int(self.interval * 1000)}ms",
            f"--health-retries={self.retries}",
            f"--health-start-period={int(self.start_period * 1000)}ms",
            f"--health-timeout={int(self.timeout * 1000)}ms",
        ]


class ContainerSpec(BaseModel):
    """
    Everything needed to create one container. Immutable once submitted.
    """

    model_config = ConfigDict(frozen=True)

    image: str
    ports: List[PortMapping] = []
    environment: Dict[str, str] = {}
    mounts: List[VolumeMount] = []
    wait_strategies: List[WaitStrategy] = []
    command: List[str] = []
    entrypoint: Optional[str] = None
    labels: Dict[str, str] = {}
    network: Optional[str] = None
    health_check: Optional[ContainerHealthCheck] = None
    # Human readable part of the generated container name
    name_hint: Optional[str] = None
    # Fixed name: a container with it is adopted by later runs and only stopped on teardown
    container_name: Optional[str] = None

    @field_validator("image")
    @classmethod
    def _valid_image(cls, value: str) -> str:
        ImageReference.parse(value)
        return value

    @field_validator("container_name")
    @classmethod
    def _valid_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _CONTAINER_NAME.match(value):
            raise ValueError(f"invalid container name {value!r}")
        return value

    @field_validator("ports", mode="before")
    @classmethod
    def _coerce_ports(cls, value):
        if not isinstance(value, (list, tuple)):
            return value
        ports = []
        for port in value:
            if isinstance(port, int):
                port = PortMapping(container_port=port)
            elif isinstance(port, str):
                port = PortMapping.parse(port)
            ports.append(port)
        return ports

    @property
    def image_ref(self) -> ImageReference:
        return ImageReference.parse(self.image)

    def port_mapping(self, container_port: int, protocol: str = "tcp") -> Optional[PortMapping]:
        for mapping in self.ports:
            if mapping.container_port == container_port and mapping.protocol == protocol:
                return mapping
        return None

    @property
    def hint(self) -> str:
        """Name fragment used for the generated container name."""
        if self.name_hint:
            return self.name_hint
        return self.image_ref.repository.rsplit("/", 1)[-1]
