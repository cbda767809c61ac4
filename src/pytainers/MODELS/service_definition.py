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
Models for compose services, including health checks and mounts.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel


class HealthCheck(BaseModel):
    """
    Compose-level health check, run by the engine inside the service container.
    Durations are in seconds.
    """
    test: List[str]
    interval: float = 1.0
    timeout: float = 30.0
    retries: int = 10
    start_period: float = 0.0

    def to_compose(self) -> Dict[str, object]:
        return {
            "test": list(self.test),
            "interval": f"{int(self.interval * 1000)}ms",
            "timeout": f"{int(self.timeout * 1000)}ms",
            "retries": self.retries,
            "start_period": f"{int(self.start_period * 1000)}ms",
        }


class VolumeMount(BaseModel):
    """
    Defines a mapping between a host path (or named volume) and a service path.
    """
    source: str
    target: str
    read_only: bool = False

    def to_compose(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.source}:{self.target}{suffix}"


class ServicePort(BaseModel):
    """
    A published service port.

    ``published_text`` holds a host side the engine resolves itself, such as
    '${HOST_PORT:-8080}' or a range; ``published`` is then None.
    """
    target: int
    published: Optional[int] = None
    published_text: Optional[str] = None
    protocol: str = "tcp"
    host_ip: Optional[str] = None

    def to_compose(self) -> str:
        value = str(self.target)
        if self.protocol != "tcp":
            value += f"/{self.protocol}"
        host = self.published_text or (str(self.published) if self.published else "")
        if self.host_ip:
            return f"{self.host_ip}:{host}:{value}"
        if host:
            return f"{host}:{value}"
        return value


class ServiceDefinition(BaseModel):
    """
    The definition of a single compose service.
    """
    name: str
    image_name: str

    # Execution
    cmd: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}

    # Networking
    ports: List[ServicePort] = []

    # Storage
    volumes: List[VolumeMount] = []

    # Lifecycle
    health_check: Optional[HealthCheck] = None
    depends_on: List[str] = []

    # Metadata
    labels: Dict[str, str] = {}
