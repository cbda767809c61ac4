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
Podman CLI backend, using podman-compose for compose projects.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import PytainersError
from ..RUNNERS.command_runner import EngineCommand
from .base import _DEFAULT, EngineBackend

logger = logging.getLogger(__name__)


class PodmanEngine(EngineBackend):
    """Drives `podman` and `podman-compose`."""

    name = "podman"
    minimal_version = (4, 0, 0)
    container_marker = "/run/.containerenv"

    def __init__(self, binary: Optional[str] = None, compose_binary: str = "podman-compose", **kwargs):
        super().__init__(binary, **kwargs)
        self.compose_binary = compose_binary

    def multi_value(self, flag: str, values: Sequence[str]) -> List[str]:
        return [f"{flag}={value}" for value in values]

    def version_args(self) -> List[str]:
        return ["version", "--format", "json"]

    def extract_version(self, document: Dict[str, Any]) -> Tuple[str, str]:
        client = document["Client"]
        return client["Version"], client.get("APIVersion") or client["Version"]

    def compose_version(self) -> Optional[str]:
        if self._compose_version is _DEFAULT:
            cmd = EngineCommand(self.compose_binary, ["version", "--short"],
                                timeout=min(self.command_timeout, 30.0))
            try:
                lines = cmd.text().strip().splitlines()
                self._compose_version = lines[-1].strip() if lines else None
            except PytainersError as e:
                logger.debug("podman-compose is not available: %s", e)
                self._compose_version = None
        return self._compose_version

    def compose_command(self, project, *args: str) -> EngineCommand:
        # podman-compose resolves relative paths from its working directory
        cmd = EngineCommand(self.compose_binary,
                            ["--project-name", project.name],
                            cwd=project.directory,
                            env=project.environment,
                            timeout=self.command_timeout)
        cmd.push(*self.compose_file_args(project))
        return cmd.push(*args)

    def compose_down_args(self) -> List[str]:
        return ["down", "--volumes"]

    def compose_ps(self, project) -> List[Dict[str, Any]]:
        label = f"label=io.podman.compose.project={project.name.lower()}"
        return self.command("ps", "--all", "--filter", label, "--format", "json").json()
