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
Docker CLI backend.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..errors import PytainersError
from ..PARSERS.engine_output import parse_single_document, parse_version
from ..RUNNERS.command_runner import EngineCommand
from .base import _DEFAULT, EngineBackend

logger = logging.getLogger(__name__)

# docker compose ps only accepts --no-trunc from 2.23 on
NO_TRUNC_MINIMAL_VERSION = (2, 23, 0)


class DockerEngine(EngineBackend):
    """Drives `docker` and the `docker compose` plugin."""

    name = "docker"
    # Checked against the client API version
    minimal_version = (1, 20, 0)

    def version_args(self) -> List[str]:
        return ["version", "--format", "{{json .}}"]

    def extract_version(self, document: Dict[str, Any]) -> Tuple[str, str]:
        client = document["Client"]
        return client["Version"], client["ApiVersion"]

    def listing_format_args(self) -> List[str]:
        # "--format json" needs docker 23
        return ["--format", "{{json .}}"]

    def compose_version(self) -> Optional[str]:
        if self._compose_version is _DEFAULT:
            cmd = self.command("compose", "version", "--format", "json",
                               timeout=min(self.command_timeout, 30.0))
            try:
                self._compose_version = parse_single_document(cmd.text(), str(cmd))["version"]
            except (PytainersError, KeyError) as e:
                logger.debug("docker compose is not available: %s", e)
                self._compose_version = None
        return self._compose_version

    def compose_command(self, project, *args: str) -> EngineCommand:
        cmd = self.command("compose",
                           "--project-name", project.name,
                           "--project-directory", project.directory,
                           cwd=project.directory, env=project.environment)
        cmd.push(*self.compose_file_args(project))
        return cmd.push(*args)

    def compose_ps(self, project) -> List[Dict[str, Any]]:
        args = ["ps", "--all", "--format", "json"]
        version = parse_version(self.compose_version())
        if version is not None and version >= NO_TRUNC_MINIMAL_VERSION:
            args.insert(2, "--no-trunc")
        return self.compose_command(project, *args).json()
