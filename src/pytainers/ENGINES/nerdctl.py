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
nerdctl (containerd) CLI backend with its built-in compose support.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..RUNNERS.command_runner import EngineCommand
from .base import EngineBackend


class NerdctlEngine(EngineBackend):
    """Drives `nerdctl` and `nerdctl compose`."""

    name = "nerdctl"
    minimal_version = (1, 5, 0)

    def multi_value(self, flag: str, values: Sequence[str]) -> List[str]:
        return [f"{flag}={value}" for value in values]

    def version_args(self) -> List[str]:
        return ["version", "--format", "json"]

    def extract_version(self, document: Dict[str, Any]) -> Tuple[str, str]:
        version = document["Client"]["Version"]
        return version, version

    def compose_version(self) -> Optional[str]:
        # compose ships inside the nerdctl binary
        return self.version()

    def compose_command(self, project, *args: str) -> EngineCommand:
        cmd = self.command("compose",
                           "--project-name", project.name,
                           "--project-directory", project.directory,
                           cwd=project.directory, env=project.environment)
        cmd.push(*self.compose_file_args(project))
        return cmd.push(*args)

    def compose_down_args(self) -> List[str]:
        return ["down", "--volumes"]

    def compose_ps(self, project) -> List[Dict[str, Any]]:
        return self.compose_command(project, "ps", "--all", "--format", "json").json()
