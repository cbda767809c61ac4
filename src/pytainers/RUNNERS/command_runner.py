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
Execution of container engine commands with captured output.
"""
import logging
import os
import shlex
import subprocess
from typing import Any, Dict, Iterable, List, Optional

from ..errors import EngineError, NotInstalled
from ..PARSERS.engine_output import parse_json_documents

logger = logging.getLogger(__name__)


class EngineCommand:
    """
    One invocation of an engine binary.

    Arguments are accumulated with :meth:`push` and the command is run once
    with :meth:`run` (or one of the helpers built on it).
    """

    def __init__(self,
                 program: str,
                 args: Optional[Iterable[str]] = None,
                 cwd: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None):
        """
        Initializes the command.

        Args:
            program (str): Engine binary, e.g. 'docker' or 'podman-compose'.
            args (Optional[Iterable[str]]): Initial arguments.
            cwd (Optional[str]): Directory to run the command in.
            env (Optional[Dict[str, str]]): Extra environment variables.
            timeout (Optional[float]): Seconds before the command is abandoned.
        """
        self.program = program
        self.args: List[str] = list(args or [])
        self.cwd = cwd
        self.env = dict(env or {})
        self.timeout = timeout

    def push(self, *args: str) -> "EngineCommand":
        self.args.extend(str(arg) for arg in args)
        return self

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        return shlex.join(self.argv)

    def run(self, check: bool = True) -> subprocess.CompletedProcess:
        """
        Runs the command to completion.

        Args:
            check (bool): Raise on a non-zero exit status.

        Returns:
            subprocess.CompletedProcess: Finished process with text stdout/stderr.

        Raises:
            NotInstalled: If the binary cannot be found.
            EngineError: On timeout, or on a non-zero exit when ``check`` is set.
        """
        logger.debug("Running %s", self)
        env = None
        if self.env:
            env = os.environ.copy()
            env.update(self.env)
        try:
            result = subprocess.run(
                self.argv,
                cwd=self.cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
            )
        except FileNotFoundError as e:
            raise NotInstalled([(self.program, "executable not found")]) from e
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise EngineError(str(self), None, stderr or f"no answer after {self.timeout}s") from e

        if result.stderr and result.returncode == 0:
            logger.debug("%s wrote to stderr:\n%s", self.program, result.stderr.strip())
        if check and result.returncode != 0:
            raise EngineError(str(self), result.returncode, result.stderr)
        return result

    def text(self) -> str:
        """Runs the command and returns its stdout."""
        return self.run().stdout

    def json(self) -> List[Any]:
        """Runs the command and decodes JSON / JSON-lines stdout."""
        return parse_json_documents(self.text(), str(self))
