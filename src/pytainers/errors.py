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
Exception hierarchy shared by every pytainers component.
"""
from typing import Any, List, Optional, Sequence, Tuple


class PytainersError(Exception):
    """Base class for all pytainers errors."""


class NotInstalled(PytainersError):
    """
    No usable container engine binary responded.

    :param attempts: (candidate, reason) pairs for every engine that was tried.
    """

    def __init__(self, attempts: Sequence[Tuple[str, str]]):
        self.attempts = list(attempts)
        details = "; ".join(f"{name}: {reason}" for name, reason in self.attempts)
        super().__init__(f"No container engine available ({details or 'no candidates'})")


class EngineError(PytainersError):
    """An engine command exited with a non-zero status or could not complete."""

    def __init__(self, command: str, returncode: Optional[int], stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        status = "timed out" if returncode is None else f"exit code {returncode}"
        message = f"Engine command failed ({status}): {command}"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class ParseError(PytainersError):
    """The engine produced output of an unexpected shape."""

    def __init__(self, command: str, output: str, reason: str):
        self.command = command
        self.output = output
        self.reason = reason
        super().__init__(f"Cannot parse output of '{command}': {reason}\n{output[:500]}")


class PortNotBound(PytainersError):
    """The engine reports no host binding for a container port."""

    def __init__(self, container_id: str, container_port: int, protocol: str = "tcp"):
        self.container_id = container_id
        self.container_port = container_port
        self.protocol = protocol
        super().__init__(
            f"Port {container_port}/{protocol} of container {container_id} is not bound to the host"
        )


class NetworkError(PytainersError):
    """A container has no address on a network, or the engine host cannot be located."""


class WaitTimeout(PytainersError):
    """
    Readiness was not reached before the deadline.

    ``pending`` lists the strategies that never succeeded, in declaration order.
    ``container`` is the still-running handle, kept for post-mortem inspection.
    """

    def __init__(self, target: str, pending: List[Any], elapsed: float, container: Any = None):
        self.target = target
        self.pending = list(pending)
        self.elapsed = elapsed
        self.container = container
        lines = "\n".join(f"  - {_describe(strategy)}" for strategy in self.pending)
        super().__init__(
            f"{target} not ready after {elapsed:.1f}s, still waiting on:\n{lines}"
        )


class WaitFailed(PytainersError):
    """A readiness check failed terminally (for example the container exited)."""

    def __init__(self, target: str, strategy: Any, reason: str, container: Any = None):
        self.target = target
        self.strategy = strategy
        self.reason = reason
        self.container = container
        super().__init__(f"{target} failed readiness check {_describe(strategy)}: {reason}")


class ResourceCleanupError(PytainersError):
    """A temporary directory could not be removed."""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to remove temporary resource {path}: {cause}")


class InvalidStateTransition(PytainersError):
    """A container lifecycle was asked to move backwards or skip a state."""

    def __init__(self, current: Any, requested: Any):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move container from {current} to {requested}")


def _describe(strategy: Any) -> str:
    describe = getattr(strategy, "describe", None)
    return describe() if callable(describe) else str(strategy)
