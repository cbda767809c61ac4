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
Readiness strategies evaluated against a started container.

Each strategy kind is a frozen model tagged by ``kind``; ``WaitStrategy`` is the
closed union of all of them. Any strategy may override the policy timeout and
polling interval.
"""
import re
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Strategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout: Optional[float] = Field(default=None, gt=0)
    interval: Optional[float] = Field(default=None, gt=0)

    def describe(self) -> str:
        return self.kind  # type: ignore[attr-defined]


class HealthCheck(_Strategy):
    """Runs a command inside the container; ready when it exits with the expected code."""

    kind: Literal["health_check"] = "health_check"
    command: List[str]
    expected_exit_code: int = 0

    @field_validator("command")
    @classmethod
    def _not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("health check command must not be empty")
        return value

    def describe(self) -> str:
        return f"health check `{' '.join(self.command)}` (exit {self.expected_exit_code})"


class EngineHealth(_Strategy):
    """Waits for the engine-reported health status to become 'healthy'."""

    kind: Literal["engine_health"] = "engine_health"

    def describe(self) -> str:
        return "engine health status 'healthy'"


class LogMessagePattern(_Strategy):
    """Waits until ``pattern`` has matched ``occurrences`` log lines."""

    kind: Literal["log_message"] = "log_message"
    pattern: str
    stream: Literal["stdout", "stderr", "both"] = "both"
    occurrences: int = Field(default=1, ge=1)

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern {value!r}: {e}") from e
        return value

    @property
    def regex(self) -> "re.Pattern[str]":
        return re.compile(self.pattern)

    def describe(self) -> str:
        times = "" if self.occurrences == 1 else f" x{self.occurrences}"
        return f"log message /{self.pattern}/ on {self.stream}{times}"


class HttpStatus(_Strategy):
    """
    Issues GET requests against a published port.

    ``insecure`` skips TLS certificate verification for self-signed endpoints.
    """

    kind: Literal["http_status"] = "http_status"
    port: int = Field(gt=0, lt=65536)
    path: str = "/"
    expected_codes: List[int] = [200]
    https: bool = False
    insecure: bool = False
    request_timeout: float = Field(default=2.0, gt=0)

    def url(self, host: str, host_port: int) -> str:
        scheme = "https" if self.https else "http"
        return f"{scheme}://{host}:{host_port}/{self.path.lstrip('/')}"

    def describe(self) -> str:
        codes = ",".join(str(code) for code in self.expected_codes)
        return f"HTTP GET :{self.port}/{self.path.lstrip('/')} -> {codes}"


class TcpPortOpen(_Strategy):
    """Waits until a raw TCP connection to the published port succeeds."""

    kind: Literal["tcp_port"] = "tcp_port"
    port: int = Field(gt=0, lt=65536)
    connect_timeout: float = Field(default=1.0, gt=0)

    def describe(self) -> str:
        return f"TCP port {self.port} open"


class ExitCode(_Strategy):
    """Waits for the container process to exit with the expected code."""

    kind: Literal["exit_code"] = "exit_code"
    expected: int = 0

    def describe(self) -> str:
        return f"container exit code {self.expected}"


WaitStrategy = Annotated[
    Union[HealthCheck, EngineHealth, LogMessagePattern, HttpStatus, TcpPortOpen, ExitCode],
    Field(discriminator="kind"),
]


class WaitPolicy(BaseModel):
    """
    Global bounds for one readiness evaluation.

    :param timeout: Wall-clock seconds from the first evaluation.
    :param interval: Default seconds between polls of a single strategy.
    :param max_attempts: Optional cap on polls per strategy.
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(default=60.0, gt=0)
    interval: float = Field(default=0.5, gt=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
