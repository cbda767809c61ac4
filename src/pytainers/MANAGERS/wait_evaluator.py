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
Readiness evaluation of a started container.

A set of wait strategies is evaluated as an all-of composite. Every strategy
is polled on its own interval until it succeeds, and is then dropped from the
active set. The evaluation is ready once the active set is empty, fails as soon
as one strategy fails terminally, and times out at the overall deadline (or at
a strategy's own, shorter, deadline).
"""
import http.client
import logging
import ssl
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import PytainersError, WaitFailed, WaitTimeout
from ..MODELS.container_state import ContainerIdentity, ContainerInfo, HealthStatus
from ..MODELS.wait_strategy import WaitPolicy
from ..UTILS.port_finder import is_port_open
from .log_cursor import LogCursor, LogMatchCounter
from .port_resolver import PortResolver

logger = logging.getLogger(__name__)

# Lower bound for the timeout handed to a single engine or network call
MIN_CALL_TIMEOUT = 0.05


def _first_line(error: Exception) -> str:
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__


class ReadinessStatus(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class CheckResult:
    satisfied: bool
    terminal: bool = False
    detail: str = ""

    @classmethod
    def ok(cls, detail: str = "") -> "CheckResult":
        return cls(True, False, detail)

    @classmethod
    def pending(cls, detail: str = "") -> "CheckResult":
        return cls(False, False, detail)

    @classmethod
    def failed(cls, detail: str) -> "CheckResult":
        return cls(False, True, detail)


@dataclass
class StrategyProgress:
    """Polling bookkeeping for one strategy of an evaluation."""

    index: int
    strategy: Any
    deadline: float
    interval: float
    next_due: float
    attempts: int = 0
    last_detail: str = ""
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WaitOutcome:
    """
    Result of one evaluation.

    ``pending`` holds the strategies that never succeeded, in declaration order.
    """

    status: ReadinessStatus
    elapsed: float
    pending: List[Any] = field(default_factory=list)
    failed_strategy: Any = None
    reason: str = ""
    attempts: Dict[int, int] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.status == ReadinessStatus.READY

    def raise_for_status(self, target: str, container: Any = None) -> "WaitOutcome":
        """
        :raises WaitTimeout: For a timed out evaluation.
        :raises WaitFailed: For a terminal failure.
        """
        if self.status == ReadinessStatus.TIMED_OUT:
            raise WaitTimeout(target, self.pending, self.elapsed, container=container)
        if self.status == ReadinessStatus.FAILED:
            raise WaitFailed(target, self.failed_strategy, self.reason, container=container)
        return self


class WaitStrategyEvaluator:
    """
    Polls wait strategies against one container.

    :param engine: Engine backend used for inspect, exec and logs.
    :param resolver: Port resolver; one is created when omitted.
    :param host: Address used for HTTP and TCP checks, defaults to the engine host.
    :param clock: Monotonic clock, injectable for tests.
    :param sleep: Sleep function, injectable for tests.
    """

    def __init__(self,
                 engine,
                 resolver: Optional[PortResolver] = None,
                 host: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.engine = engine
        self.resolver = resolver or PortResolver(engine)
        self.host = host or getattr(engine, "host", "127.0.0.1")
        self.clock = clock
        self.sleep = sleep
        self._checks: Dict[str, Callable[..., CheckResult]] = {
            "health_check": self._check_health_command,
            "engine_health": self._check_engine_health,
            "log_message": self._check_log_message,
            "http_status": self._check_http_status,
            "tcp_port": self._check_tcp_port,
            "exit_code": self._check_exit_code,
        }

    def evaluate(self,
                 identity: ContainerIdentity,
                 strategies: Sequence[Any],
                 policy: Optional[WaitPolicy] = None) -> WaitOutcome:
        policy = policy or WaitPolicy()
        start = self.clock()
        overall_deadline = start + policy.timeout
        progress = [
            StrategyProgress(
                index=index,
                strategy=strategy,
                deadline=min(overall_deadline, start + strategy.timeout) if strategy.timeout else overall_deadline,
                interval=strategy.interval or policy.interval,
                next_due=start,
            )
            for index, strategy in enumerate(strategies)
        ]
        active = list(progress)

        def outcome(status: ReadinessStatus, **kwargs) -> WaitOutcome:
            return WaitOutcome(
                status=status,
                elapsed=self.clock() - start,
                pending=[p.strategy for p in active],
                attempts={p.index: p.attempts for p in progress},
                **kwargs,
            )

        def expired() -> bool:
            now = self.clock()
            late = [p for p in active if now >= p.deadline]
            if late:
                logger.info("Container %s not ready: %s timed out", identity,
                            ", ".join(p.strategy.describe() for p in late))
            return bool(late)

        while active:
            if expired():
                return outcome(ReadinessStatus.TIMED_OUT)

            now = self.clock()
            due = [p for p in active if p.next_due <= now]
            if due:
                # Engine calls never outlive the earliest deadline.
                remaining = min(p.deadline for p in active) - now
                try:
                    info = self.engine.inspect(identity, timeout=max(remaining, MIN_CALL_TIMEOUT))
                except PytainersError as e:
                    if expired():
                        return outcome(ReadinessStatus.TIMED_OUT)
                    return outcome(ReadinessStatus.FAILED, failed_strategy=due[0].strategy,
                                   reason=f"cannot inspect container: {e}")
                for p in due:
                    if expired():
                        return outcome(ReadinessStatus.TIMED_OUT)
                    remaining = min(q.deadline for q in active) - self.clock()
                    p.attempts += 1
                    result = self._poll(identity, p, info, max(remaining, MIN_CALL_TIMEOUT))
                    p.last_detail = result.detail
                    if result.terminal:
                        logger.info("Container %s failed %s: %s", identity,
                                    p.strategy.describe(), result.detail)
                        return outcome(ReadinessStatus.FAILED, failed_strategy=p.strategy,
                                       reason=result.detail)
                    if result.satisfied:
                        logger.debug("Container %s satisfied %s after %d attempt(s)",
                                     identity, p.strategy.describe(), p.attempts)
                        active.remove(p)
                    else:
                        p.next_due = now + p.interval
                if policy.max_attempts and any(p.attempts >= policy.max_attempts for p in active):
                    return outcome(ReadinessStatus.TIMED_OUT)

            if not active:
                break
            wake = min(min(p.next_due for p in active), min(p.deadline for p in active))
            delay = wake - self.clock()
            if delay > 0:
                self.sleep(delay)

        return outcome(ReadinessStatus.READY)

    def _poll(self, identity: ContainerIdentity, progress: StrategyProgress,
              info: ContainerInfo, budget: float) -> CheckResult:
        strategy = progress.strategy
        if info.status.terminated and strategy.kind != "exit_code":
            return CheckResult.failed(f"container exited with code {info.exit_code}")
        return self._checks[strategy.kind](identity, progress, info, budget)

    # -- per-kind checks ------------------------------------------------------

    def _check_health_command(self, identity, progress, info, budget) -> CheckResult:
        strategy = progress.strategy
        try:
            result = self.engine.exec(identity, strategy.command, timeout=budget)
        except PytainersError as e:
            return CheckResult.pending(_first_line(e))
        if result.exit_code == strategy.expected_exit_code:
            return CheckResult.ok()
        return CheckResult.pending(f"exit code {result.exit_code}")

    def _check_engine_health(self, identity, progress, info, budget) -> CheckResult:
        if info.health == HealthStatus.HEALTHY:
            return CheckResult.ok()
        if info.health == HealthStatus.UNHEALTHY:
            return CheckResult.failed("engine reports the container unhealthy")
        if info.health == HealthStatus.NONE:
            return CheckResult.failed("container has no health check")
        return CheckResult.pending("health check starting")

    def _check_log_message(self, identity, progress, info, budget) -> CheckResult:
        strategy = progress.strategy
        counter = progress.state.get("counter")
        if counter is None:
            counter = LogMatchCounter(LogCursor(self.engine, identity), strategy.regex, strategy.stream)
            progress.state["counter"] = counter
        try:
            count = counter.poll(budget)
        except PytainersError as e:
            return CheckResult.pending(_first_line(e))
        if count >= strategy.occurrences:
            return CheckResult.ok()
        return CheckResult.pending(f"{count}/{strategy.occurrences} matching lines")

    def _host_port(self, identity, container_port: int, info: ContainerInfo) -> int:
        return self.resolver.resolve(identity, container_port, info=info)

    def _check_http_status(self, identity, progress, info, budget) -> CheckResult:
        strategy = progress.strategy
        try:
            host_port = self._host_port(identity, strategy.port, info)
        except PytainersError as e:
            return CheckResult.pending(_first_line(e))
        url = strategy.url(self.host, host_port)
        context = None
        if strategy.https and strategy.insecure:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        request = urllib.request.Request(url, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=min(strategy.request_timeout, budget),
                                        context=context) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            status = e.code
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            return CheckResult.pending(f"GET {url}: {e}")
        if status in strategy.expected_codes:
            return CheckResult.ok()
        return CheckResult.pending(f"GET {url} returned {status}")

    def _check_tcp_port(self, identity, progress, info, budget) -> CheckResult:
        strategy = progress.strategy
        try:
            host_port = self._host_port(identity, strategy.port, info)
        except PytainersError as e:
            return CheckResult.pending(_first_line(e))
        if is_port_open(self.host, host_port, min(strategy.connect_timeout, budget)):
            return CheckResult.ok()
        return CheckResult.pending(f"{self.host}:{host_port} refused the connection")

    def _check_exit_code(self, identity, progress, info, budget) -> CheckResult:
        strategy = progress.strategy
        if not info.status.terminated:
            return CheckResult.pending(f"container is {info.status.value}")
        if info.exit_code == strategy.expected:
            return CheckResult.ok()
        return CheckResult.failed(f"container exited with code {info.exit_code}, expected {strategy.expected}")
