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
Incremental reading of container logs.
"""
import logging
import re
from typing import Dict, Iterator, List, Optional, Pattern, Set, Tuple

from ..MODELS.container_state import ContainerIdentity

logger = logging.getLogger(__name__)

_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$")
STREAMS = ("stdout", "stderr")


def normalize_timestamp(value: str) -> Optional[str]:
    """
    Returns a string that sorts chronologically, or None if ``value`` is no timestamp.

    Engines trim trailing zeros of the fraction, so it is padded to nanoseconds.
    """
    match = _TIMESTAMP.match(value)
    if not match:
        return None
    seconds, fraction, zone = match.groups()
    return f"{seconds}.{(fraction or '').ljust(9, '0')[:9]}{zone or 'Z'}"


def split_line(line: str) -> Tuple[Optional[str], str]:
    """Splits '<timestamp> <message>' as printed by ``logs --timestamps``."""
    head, _, rest = line.partition(" ")
    if normalize_timestamp(head) is None:
        return None, line
    return head, rest


class LogCursor:
    """
    Reads only the log lines written since the previous read.

    The engine's ``--since`` filter includes lines stamped exactly at the
    cursor, so lines at the boundary timestamp are remembered and skipped.
    """

    def __init__(self, engine, identity: ContainerIdentity):
        self.engine = engine
        self.identity = identity
        self.since: Optional[str] = None
        self._since_key: Optional[str] = None
        self._boundary: Set[Tuple[str, str, str]] = set()
        self._unstamped: Dict[str, int] = {}

    def read(self, timeout: Optional[float] = None) -> List[Tuple[str, str]]:
        """
        Returns new (stream, message) pairs in engine order.

        :param timeout: Bound for the engine call, defaults to the engine's own.
        """
        chunk = self.engine.logs(self.identity, since=self.since, timeout=timeout)
        new_lines: List[Tuple[str, str]] = []
        latest_raw, latest_key = self.since, self._since_key
        at_latest: Set[Tuple[str, str, str]] = set(self._boundary)

        for stream in STREAMS:
            # Unstamped text continues the previous stamped line of its stream.
            inherited_key = self._since_key
            unstamped = 0
            for line in chunk.stream(stream).split("\n"):
                line = line.rstrip("\r")
                if not line:
                    continue
                raw, message = split_line(line)
                own_key = normalize_timestamp(raw) if raw else None
                key = own_key or inherited_key
                if key is None:
                    # Nothing stamped yet: the engine returns the whole log every time.
                    unstamped += 1
                    if unstamped > self._unstamped.get(stream, 0):
                        self._unstamped[stream] = unstamped
                        new_lines.append((stream, message))
                    continue
                inherited_key = key
                entry = (stream, key, message)
                if self._since_key is not None:
                    if key < self._since_key:
                        continue
                    if key == self._since_key and entry in self._boundary:
                        continue
                new_lines.append((stream, message))
                if latest_key is None or key > latest_key:
                    latest_raw, latest_key = raw, key
                    at_latest = {entry}
                elif key == latest_key:
                    at_latest.add(entry)

        if latest_key != self._since_key:
            self._boundary = at_latest
        else:
            self._boundary |= at_latest
        self.since, self._since_key = latest_raw, latest_key
        return new_lines


class LogMatchCounter:
    """Counts lines matching a pattern across successive cursor reads."""

    def __init__(self, cursor: LogCursor, pattern: Pattern[str], stream: str = "both"):
        self.cursor = cursor
        self.pattern = pattern
        self.stream = stream
        self.count = 0

    def _wanted(self, lines: List[Tuple[str, str]]) -> Iterator[str]:
        for stream, message in lines:
            if self.stream in ("both", stream):
                yield message

    def poll(self, timeout: Optional[float] = None) -> int:
        for message in self._wanted(self.cursor.read(timeout)):
            if self.pattern.search(message):
                self.count += 1
        return self.count
