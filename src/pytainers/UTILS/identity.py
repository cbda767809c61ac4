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
Unique, time-ordered names for containers and compose projects.

Names embed a ULID: 48 bits of millisecond timestamp followed by 80 random bits,
Crockford base32 encoded. Identifiers generated within the same millisecond
increment the random part, so names sort by creation order.
"""
import os
import re
import threading
import time
from typing import Callable, Optional

CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80
_RANDOM_MAX = (1 << _RANDOM_BITS) - 1
_INVALID = re.compile(r"[^a-z0-9_.-]+")


def encode_ulid(timestamp_ms: int, randomness: int) -> str:
    value = (timestamp_ms << _RANDOM_BITS) | randomness
    chars = []
    for _ in range(26):
        chars.append(CROCKFORD[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


class UlidGenerator:
    """
    Thread-safe monotonic ULID source.

    :param clock: Returns the current time in milliseconds.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = 0

    def new(self) -> str:
        with self._lock:
            now = self._clock()
            if now <= self._last_ms:
                # Same (or earlier) millisecond: keep the timestamp, bump the random part
                now = self._last_ms
                randomness = self._last_random + 1
                if randomness > _RANDOM_MAX:
                    now += 1
                    randomness = int.from_bytes(os.urandom(10), "big")
            else:
                randomness = int.from_bytes(os.urandom(10), "big")
            self._last_ms = now
            self._last_random = randomness
            return encode_ulid(now, randomness)


_default_generator = UlidGenerator()


def sanitize(hint: str) -> str:
    """Reduces a hint to characters every engine accepts in a name."""
    cleaned = _INVALID.sub("-", hint.lower()).strip("-_.")
    return cleaned[:40] or "container"


class IdentityAllocator:
    """
    Hands out collision-free labels.

    Container names look like ``tc-postgres-01hq3...``; compose project names
    like ``tc_nginx_01hq3...`` (also used as the temporary directory name).
    """

    def __init__(self, prefix: str = "tc", generator: Optional[UlidGenerator] = None):
        self.prefix = sanitize(prefix)
        self.generator = generator or _default_generator

    def container_name(self, hint: str) -> str:
        return f"{self.prefix}-{sanitize(hint)}-{self.generator.new().lower()}"

    def project_name(self, hint: str) -> str:
        # compose accepts only [a-z0-9_-] in project names
        prefix = self.prefix.replace(".", "-")
        return f"{prefix}_{sanitize(hint).replace('.', '-')}_{self.generator.new().lower()}"
