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
Resolution of container ports to the host ports the engine published them on.

Every (container, port, protocol) key owns one shared resolution cell. The cell
is either unresolved, being resolved by exactly one caller (the others wait on
that flight), or resolved. A resolved cell never changes again; a failed flight
leaves the cell unresolved so a later call can retry.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import PortNotBound
from ..MODELS.container_state import ContainerIdentity, ContainerInfo, PortBinding

logger = logging.getLogger(__name__)

PortKey = Tuple[str, int, str]


class _Flight:
    def __init__(self):
        self.done = threading.Event()
        self.value: Optional[int] = None
        self.error: Optional[BaseException] = None


class _ResolutionCell:
    """Single-flight memo for one host port."""

    def __init__(self, value: Optional[int] = None):
        self._lock = threading.Lock()
        self._value = value
        self._flight: Optional[_Flight] = None

    @property
    def resolved(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> Optional[int]:
        return self._value

    def get_or_resolve(self, lookup: Callable[[], int]) -> int:
        with self._lock:
            if self._value is not None:
                return self._value
            flight = self._flight
            owner = flight is None
            if owner:
                flight = self._flight = _Flight()

        if not owner:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value  # type: ignore[return-value]

        try:
            value = lookup()
        except BaseException as e:
            flight.error = e
            with self._lock:
                self._flight = None
            flight.done.set()
            raise

        with self._lock:
            self._value = value
            self._flight = None
        flight.value = value
        flight.done.set()
        return value


class ExposedPort:
    """
    A container port and its lazily resolved host port.

    Copies share the resolution cell: resolving through any copy resolves all.
    """

    def __init__(self, container_port: int, protocol: str = "tcp",
                 cell: Optional[_ResolutionCell] = None,
                 lookup: Optional[Callable[[], int]] = None):
        self.container_port = container_port
        self.protocol = protocol
        self._cell = cell or _ResolutionCell()
        self._lookup = lookup

    @classmethod
    def fixed(cls, container_port: int, host_port: int, protocol: str = "tcp") -> "ExposedPort":
        return cls(container_port, protocol, _ResolutionCell(host_port))

    @property
    def resolved(self) -> bool:
        return self._cell.resolved

    @property
    def host_port(self) -> int:
        """
        Host port, resolved on first access.

        :raises PortNotBound: If the engine reports no binding.
        """
        if self._lookup is None:
            if self._cell.value is None:
                raise PortNotBound("<unattached>", self.container_port, self.protocol)
            return self._cell.value
        return self._cell.get_or_resolve(self._lookup)

    def shares_state_with(self, other: "ExposedPort") -> bool:
        return self._cell is other._cell

    def __copy__(self) -> "ExposedPort":
        return ExposedPort(self.container_port, self.protocol, self._cell, self._lookup)

    def __deepcopy__(self, memo) -> "ExposedPort":
        return self.__copy__()

    def __repr__(self) -> str:
        host = self._cell.value if self._cell.resolved else "?"
        return f"ExposedPort({host}->{self.container_port}/{self.protocol})"


def select_binding(bindings: List[PortBinding]) -> Optional[PortBinding]:
    """First IPv4 binding, or the first binding of any family when there is none."""
    for binding in bindings:
        if binding.is_ipv4:
            return binding
    return bindings[0] if bindings else None


class PortResolver:
    """
    Memoized, single-flight host port lookups through ``engine.inspect``.
    """

    def __init__(self, engine):
        self.engine = engine
        self._lock = threading.Lock()
        self._cells: Dict[PortKey, _ResolutionCell] = {}

    def _cell(self, key: PortKey) -> _ResolutionCell:
        with self._lock:
            cell = self._cells.get(key)
            if cell is None:
                cell = self._cells[key] = _ResolutionCell()
            return cell

    def register_fixed(self, identity: ContainerIdentity, container_port: int,
                       host_port: int, protocol: str = "tcp") -> None:
        """Pre-resolves a port published on a known host port."""
        key = (identity.id, container_port, protocol.lower())
        with self._lock:
            self._cells[key] = _ResolutionCell(host_port)

    def port(self, identity: ContainerIdentity, container_port: int,
             protocol: str = "tcp") -> ExposedPort:
        protocol = protocol.lower()
        cell = self._cell((identity.id, container_port, protocol))
        return ExposedPort(container_port, protocol, cell,
                           lambda: self._lookup(identity, container_port, protocol))

    def resolve(self, identity: ContainerIdentity, container_port: int,
                protocol: str = "tcp", info: Optional[ContainerInfo] = None) -> int:
        """
        Returns the host port bound to ``container_port``.

        :param info: A fresh inspect result to resolve from instead of inspecting again.
        :raises PortNotBound: If the engine reports no mapping.
        :raises EngineError: If inspecting the container fails.
        """
        if info is None:
            return self.port(identity, container_port, protocol).host_port
        protocol = protocol.lower()
        cell = self._cell((identity.id, container_port, protocol))
        return cell.get_or_resolve(lambda: self._lookup(identity, container_port, protocol, info))

    def forget(self, identity: ContainerIdentity) -> None:
        with self._lock:
            for key in [key for key in self._cells if key[0] == identity.id]:
                del self._cells[key]

    def _lookup(self, identity: ContainerIdentity, container_port: int, protocol: str,
                info: Optional[ContainerInfo] = None) -> int:
        if info is None:
            info = self.engine.inspect(identity)
        binding = select_binding(info.ports.get(f"{container_port}/{protocol}", []))
        if binding is None:
            raise PortNotBound(identity.id, container_port, protocol)
        logger.debug("Port %s/%s of %s is bound to %s:%s",
                     container_port, protocol, identity, binding.host_ip, binding.host_port)
        return binding.host_port
