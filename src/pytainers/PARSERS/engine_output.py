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
Parsers for the output of container engine commands.

Engines disagree on the shape of their JSON output: docker prints one object
per line for ``ps``, podman prints a single array, ``inspect`` prints an array
everywhere, and ``version`` prints a single object. Everything here accepts
all of those shapes.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ParseError
from ..MODELS.container_state import (
    ContainerInfo,
    ContainerListing,
    EngineStatus,
    HealthStatus,
    NetworkAttachment,
    PortBinding,
)

_decoder = json.JSONDecoder()


def parse_json_documents(output: str, command: str = "") -> List[Any]:
    """
    Parses JSON-lines, a single JSON object or a JSON array into a flat list.

    :param output: Raw stdout of the engine command.
    :param command: Command line, used for error messages.
    :return: List of decoded documents (arrays are flattened one level).
    :raises ParseError: If the output is not valid JSON in any of these shapes.
    """
    documents: List[Any] = []
    text = output.strip()
    index = 0
    while index < len(text):
        try:
            document, end = _decoder.raw_decode(text, index)
        except json.JSONDecodeError as e:
            raise ParseError(command, output, f"invalid JSON at offset {e.pos}") from e
        if isinstance(document, list):
            documents.extend(document)
        elif document is not None:
            documents.append(document)
        index = end
        while index < len(text) and text[index].isspace():
            index += 1
    return documents


def parse_single_document(output: str, command: str = "") -> Dict[str, Any]:
    """Parses output expected to hold exactly one JSON object."""
    documents = parse_json_documents(output, command)
    if len(documents) != 1 or not isinstance(documents[0], dict):
        raise ParseError(command, output, f"expected one JSON object, got {len(documents)} documents")
    return documents[0]


def parse_port_bindings(raw_ports: Optional[Dict[str, Any]]) -> Dict[str, List[PortBinding]]:
    """
    Parses the engine port-mapping structure.

    ``{"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "32768"}], "443/tcp": null}``
    """
    bindings: Dict[str, List[PortBinding]] = {}
    for key, entries in (raw_ports or {}).items():
        if "/" not in key:
            key = f"{key}/tcp"
        parsed = []
        for entry in entries or []:
            host_port = entry.get("HostPort") or entry.get("host_port")
            if host_port in (None, "", "0", 0):
                continue
            host_ip = entry.get("HostIp") or entry.get("host_ip") or "0.0.0.0"
            parsed.append(PortBinding(host_ip=host_ip, host_port=int(host_port)))
        bindings[key.lower()] = parsed
    return bindings


def parse_networks(raw_networks: Optional[Dict[str, Any]]) -> Dict[str, NetworkAttachment]:
    """Parses ``NetworkSettings.Networks`` of an inspected container, keyed by network name."""
    networks: Dict[str, NetworkAttachment] = {}
    for name, entry in (raw_networks or {}).items():
        entry = entry or {}
        networks[name] = NetworkAttachment(
            ip_address=entry.get("IPAddress") or None,
            gateway=entry.get("Gateway") or None,
        )
    return networks


def parse_inspect(output: str, command: str = "") -> ContainerInfo:
    """
    Parses ``<engine> inspect <id>`` output for a single container.

    :raises ParseError: If the output does not describe exactly one container.
    """
    documents = parse_json_documents(output, command)
    if len(documents) != 1 or not isinstance(documents[0], dict):
        raise ParseError(command, output, f"expected one container, got {len(documents)}")
    data = documents[0]

    container_id = data.get("Id") or data.get("ID")
    if not isinstance(container_id, str) or not container_id:
        raise ParseError(command, output, "missing container id")

    state = data.get("State") or {}
    if isinstance(state, str):
        state = {"Status": state}
    try:
        # podman before 4.3 reports health under "Healthcheck"
        health = state.get("Health") or state.get("Healthcheck") or {}
        network = data.get("NetworkSettings") or {}
        ports = parse_port_bindings(network.get("Ports"))
        exit_code = state.get("ExitCode")
        return ContainerInfo(
            id=container_id,
            name=str(data.get("Name") or "").lstrip("/"),
            status=EngineStatus.parse(state.get("Status")),
            exit_code=int(exit_code) if exit_code is not None else None,
            health=HealthStatus.parse(health.get("Status")),
            ports=ports,
            networks=parse_networks(network.get("Networks")),
            raw=data,
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ParseError(command, output, f"unexpected inspect structure: {e}") from e


_VERSION = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(value: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """Parses 'v1.7.2', '24.0.7' or '1.43' into a comparable tuple."""
    if not value:
        return None
    match = _VERSION.search(str(value))
    if not match:
        return None
    return tuple(int(part or 0) for part in match.groups())  # type: ignore[return-value]


def _listing_status(entry: Dict[str, Any]) -> EngineStatus:
    state = entry.get("State")
    if isinstance(state, str) and state:
        return EngineStatus.parse(state)
    # nerdctl only prints the human status, e.g. "Up", "Exited (0) 2 minutes ago"
    status = str(entry.get("Status") or "").strip().lower()
    if status.startswith("up"):
        return EngineStatus.PAUSED if "(paused)" in status else EngineStatus.RUNNING
    if status.startswith("removal"):
        return EngineStatus.REMOVING
    return EngineStatus.parse(status.split(" ", 1)[0])


def parse_container_listing(entry: Any) -> Optional[ContainerListing]:
    """
    Parses one row of ``<engine> ps --all``, or returns None for a row without an id.

    Docker prints names as one comma separated string, podman as a list.
    """
    if not isinstance(entry, dict):
        return None
    container_id = entry.get("ID") or entry.get("Id")
    if not container_id:
        return None
    names = entry.get("Names") or entry.get("Name") or []
    if isinstance(names, str):
        names = names.split(",")
    return ContainerListing(
        id=str(container_id),
        names=tuple(str(name).strip().lstrip("/") for name in names if name),
        status=_listing_status(entry),
    )


def parse_network_names(output: str, command: str = "") -> List[str]:
    """Names listed by ``<engine> network ls``."""
    names = []
    for entry in parse_json_documents(output, command):
        if isinstance(entry, dict):
            name = entry.get("Name") or entry.get("name")
            if name:
                names.append(str(name))
    return names


def parse_subnets(output: str, command: str = "") -> List[str]:
    """
    Subnets of the networks described by ``<engine> network inspect``.

    Docker and nerdctl nest them under ``IPAM.Config``, podman under ``subnets``.
    """
    subnets = []
    for document in parse_json_documents(output, command):
        if not isinstance(document, dict):
            raise ParseError(command, output, "network description is not an object")
        entries = (document.get("IPAM") or {}).get("Config") or document.get("subnets") or []
        for entry in entries:
            subnet = (entry or {}).get("Subnet") or (entry or {}).get("subnet")
            if subnet:
                subnets.append(subnet)
    return subnets
