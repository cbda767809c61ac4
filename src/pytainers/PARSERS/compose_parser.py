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
Reading and writing of compose YAML files.
"""
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import HealthCheck, ServiceDefinition, ServicePort, VolumeMount


def _split_outside_braces(value: str) -> List[str]:
    """Splits on ':' except inside '${...}' and '[...]' (IPv6 addresses)."""
    parts, current, depth = [], '', 0
    for char in value:
        if char in '{[':
            depth += 1
        elif char in '}]' and depth:
            depth -= 1
        if char == ':' and not depth:
            parts.append(current)
            current = ''
        else:
            current += char
    parts.append(current)
    return parts


class ComposeParser:
    """
    Parser for compose files. Variable interpolation is left to the engine.
    """

    def parse(self, compose_path: str) -> OrchestrationConfig:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        """
        with open(compose_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> OrchestrationConfig:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed configuration.
        :raises ValueError: If the document is not a compose mapping.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid compose YAML: {e}") from e
        return self.parse_mapping(data or {})

    def parse_mapping(self, data: Mapping[str, Any]) -> OrchestrationConfig:
        if not isinstance(data, Mapping):
            raise ValueError("A compose file must be a mapping")
        raw_services = data.get('services') or {}
        if not isinstance(raw_services, Mapping):
            raise ValueError("'services' must be a mapping of service names")

        services = {}
        for name, spec in raw_services.items():
            try:
                services[str(name)] = self._parse_service(str(name), spec or {})
            except (AttributeError, KeyError, TypeError) as e:
                raise ValueError(f"Invalid definition of service '{name}': {e}") from e

        return OrchestrationConfig(
            services=services,
            volumes=list((data.get('volumes') or {}).keys())
        )

    def _parse_service(self, name: str, spec: Mapping[str, Any]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        # Volumes
        volumes = []
        for v in spec.get('volumes', []):
            if isinstance(v, str):
                parts = v.split(':')
                if len(parts) == 2:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1]))
                elif len(parts) == 3:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1], read_only=(parts[2] == 'ro')))
            elif isinstance(v, dict) and 'source' in v:
                volumes.append(VolumeMount(source=v['source'], target=v['target'],
                                           read_only=bool(v.get('read_only', False))))

        ports = [port for port in (self._parse_port(p) for p in spec.get('ports', [])) if port]

        # Environment
        environment = {}
        env_spec = spec.get('environment', [])
        if isinstance(env_spec, list):
            for e in env_spec:
                if '=' in e:
                    k, v = e.split('=', 1)
                    environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {k: '' if v is None else str(v) for k, v in env_spec.items()}

        health_check = None
        raw_health = spec.get('healthcheck')
        if isinstance(raw_health, dict) and raw_health.get('test'):
            health_check = HealthCheck(test=self._to_list(raw_health['test']))

        depends_on = spec.get('depends_on', [])
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        labels = spec.get('labels', {})
        if isinstance(labels, list):
            labels = dict(label.split('=', 1) if '=' in label else (label, '') for label in labels)

        return ServiceDefinition(
            name=name,
            image_name=spec.get('image', ''),
            cmd=self._to_list(spec.get('command', [])),
            entrypoint=self._to_list(spec.get('entrypoint', [])),
            working_dir=spec.get('working_dir'),
            environment=environment,
            ports=ports,
            volumes=volumes,
            health_check=health_check,
            depends_on=list(depends_on),
            labels={str(k): str(v) for k, v in labels.items()},
        )

    def _parse_port(self, value: Any) -> Optional[ServicePort]:
        """
        Parses "[ip:][host:]container[/proto]" or the long syntax.

        Host sides the engine resolves (variables, ranges) are kept as text.
        Container sides that are not a single number are skipped.
        """
        if isinstance(value, dict):
            target, published = str(value['target']), value.get('published')
            protocol = str(value.get('protocol') or 'tcp')
            host_ip = value.get('host_ip')
        else:
            text, protocol = str(value), 'tcp'
            head, slash, tail = text.rpartition('/')
            if slash and tail.isalpha():
                text, protocol = head, tail
            parts = _split_outside_braces(text)
            target = parts[-1]
            published = parts[-2] if len(parts) > 1 else None
            host_ip = ':'.join(parts[:-2]) or None

        if not target.isdigit():
            return None
        published = '' if published is None else str(published)
        return ServicePort(
            target=int(target),
            published=int(published) if published.isdigit() else None,
            published_text=published if published and not published.isdigit() else None,
            protocol=protocol.lower(),
            host_ip=host_ip or None,
        )

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        return [str(v) for v in val]


def to_compose_mapping(config: OrchestrationConfig) -> Dict[str, Any]:
    """
    Builds the compose document for ``config``. Service keys are kept verbatim.
    """
    services: Dict[str, Any] = {}
    for name, service in config.services.items():
        spec: Dict[str, Any] = {'image': service.image_name}
        if service.cmd:
            spec['command'] = list(service.cmd)
        if service.entrypoint:
            spec['entrypoint'] = list(service.entrypoint)
        if service.working_dir:
            spec['working_dir'] = service.working_dir
        if service.environment:
            spec['environment'] = dict(service.environment)
        if service.ports:
            spec['ports'] = [port.to_compose() for port in service.ports]
        if service.volumes:
            spec['volumes'] = [volume.to_compose() for volume in service.volumes]
        if service.health_check:
            spec['healthcheck'] = service.health_check.to_compose()
        if service.depends_on:
            spec['depends_on'] = list(service.depends_on)
        if service.labels:
            spec['labels'] = dict(service.labels)
        services[name] = spec

    document: Dict[str, Any] = {'services': services}
    if config.volumes:
        document['volumes'] = {name: {} for name in config.volumes}
    return document


def render(config: Any) -> str:
    """Renders an OrchestrationConfig or a plain mapping as compose YAML."""
    if isinstance(config, OrchestrationConfig):
        config = to_compose_mapping(config)
    return yaml.safe_dump(dict(config), sort_keys=False, default_flow_style=False)
