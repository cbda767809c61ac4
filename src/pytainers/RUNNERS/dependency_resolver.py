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
Ordering of compose services according to their declared dependencies.
"""
from typing import Dict, Iterable, List, Mapping


class CircularDependencyError(ValueError):
    """Services depend on each other in a cycle."""


class DependencyResolver:
    """
    Resolves service dependencies to determine start order.
    """

    @staticmethod
    def resolve_order(dependencies: Mapping[str, Iterable[str]]) -> List[str]:
        """
        Determines the order in which services should be started.

        Services without mutual constraints keep their declaration order.

        :param dependencies: Service name to the names it depends on.
        :return: Service names in the order they should be started.
        :raises CircularDependencyError: If a circular dependency is detected.
        """
        graph: Dict[str, List[str]] = {name: list(deps) for name, deps in dependencies.items()}

        ordered = []
        visited = set()
        processing = set()

        def visit(name):
            if name in processing:
                raise CircularDependencyError(f"Circular dependency detected involving {name}")
            if name not in visited:
                processing.add(name)
                for dep in graph.get(name, []):
                    if dep in graph:  # Only depend on declared services
                        visit(dep)
                processing.remove(name)
                visited.add(name)
                ordered.append(name)

        for name in graph:
            visit(name)

        return ordered

    @classmethod
    def shutdown_order(cls, dependencies: Mapping[str, Iterable[str]]) -> List[str]:
        """Reverse of the start order: dependents stop before their dependencies."""
        return list(reversed(cls.resolve_order(dependencies)))
