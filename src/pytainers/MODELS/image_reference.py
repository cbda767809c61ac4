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
Image reference parsing.
Parses references like 'redis:7-alpine' or 'ghcr.io/org/app@sha256:...'.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    Examples:
        - postgres -> docker.io/library/postgres:latest
        - postgres:16 -> docker.io/library/postgres:16
        - bitnami/kafka:3.6 -> docker.io/bitnami/kafka:3.6
        - localhost:5000/app@sha256:abc123... -> localhost:5000/app@sha256:abc123...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'redis:7', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or has an empty tag or digest.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not digest or not reference:
                raise ValueError("Invalid image digest reference")

        tag = None
        if ":" in reference:
            last_colon = reference.rfind(":")
            before_colon = reference[:last_colon]
            after_colon = reference[last_colon + 1 :]

            # A colon followed by a path is a registry port, not a tag
            if "/" not in after_colon:
                if not after_colon:
                    raise ValueError(f"Empty tag in image reference '{reference}'")
                tag = after_colon
                reference = before_colon

        parts = reference.split("/")

        if len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{parts[0]}"
        elif len(parts) == 2:
            first_part = parts[0]
            if "." in first_part or ":" in first_part or first_part == "localhost":
                registry = first_part
                repository = parts[1]
            else:
                registry = cls.DEFAULT_REGISTRY
                repository = reference
        else:
            registry = parts[0]
            repository = "/".join(parts[1:])

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        return f"{self.registry}/{self.repository}{self._suffix}"

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/") :]
        return repo + self._suffix

    @property
    def descriptor(self) -> str:
        """The reference handed to the engine on the command line."""
        return self.short_name

    @property
    def _suffix(self) -> str:
        if self.digest and self.tag:
            return f":{self.tag}@{self.digest}"
        if self.digest:
            return f"@{self.digest}"
        if self.tag:
            return f":{self.tag}"
        return ""

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
