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
Engine networks and volumes owned by a test scope.

Like containers, they get unique generated names and disappear when the scope
ends unless they were detached::

    with TemporaryNetwork.create(engine, "backend") as network:
        spec = ContainerSpec(image="redis:7", network=network.name)
"""
import logging
import os
import threading
from typing import Optional

from ..errors import PytainersError
from ..MODELS.container_spec import ContainerSpec, VolumeMount
from ..MODELS.wait_strategy import ExitCode, WaitPolicy
from ..UTILS.identity import IdentityAllocator
from .container_lifecycle import MANAGED_LABEL, ContainerLifecycle

logger = logging.getLogger(__name__)

COPY_IMAGE = "alpine:3.19"


class EngineResource:
    """A named engine object removed exactly once, on release or scope exit."""

    kind = ""

    def __init__(self, engine, name: str):
        self.engine = engine
        self.name = name
        self.detached = False
        self.released = False
        self._lock = threading.Lock()

    @classmethod
    def create(cls, engine, hint: str, allocator: Optional[IdentityAllocator] = None):
        """
        Creates a uniquely named resource labelled as managed by pytainers.

        :raises EngineError: If the engine refuses to create it.
        """
        allocator = allocator or IdentityAllocator()
        resource = cls(engine, allocator.container_name(hint))
        resource._create({MANAGED_LABEL: "true"})
        return resource

    def _create(self, labels) -> None:
        raise NotImplementedError

    def _remove(self) -> None:
        raise NotImplementedError

    def detach(self) -> str:
        """Keeps the resource after the scope ends."""
        self.detached = True
        logger.info("Detached %s %s, it will not be removed", self.kind, self.name)
        return self.name

    def release(self) -> None:
        """
        Removes the resource. Later calls do nothing, a failed removal can be retried.

        :raises EngineError: If the engine cannot remove it.
        """
        with self._lock:
            if self.released:
                return
            self._remove()
            self.released = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.detached:
            return
        try:
            self.release()
        except PytainersError as e:
            if exc is None:
                raise
            logger.error("Failed to remove %s %s: %s", self.kind, self.name, e)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, detached={self.detached})"


class TemporaryNetwork(EngineResource):
    kind = "network"

    def _create(self, labels) -> None:
        self.engine.create_network(self.name, labels)

    def _remove(self) -> None:
        self.engine.remove_network(self.name)


class TemporaryVolume(EngineResource):
    kind = "volume"

    def _create(self, labels) -> None:
        self.engine.create_volume(self.name, labels)

    def _remove(self) -> None:
        self.engine.remove_volume(self.name)

    def copy_into(self, path: str, **kwargs) -> None:
        """Copies the file or directory ``path`` to the root of the volume."""
        copy_to_volume(self.engine, self.name, path, **kwargs)


def copy_to_volume(engine,
                   volume: str,
                   path: str,
                   image: str = COPY_IMAGE,
                   policy: Optional[WaitPolicy] = None,
                   allocator: Optional[IdentityAllocator] = None) -> None:
    """
    Copies a host file or directory into a named volume.

    A short-lived container mounts the parent of ``path`` read-only next to
    the volume and runs ``cp``; it is removed afterwards.

    :raises FileNotFoundError: If ``path`` does not exist.
    :raises WaitFailed: If the copy exits with a non-zero code.
    :raises WaitTimeout: If the copy does not finish within ``policy.timeout``.
    """
    path = os.path.abspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    source_dir, file_name = os.path.split(path)
    command = ["cp", "-R"] if os.path.isdir(path) else ["cp"]
    spec = ContainerSpec(
        image=image,
        command=command + [f"/source/{file_name}", "/dest"],
        mounts=[
            VolumeMount(type="bind", source=source_dir, target="/source", read_only=True),
            VolumeMount(type="volume", source=volume, target="/dest"),
        ],
        wait_strategies=[ExitCode()],
        name_hint="copy",
    )
    lifecycle = ContainerLifecycle(engine, spec, allocator=allocator,
                                   policy=policy or WaitPolicy(timeout=60.0, interval=0.2))
    try:
        lifecycle.start()
    finally:
        lifecycle.__exit__(None, None, None)
    logger.info("Copied %s into volume %s", path, volume)
