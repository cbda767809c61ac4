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
Temporary directories holding generated files (compose files, configs).

A guard owns exactly one directory. Leaving its scope removes the directory
unless the guard was detached.
"""
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..errors import ResourceCleanupError
from .identity import IdentityAllocator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporaryFile:
    """
    A file to write into a guarded directory.

    :param path: Path relative to the directory root.
    :param content: Text (written as UTF-8) or raw bytes.
    :param mode: Optional permission bits applied after writing.
    """

    path: str
    content: Union[str, bytes]
    mode: Optional[int] = None

    @property
    def data(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


def _check_relative(path: str) -> None:
    if os.path.isabs(path) or path.startswith(("/", "\\")):
        raise ValueError(f"Temporary file path must be relative: {path}")
    parts = os.path.normpath(path).split(os.sep)
    if ".." in parts or not path.strip():
        raise ValueError(f"Temporary file path escapes its directory: {path}")


def _write_atomic(target: str, data: bytes, mode: Optional[int]) -> None:
    directory = os.path.dirname(target)
    fd, scratch = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(scratch, mode)
        os.replace(scratch, target)
    except BaseException:
        if os.path.exists(scratch):
            os.unlink(scratch)
        raise


class TemporaryResourceGuard:
    """
    Owns one uniquely named temporary directory.

    Usage::

        with TemporaryResourceGuard.acquire("nginx", [TemporaryFile("docker-compose.yaml", text)]) as guard:
            ...  # guard.path exists here
        # and is gone here
    """

    RELEASE_ATTEMPTS = 3
    RELEASE_WAIT = 0.2

    def __init__(self, path: str):
        self.path = path
        self.detached = False
        self.released = False

    @classmethod
    def acquire(cls,
                prefix: str,
                files: Iterable[TemporaryFile] = (),
                base_dir: Optional[str] = None,
                allocator: Optional[IdentityAllocator] = None) -> "TemporaryResourceGuard":
        """
        Creates ``<base_dir>/tc_<prefix>_<ulid>`` and writes ``files`` into it.

        :raises ValueError: On absolute, escaping or duplicate file paths.
        :raises OSError: If the directory or a file cannot be written.
        """
        allocator = allocator or IdentityAllocator("tc")
        base = base_dir or tempfile.gettempdir()
        while True:
            path = os.path.join(base, allocator.project_name(prefix))
            try:
                os.makedirs(path)
                break
            except FileExistsError:
                logger.warning("Temporary directory %s already exists, retrying", path)
        logger.info("Temporary directory %s created", path)

        guard = cls(path)
        try:
            guard.write_files(files)
        except BaseException:
            guard.release()
            raise
        return guard

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def write_files(self, files: Iterable[TemporaryFile]) -> List[str]:
        written = []
        for temp_file in files:
            _check_relative(temp_file.path)
            target = os.path.join(self.path, os.path.normpath(temp_file.path))
            if os.path.lexists(target):
                raise ValueError(f"Refusing to overwrite temporary file {temp_file.path}")
            os.makedirs(os.path.dirname(target), exist_ok=True)
            _write_atomic(target, temp_file.data, temp_file.mode)
            logger.debug("Wrote %s", target)
            written.append(target)
        return written

    def detach(self) -> str:
        """Keeps the directory after the guard goes out of scope."""
        self.detached = True
        logger.info("Detached temporary directory %s, it will not be removed", self.path)
        return self.path

    def release(self) -> None:
        """
        Removes the directory tree. Works even after :meth:`detach`.

        :raises ResourceCleanupError: If the directory still exists afterwards.
        """
        if self.released:
            return
        cause: Optional[BaseException] = None
        retrying = Retrying(
            stop=stop_after_attempt(self.RELEASE_ATTEMPTS),
            wait=wait_fixed(self.RELEASE_WAIT),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    if os.path.lexists(self.path):
                        shutil.rmtree(self.path)
        except OSError as e:
            cause = e
        if os.path.lexists(self.path):
            raise ResourceCleanupError(self.path, cause)
        self.released = True
        logger.info("Temporary directory %s removed", self.path)

    def __enter__(self) -> "TemporaryResourceGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.detached or self.released:
            return
        try:
            self.release()
        except ResourceCleanupError as e:
            if exc is None:
                raise
            logger.error("%s", e)

    def __repr__(self) -> str:
        return f"TemporaryResourceGuard({self.path!r}, detached={self.detached})"
