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
Runtime settings read from the environment and an optional .env file.
"""
import os
from typing import Dict, Literal, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator

from .wait_strategy import WaitPolicy

ENV_PREFIX = "PYTAINERS_"


class RuntimeSettings(BaseModel):
    """
    Process-wide defaults.

    :param engine: Force 'docker', 'podman' or 'nerdctl' instead of auto-detection.
    :param host: Address of published ports; detected from the engine when unset.
    :param keep: Detach every container and temporary directory (debugging aid).
    """

    engine: Optional[Literal["docker", "podman", "nerdctl"]] = None
    wait_timeout: float = Field(default=60.0, gt=0)
    wait_interval: float = Field(default=0.5, gt=0)
    stop_grace: int = Field(default=10, ge=0)
    command_timeout: float = Field(default=120.0, gt=0)
    host: Optional[str] = None
    name_prefix: str = "tc"
    keep: bool = False
    log_level: str = "WARNING"

    @field_validator("engine", mode="before")
    @classmethod
    def _blank_engine(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    @property
    def wait_policy(self) -> WaitPolicy:
        return WaitPolicy(timeout=self.wait_timeout, interval=self.wait_interval)


def load_settings(
    env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> RuntimeSettings:
    """
    Merges settings from an env file and the process environment.

    Process environment variables override values from the env file.

    :param env_file: Path to a .env file; defaults to ./.env when it exists.
    :param environ: Environment to read instead of ``os.environ``.
    :return: Validated settings.
    """
    merged: Dict[str, Optional[str]] = {}

    path = env_file or ".env"
    if os.path.exists(path):
        merged.update(dotenv_values(path))

    merged.update(os.environ if environ is None else environ)

    values = {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in merged.items()
        if key.startswith(ENV_PREFIX) and value is not None
    }
    known = {k: v for k, v in values.items() if k in RuntimeSettings.model_fields}
    return RuntimeSettings(**known)
