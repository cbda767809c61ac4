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
Engine selection: explicit by name or by querying installed engines.
"""
import logging
from typing import Dict, List, Optional, Tuple, Type

from ..errors import EngineError, NotInstalled, ParseError, PytainersError
from ..MODELS.settings import RuntimeSettings
from .base import EngineBackend
from .docker import DockerEngine
from .nerdctl import NerdctlEngine
from .podman import PodmanEngine

logger = logging.getLogger(__name__)

# Detection order matters: the first engine that answers wins
ENGINES: Dict[str, Type[EngineBackend]] = {
    "docker": DockerEngine,
    "podman": PodmanEngine,
    "nerdctl": NerdctlEngine,
}


def _detect_host(engine: EngineBackend) -> str:
    try:
        host = engine.detect_host()
    except PytainersError as e:
        logger.warning("Cannot locate the %s host, using %s: %s", engine.name, engine.host, e)
        return engine.host
    logger.debug("Published ports of %s are reachable on %s", engine.name, host)
    return host


def get_engine(name: str, **kwargs) -> EngineBackend:
    """
    Instantiates the engine called ``name`` without querying it.

    :raises ValueError: If ``name`` is not a supported engine.
    """
    try:
        engine_class = ENGINES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown engine '{name}', expected one of {', '.join(ENGINES)}") from None
    return engine_class(**kwargs)


def detect_engine(preference: Optional[str] = None,
                  settings: Optional[RuntimeSettings] = None) -> EngineBackend:
    """
    Returns the first container engine that answers and is recent enough.

    :param preference: Engine name to use instead of querying every candidate.
    :param settings: Runtime settings; ``settings.engine`` is used when no preference is given.
    :raises NotInstalled: With the rejection reason of every candidate.
    """
    kwargs = {}
    if settings is not None:
        kwargs = {"command_timeout": settings.command_timeout}
        if settings.host:
            kwargs["host"] = settings.host
        preference = preference or settings.engine

    candidates = [preference.lower()] if preference else list(ENGINES)
    attempts: List[Tuple[str, str]] = []
    for name in candidates:
        engine = get_engine(name, **kwargs)
        try:
            version = engine.ensure_available()
        except NotInstalled as e:
            reason = "; ".join(reason for _, reason in e.attempts)
            attempts.append((name, reason))
        except (EngineError, ParseError) as e:
            attempts.append((name, str(e).splitlines()[0]))
        else:
            logger.info("Using container engine %s %s", name, version)
            if settings is not None and not settings.host:
                engine.host = _detect_host(engine)
            return engine
        logger.debug("Container engine %s rejected: %s", name, attempts[-1][1])
    raise NotInstalled(attempts)
