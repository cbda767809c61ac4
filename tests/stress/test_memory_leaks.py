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

import gc
import os

import psutil
import pytest

try:
    import tracemalloc
except ImportError:
    tracemalloc = None

from conftest import StubEngine

from pytainers.MANAGERS.container_lifecycle import ContainerLifecycle
from pytainers.MODELS.container_spec import ContainerSpec
from pytainers.UTILS.temp_resources import TemporaryFile, TemporaryResourceGuard


def test_guards_do_not_leak_file_descriptors(tmp_path):
    """
    Acquires and releases many guards and checks no descriptor stays open.
    """
    process = psutil.Process(os.getpid())
    if not hasattr(process, "num_fds"):
        pytest.skip("num_fds is not available on this platform")
    initial_fds = process.num_fds()

    for i in range(200):
        files = [TemporaryFile("docker-compose.yaml", f"services: {{svc_{i}: {{image: nginx}}}}\n")]
        with TemporaryResourceGuard.acquire(f"svc-{i}", files, base_dir=str(tmp_path)):
            pass

    gc.collect()
    assert process.num_fds() <= initial_fds + 5
    assert os.listdir(tmp_path) == []


@pytest.mark.skipif(tracemalloc is None, reason="tracemalloc not available")
def test_lifecycle_memory_is_released():
    """
    Checks for memory growth when repeatedly running and tearing down containers.
    """
    engine = StubEngine()
    spec = ContainerSpec(image="nginx", ports=["8080:80"])

    tracemalloc.start()
    gc.collect()
    snapshot1 = tracemalloc.take_snapshot()

    for _ in range(200):
        with ContainerLifecycle(engine, spec) as lifecycle:
            lifecycle.host_port(80)
        engine.calls.clear()

    gc.collect()
    snapshot2 = tracemalloc.take_snapshot()
    total_diff = sum(stat.size_diff for stat in snapshot2.compare_to(snapshot1, "lineno"))
    tracemalloc.stop()

    assert total_diff < 1024 * 1024
