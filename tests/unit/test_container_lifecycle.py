import pytest
from conftest import engine_error

from pytainers.errors import EngineError, InvalidStateTransition, NetworkError, WaitFailed, WaitTimeout
from pytainers.MANAGERS.container_lifecycle import MANAGED_LABEL, ContainerLifecycle
from pytainers.MANAGERS.wait_evaluator import WaitStrategyEvaluator
from pytainers.MODELS.container_spec import ContainerSpec
from pytainers.MODELS.container_state import (
    ContainerListing,
    ContainerState,
    EngineStatus,
    ExecResult,
    NetworkAttachment,
    PortBinding,
)
from pytainers.MODELS.wait_strategy import HealthCheck, WaitPolicy
from pytainers.UTILS.identity import IdentityAllocator


def make_lifecycle(engine, clock, spec=None, **kwargs):
    spec = spec or ContainerSpec(image="nginx:1.25", ports=[80])
    evaluator = WaitStrategyEvaluator(engine, clock=clock, sleep=clock.sleep)
    return ContainerLifecycle(engine, spec, allocator=IdentityAllocator("test"),
                              evaluator=evaluator, **kwargs)


def operations(engine):
    return [call[0] for call in engine.calls]


def test_context_manager_creates_starts_and_removes(engine, clock):
    engine.ports = {"80/tcp": [PortBinding("0.0.0.0", 32768)]}
    with make_lifecycle(engine, clock) as nginx:
        assert nginx.state == ContainerState.READY
        assert nginx.host_port(80) == 32768
        assert nginx.identity.name.startswith("test-nginx-")
    assert nginx.state == ContainerState.REMOVED
    assert operations(engine) == ["create", "start", "inspect", "stop", "remove"]
    assert engine.calls[0][3] == {MANAGED_LABEL: "true"}


def test_teardown_is_idempotent(engine, clock):
    lifecycle = make_lifecycle(engine, clock).start()
    lifecycle.teardown()
    lifecycle.teardown()
    lifecycle.__exit__(None, None, None)
    assert engine.count("stop") == 1
    assert engine.count("remove") == 1


def test_create_failure_propagates_without_retry(engine, clock):
    engine.fail_on["create"] = engine_error("create")
    lifecycle = make_lifecycle(engine, clock)
    with pytest.raises(EngineError):
        lifecycle.start()
    assert operations(engine) == ["create"]
    assert lifecycle.state == ContainerState.REQUESTED
    lifecycle.teardown()
    assert operations(engine) == ["create"]


def test_start_failure_removes_the_created_container(engine, clock):
    engine.fail_on["start"] = engine_error("start", "port is already allocated")
    lifecycle = make_lifecycle(engine, clock)
    with pytest.raises(EngineError):
        lifecycle.start()
    assert operations(engine) == ["create", "start", "remove"]
    assert lifecycle.state == ContainerState.REMOVED
    lifecycle.teardown()
    assert engine.count("remove") == 1


def test_wait_timeout_leaves_the_container_running(engine, clock):
    engine.exec_results = [ExecResult(1)] * 20
    spec = ContainerSpec(image="postgres:16", wait_strategies=[HealthCheck(command=["pg_isready"])])
    lifecycle = make_lifecycle(engine, clock, spec=spec, policy=WaitPolicy(timeout=2, interval=0.5))

    with pytest.raises(WaitTimeout) as info:
        lifecycle.start()

    assert info.value.container is lifecycle
    assert lifecycle.state == ContainerState.FAILED
    assert engine.count("stop") == 0
    assert engine.count("remove") == 0
    lifecycle.logs()
    assert engine.count("logs") == 1


def test_wait_failure_raises_wait_failed(engine, clock):
    engine.status = EngineStatus.EXITED
    engine.exit_code = 137
    spec = ContainerSpec(image="redis:7", wait_strategies=[HealthCheck(command=["redis-cli", "ping"])])
    lifecycle = make_lifecycle(engine, clock, spec=spec)
    with pytest.raises(WaitFailed) as info:
        with lifecycle:
            pass
    assert "137" in info.value.reason
    assert info.value.container is lifecycle


def test_detach_skips_automatic_teardown(engine, clock):
    with make_lifecycle(engine, clock) as lifecycle:
        lifecycle.detach()
    assert engine.count("remove") == 0
    lifecycle.teardown()
    assert engine.count("remove") == 1


def test_keep_detaches_on_creation(engine, clock):
    with make_lifecycle(engine, clock, keep=True):
        pass
    assert engine.count("remove") == 0


def test_cleanup_errors_do_not_mask_the_original_error(engine, clock):
    engine.fail_on["stop"] = engine_error("stop")
    engine.fail_on["remove"] = engine_error("remove")
    with pytest.raises(RuntimeError, match="test body failed"):
        with make_lifecycle(engine, clock) as lifecycle:
            raise RuntimeError("test body failed")
    assert len(lifecycle.cleanup_errors) == 1
    assert engine.count("remove") == 1
    assert lifecycle.state == ContainerState.STOPPED


def test_fixed_host_port_is_known_without_inspect(engine, clock):
    spec = ContainerSpec(image="nginx", ports=["8080:80"])
    with make_lifecycle(engine, clock, spec=spec) as nginx:
        assert nginx.host_port(80) == 8080
    assert engine.count("inspect") == 0


def test_exec_delegates_to_engine(engine, clock):
    engine.exec_results = [ExecResult(0, "PONG\n")]
    with make_lifecycle(engine, clock) as lifecycle:
        assert lifecycle.exec(["redis-cli", "ping"]).stdout == "PONG\n"


def test_cannot_start_twice(engine, clock):
    lifecycle = make_lifecycle(engine, clock).start()
    with pytest.raises(InvalidStateTransition):
        lifecycle.start()


def test_failed_discard_can_be_retried_by_teardown(engine, clock):
    engine.fail_on["start"] = engine_error("start")
    engine.fail_on["remove"] = engine_error("remove", "device busy")
    lifecycle = make_lifecycle(engine, clock)

    with pytest.raises(EngineError):
        lifecycle.start()
    assert lifecycle.state == ContainerState.CREATED
    assert len(lifecycle.cleanup_errors) == 1

    del engine.fail_on["remove"]
    lifecycle.teardown()

    assert lifecycle.state == ContainerState.REMOVED
    assert engine.count("remove") == 2
    assert engine.count("stop") == 0


NAMED = ContainerSpec(image="postgres:16", container_name="shared-db")


@pytest.mark.parametrize("status, expected", [
    (EngineStatus.RUNNING, ["find_container"]),
    (EngineStatus.RESTARTING, ["find_container"]),
    (EngineStatus.PAUSED, ["find_container", "unpause"]),
    (EngineStatus.EXITED, ["find_container", "start"]),
    (EngineStatus.CREATED, ["find_container", "start"]),
])
def test_named_container_is_adopted(engine, clock, status, expected):
    engine.existing["shared-db"] = ContainerListing("feed42", ("shared-db",), status)
    lifecycle = make_lifecycle(engine, clock, spec=NAMED).start()
    assert lifecycle.reused
    assert lifecycle.identity.id == "feed42"
    assert lifecycle.state == ContainerState.READY
    assert operations(engine) == expected


def test_dead_named_container_is_replaced(engine, clock):
    engine.existing["shared-db"] = ContainerListing("feed42", ("shared-db",), EngineStatus.DEAD)
    lifecycle = make_lifecycle(engine, clock, spec=NAMED).start()
    assert not lifecycle.reused
    assert operations(engine) == ["find_container", "remove", "create", "start"]
    assert engine.calls[1] == ("remove", "feed42")
    assert engine.calls[2][2] == "shared-db"


def test_missing_named_container_is_created_with_that_name(engine, clock):
    lifecycle = make_lifecycle(engine, clock, spec=NAMED).start()
    assert lifecycle.identity.name == "shared-db"
    assert operations(engine)[:3] == ["find_container", "create", "start"]


def test_named_container_is_stopped_but_kept(engine, clock):
    engine.existing["shared-db"] = ContainerListing("feed42", ("shared-db",), EngineStatus.RUNNING)
    with make_lifecycle(engine, clock, spec=NAMED) as lifecycle:
        pass
    assert engine.count("stop") == 1
    assert engine.count("remove") == 0
    assert lifecycle.state == ContainerState.STOPPED


def test_network_ip_defaults_to_the_creation_network(engine, clock):
    engine.networks = {"backend": NetworkAttachment("172.20.0.5", "172.20.0.1"),
                       "bridge": NetworkAttachment("172.17.0.3", "172.17.0.1")}
    spec = ContainerSpec(image="redis:7", network="backend")
    lifecycle = make_lifecycle(engine, clock, spec=spec).start()
    assert lifecycle.network_ip() == "172.20.0.5"
    assert lifecycle.network_ip("bridge") == "172.17.0.3"
    with pytest.raises(NetworkError):
        lifecycle.network_ip("other")


def test_network_ip_needs_a_name_on_several_networks(engine, clock):
    engine.networks = {"a": NetworkAttachment("10.0.0.2"), "b": NetworkAttachment("10.1.0.2")}
    lifecycle = make_lifecycle(engine, clock).start()
    with pytest.raises(NetworkError):
        lifecycle.network_ip()


def test_inside_a_container_the_host_network_is_joined(engine, clock):
    engine.inside = True
    engine.host_network = "ci_default"
    lifecycle = make_lifecycle(engine, clock).start()
    assert lifecycle.network == "ci_default"
    assert operations(engine)[:2] == ["find_host_network", "create"]


def test_explicit_network_skips_host_network_lookup(engine, clock):
    engine.inside = True
    make_lifecycle(engine, clock, spec=ContainerSpec(image="redis:7", network="mine")).start()
    assert engine.count("find_host_network") == 0


def test_host_network_lookup_failure_is_not_fatal(engine, clock):
    engine.inside = True
    engine.fail_on["find_host_network"] = engine_error("network ls")
    lifecycle = make_lifecycle(engine, clock).start()
    assert lifecycle.network is None
    assert lifecycle.state == ContainerState.READY
