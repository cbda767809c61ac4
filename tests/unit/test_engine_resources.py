import pytest
from conftest import engine_error

from pytainers.errors import EngineError, WaitFailed
from pytainers.MANAGERS.container_lifecycle import MANAGED_LABEL
from pytainers.MANAGERS.engine_resources import TemporaryNetwork, TemporaryVolume, copy_to_volume
from pytainers.MODELS.container_state import EngineStatus
from pytainers.MODELS.wait_strategy import WaitPolicy
from pytainers.UTILS.identity import IdentityAllocator


def test_network_is_created_labelled_and_removed_once(engine):
    with TemporaryNetwork.create(engine, "backend", allocator=IdentityAllocator("test")) as network:
        assert network.name.startswith("test-backend-")
    network.release()
    assert engine.calls == [
        ("create_network", network.name, {MANAGED_LABEL: "true"}),
        ("remove_network", network.name),
    ]


def test_detached_volume_is_kept(engine):
    with TemporaryVolume.create(engine, "data") as volume:
        volume.detach()
    assert engine.count("remove_volume") == 0


def test_failed_removal_can_be_retried(engine):
    network = TemporaryNetwork.create(engine, "backend")
    engine.fail_on["remove_network"] = engine_error("network rm", "network has active endpoints")
    with pytest.raises(EngineError):
        network.release()
    assert not network.released
    del engine.fail_on["remove_network"]
    network.release()
    assert network.released
    assert engine.count("remove_network") == 2


def test_removal_error_does_not_mask_the_scope_error(engine):
    engine.fail_on["remove_volume"] = engine_error("volume rm")
    with pytest.raises(KeyError):
        with TemporaryVolume.create(engine, "data"):
            raise KeyError("inner")


def test_copy_runs_a_throwaway_container(engine, tmp_path):
    source = tmp_path / "init"
    source.mkdir()
    (source / "schema.sql").write_text("create table t (id int);")
    engine.status = EngineStatus.EXITED
    engine.exit_code = 0

    copy_to_volume(engine, "tc-data-1", str(source), policy=WaitPolicy(timeout=5, interval=0.05))

    spec = engine.created_specs[0]
    assert spec.command == ["cp", "-R", "/source/init", "/dest"]
    assert [(m.type, m.source, m.target, m.read_only) for m in spec.mounts] == [
        ("bind", str(tmp_path), "/source", True),
        ("volume", "tc-data-1", "/dest", False),
    ]
    assert engine.count("remove") == 1


def test_failed_copy_raises_and_cleans_up(engine, tmp_path):
    source = tmp_path / "seed.txt"
    source.write_text("x")
    engine.status = EngineStatus.EXITED
    engine.exit_code = 1

    with pytest.raises(WaitFailed):
        TemporaryVolume(engine, "tc-data-1").copy_into(str(source), policy=WaitPolicy(timeout=5, interval=0.05))
    assert engine.created_specs[0].command == ["cp", "/source/seed.txt", "/dest"]
    assert engine.count("remove") == 1


def test_copy_of_a_missing_path(engine, tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_to_volume(engine, "tc-data-1", str(tmp_path / "missing"))
    assert engine.calls == []
