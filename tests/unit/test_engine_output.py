import pytest

from pytainers.errors import ParseError
from pytainers.MODELS.container_state import EngineStatus, HealthStatus, NetworkAttachment
from pytainers.PARSERS.engine_output import (
    parse_container_listing,
    parse_inspect,
    parse_json_documents,
    parse_network_names,
    parse_port_bindings,
    parse_single_document,
    parse_subnets,
    parse_version,
)


def test_json_lines_object_and_array_shapes():
    assert parse_json_documents('{"a": 1}\n{"a": 2}\n') == [{"a": 1}, {"a": 2}]
    assert parse_json_documents('[{"a": 1}, {"a": 2}]') == [{"a": 1}, {"a": 2}]
    assert parse_json_documents('{"a": 1}') == [{"a": 1}]
    assert parse_json_documents("  \n") == []


def test_invalid_json_is_a_parse_error():
    with pytest.raises(ParseError) as info:
        parse_json_documents('{"a": ', "docker ps")
    assert info.value.command == "docker ps"


def test_single_document():
    with pytest.raises(ParseError):
        parse_single_document('{"a": 1}\n{"b": 2}')


def test_port_bindings_skip_unbound_entries():
    bindings = parse_port_bindings({
        "80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "32768"}],
        "443/tcp": None,
        "53": [{"HostIp": "", "HostPort": ""}],
    })
    assert bindings["80/tcp"][0].host_port == 32768
    assert bindings["443/tcp"] == []
    assert bindings["53/tcp"] == []


def test_inspect_podman_shapes():
    output = """[{"ID": "deadbeef", "Name": "tc-pg",
                  "State": {"Status": "stopped", "ExitCode": 3, "Healthcheck": {"Status": "unhealthy"}},
                  "NetworkSettings": {"Ports": {}}}]"""
    info = parse_inspect(output)
    assert info.id == "deadbeef"
    assert info.status == EngineStatus.EXITED
    assert info.exit_code == 3
    assert info.health == HealthStatus.UNHEALTHY


def test_inspect_requires_one_container():
    with pytest.raises(ParseError):
        parse_inspect("[]")
    with pytest.raises(ParseError):
        parse_inspect('[{"Name": "no-id"}]')


@pytest.mark.parametrize("value, expected", [
    ("24.0.7", (24, 0, 7)),
    ("1.43", (1, 43, 0)),
    ("v1.7.2", (1, 7, 2)),
    ("4.9.4-dev", (4, 9, 4)),
    ("", None),
    ("unknown", None),
])
def test_parse_version(value, expected):
    assert parse_version(value) == expected


def test_inspect_reads_network_attachments():
    output = ('[{"Id": "abc", "State": {"Status": "running"}, "NetworkSettings": {"Networks": '
              '{"backend": {"IPAddress": "172.20.0.5", "Gateway": "172.20.0.1"}, "none": null}}}]')
    info = parse_inspect(output)
    assert info.networks == {
        "backend": NetworkAttachment("172.20.0.5", "172.20.0.1"),
        "none": NetworkAttachment(None, None),
    }


def test_listing_rows():
    docker = parse_container_listing({"ID": "a1", "Names": "db,/alias", "State": "restarting"})
    assert docker.names == ("db", "alias")
    assert docker.status == EngineStatus.RESTARTING
    podman = parse_container_listing({"Id": "b2", "Names": ["db"], "State": "stopped"})
    assert podman.status == EngineStatus.EXITED
    assert parse_container_listing({"Names": "no-id"}) is None
    assert parse_container_listing("garbage") is None


def test_network_names_and_subnets_of_every_engine():
    assert parse_network_names('{"Name": "bridge"}\n{"Name": "ci"}') == ["bridge", "ci"]
    assert parse_network_names('[{"name": "podman"}]') == ["podman"]
    docker = '[{"Name": "ci", "IPAM": {"Config": [{"Subnet": "172.30.0.0/16", "Gateway": "172.30.0.1"}]}}]'
    podman = '[{"name": "ci", "subnets": [{"subnet": "10.89.0.0/24", "gateway": "10.89.0.1"}]}]'
    assert parse_subnets(docker) == ["172.30.0.0/16"]
    assert parse_subnets(podman) == ["10.89.0.0/24"]
    assert parse_subnets('[{"Name": "host", "IPAM": {"Config": null}}]') == []
    with pytest.raises(ParseError):
        parse_subnets('["not an object"]')
