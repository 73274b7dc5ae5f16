import base64

import pytest

from conftest import FakeAdminClient, FakeCluster, FakeFleet, make_spec
from ravenfleet.config.models import Database, DatabaseToDelete, UrlConfig
from ravenfleet.errors import (
    AuthenticationError,
    DeployError,
    MissingCredentialsError,
    MultiError,
    SettingsParseError,
)
from ravenfleet.state.models import NodeState
from ravenfleet.state.reader import StateReader

URLS = ["https://a.cluster.example.com", "https://b.cluster.example.com", "https://c.cluster.example.com"]

NODE_FILES = {
    "sudo find '/etc/ravendb' -maxdepth 1 -type f": (
        b"/etc/ravendb/settings.json\n/etc/ravendb/license.json\n/etc/ravendb/extra.conf\n", b"", 0,
    ),
    "sudo find '/etc/ravendb/security' -maxdepth 1 -type f": (
        b"/etc/ravendb/security/server.pfx\n/etc/ravendb/security/master.key\n", b"", 0,
    ),
    "sudo cat /etc/ravendb/settings.json": (
        b'{"ServerUrl": "https://0.0.0.0:443", "Setup.Mode": "None", "License.Eula.Accepted": true, "Port": 38888}',
        b"", 0,
    ),
    "sudo cat /etc/ravendb/license.json": (b'{"Id": "lic"}', b"", 0),
    "sudo cat /etc/ravendb/extra.conf": (b"x=1", b"", 0),
    "sudo cat /etc/ravendb/security/server.pfx": (b"PFX", b"", 0),
    "sudo cat /etc/ravendb/security/master.key": (b"SECRET", b"", 0),
}


def _reader(spec, fleet, cluster=None):
    cluster = cluster or FakeCluster(URLS)
    certs = []

    def client_factory(spec, certificate):
        certs.append(certificate)
        return FakeAdminClient(cluster.handle)

    reader = StateReader(spec, connect=fleet, client_factory=client_factory, sleep=lambda s: None)
    return reader, certs


def test_read_server_builds_node_state():
    spec = make_spec(
        url=UrlConfig(urls=list(URLS)),
        databases=[Database(name="Orders", replication_nodes=["A", "B"])],
        databases_to_delete=[DatabaseToDelete(name="Old")],
    )
    reader, certs = _reader(spec, FakeFleet(NODE_FILES))

    state = reader.read_server("10.0.0.6", 1)

    assert state.host == "10.0.0.6"
    assert state.version == "60105"
    assert state.settings == {
        "ServerUrl": "https://0.0.0.0:443",
        "Setup.Mode": "None",
        "License.Eula.Accepted": "true",
        "Port": "38888",
    }
    assert state.license == b'{"Id": "lic"}'
    assert state.bundles["B"].pfx == b"PFX"
    assert state.assets == {"extra.conf": b"x=1"}
    assert [db.name for db in state.databases] == ["Orders"]
    assert state.databases is not spec.databases
    assert state.databases_to_delete[0].name == "Old"
    assert certs[0].cert == b"ADMIN-CERT"


def test_invalid_settings_json_is_a_parse_error():
    files = dict(NODE_FILES)
    files["sudo cat /etc/ravendb/settings.json"] = (b"{not json", b"", 0)
    reader, _ = _reader(make_spec(url=UrlConfig(urls=list(URLS))), FakeFleet(files))

    with pytest.raises(SettingsParseError) as ei:
        reader.read_server("10.0.0.5", 0)
    assert "{not json" in str(ei.value)


def test_read_all_marks_unreachable_host_failed():
    spec = make_spec(url=UrlConfig(urls=list(URLS)))
    reader, _ = _reader(spec, FakeFleet(NODE_FILES, unreachable={"10.0.0.6"}))

    states = reader.read_all()

    assert [s.host for s in states] == spec.hosts
    assert [s.failed for s in states] == [False, True, False]
    assert states[0].version == "60105"
    assert states[1].version == ""


def test_read_all_aborts_on_other_failures():
    fleet = FakeFleet(NODE_FILES)
    fleet.per_host["10.0.0.7"] = {"sudo cat /etc/ravendb/license.json": (b"", b"Permission denied", 1)}
    reader, _ = _reader(make_spec(url=UrlConfig(urls=list(URLS))), fleet)

    with pytest.raises(MultiError) as ei:
        reader.read_all()
    assert isinstance(ei.value.errors[0], DeployError)


def test_read_all_aborts_on_rejected_credentials():
    fleet = FakeFleet(NODE_FILES)

    def connect(host, credential, **kw):
        if host == "10.0.0.5":
            raise AuthenticationError(f"{host}:22", "Authentication failed.")
        return fleet(host, credential, **kw)

    reader, _ = _reader(make_spec(url=UrlConfig(urls=list(URLS))), connect)

    with pytest.raises(MultiError) as ei:
        reader.read_all()
    assert [type(e) for e in ei.value.errors] == [AuthenticationError]


def test_unsecured_read_needs_no_certificate():
    spec = make_spec(1, unsecured=True, url=UrlConfig(urls=["http://a.cluster.example.com:8080"]))
    reader, certs = _reader(spec, FakeFleet(NODE_FILES))

    reader.read_server("10.0.0.5", 0)

    assert certs == [None]


def test_secured_read_without_admin_certificate_fails():
    spec = make_spec(1, url=UrlConfig(urls=URLS[:1]))
    del spec.bundles["store"]
    reader, _ = _reader(spec, FakeFleet(NODE_FILES))

    with pytest.raises(MissingCredentialsError):
        reader.read_server("10.0.0.5", 0)


def test_convert_pfx_reads_key_and_cert_from_first_host():
    fleet = FakeFleet({
        "sudo cat /etc/ravendb/security/server.key": (b"KEY", b"", 0),
        "sudo cat /etc/ravendb/security/server.crt": (b"CRT", b"", 0),
    })
    reader, _ = _reader(make_spec(), fleet)

    holder = reader.convert_pfx()

    assert (holder.key, holder.cert) == (b"KEY", b"CRT")
    assert list(fleet.clients) == ["10.0.0.5"]

    unsecured, _ = _reader(make_spec(unsecured=True), fleet)
    assert unsecured.convert_pfx().is_empty()


def test_node_state_dict_hides_keys_and_encodes_license():
    state = NodeState(
        host="10.0.0.5",
        license=b"LIC",
        settings={"b": "2", "a": "1"},
        databases=[Database(name="Vault", key="plain-key"), Database(name="Plain")],
    )

    out = state.to_dict()

    assert out["license"] == base64.b64encode(b"LIC").decode()
    assert list(out["settings"]) == ["a", "b"]
    vault, plain = out["databases"]
    assert vault["key"] != "plain-key"
    assert len(vault["key"]) == 64
    assert "key" not in plain
