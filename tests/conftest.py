import json
import shlex
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from ravenfleet.cluster.errors import ConcurrencyError, DatabaseDoesNotExistError, NoLeaderError
from ravenfleet.cluster.operations import (
    AddClusterNode,
    AddDatabaseNode,
    BuildNumber,
    ClusterTopology,
    CreateDatabase,
    DatabaseHealthCheck,
    DatabaseTopology,
    DeleteDatabases,
    DeleteIndex,
    DistributeSecretKey,
    GetBuildNumber,
    GetClusterTopology,
    GetDatabaseTopology,
    PutIndexes,
    RemoveClusterNode,
    TopologyNode,
)
from ravenfleet.config.models import (
    STORE_BUNDLE,
    CertificateHolder,
    ClusterSpec,
    Package,
    SSHCredential,
    UrlConfig,
)
from ravenfleet.errors import UnreachableError
from ravenfleet.tags import tag_for_index
from ravenfleet.utils.ssh_runner import SSHRunner

# ----------------- Fakes for Paramiko -----------------

Response = Tuple[bytes, bytes, int]


class FakeChannel:
    def __init__(self, rc=0):
        self._rc = rc
        self.write_closed = False

    def recv_exit_status(self):
        return self._rc

    def shutdown_write(self):
        self.write_closed = True


class FakeStream:
    def __init__(self, data=b"", channel=None):
        self._data = data.encode() if isinstance(data, str) else data
        self.channel = channel or FakeChannel()
        self.written = bytearray()

    def read(self):
        return self._data

    def write(self, data):
        self.written.extend(data)

    def flush(self):
        pass


class FakeSSHClient:
    """
    Records every exec_command. Responses are looked up by exact command,
    then by the longest key the command starts with.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses = dict(responses or {})
        self.commands: List[str] = []
        self.stdins: Dict[str, FakeStream] = {}
        self.closed = False

    def _respond(self, cmd: str) -> Response:
        if cmd in self.responses:
            return self.responses[cmd]
        prefixes = [k for k in self.responses if cmd.startswith(k)]
        if prefixes:
            return self.responses[max(prefixes, key=len)]
        return (b"", b"", 0)

    def exec_command(self, cmd, timeout=None):
        self.commands.append(cmd)
        out, err, rc = self._respond(cmd)
        channel = FakeChannel(rc)
        stdin = FakeStream(channel=FakeChannel())
        self.stdins[cmd] = stdin
        return stdin, FakeStream(out, channel), FakeStream(err, channel)

    def uploaded(self, destination: str) -> bytes:
        """Payload of the scp upload to *destination*, without header and trailer."""
        raw = bytes(self.stdins[f"sudo scp -t {shlex.quote(destination)}"].written)
        _, _, body = raw.partition(b"\n")
        assert body.endswith(b"\x00")
        return body[:-1]

    def close(self):
        self.closed = True


class FakeFleet:
    """Stands in for open_ssh: one FakeSSHClient per host, some hosts unreachable."""

    def __init__(self, responses: Optional[Dict[str, Response]] = None, unreachable=()):
        self.responses = responses or {}
        self.unreachable = set(unreachable)
        self.clients: Dict[str, FakeSSHClient] = {}
        self.per_host: Dict[str, Dict[str, Response]] = {}

    def __call__(self, host, credential, *, transcript=None, sleep=None, **kwargs) -> SSHRunner:
        if host in self.unreachable:
            raise UnreachableError(f"{host}:{credential.port}", "connection refused")
        responses = dict(self.responses)
        responses.update(self.per_host.get(host, {}))
        client = FakeSSHClient(responses)
        self.clients[host] = client
        return SSHRunner(client, host=host, transcript=transcript)


# ----------------- Fake cluster behind the admin client -----------------

class FakeCluster:
    """In-memory cluster answering admin operations."""

    def __init__(self, urls: List[str], *, state: str = "Leader", build: int = 60105):
        self.all_nodes: Dict[str, str] = {tag_for_index(i): u for i, u in enumerate(urls)}
        self.state = state
        self.build = build
        self.databases: Dict[str, List[str]] = {}
        self.indexes: Dict[str, Dict[str, dict]] = {}
        self.keys: Dict[str, Tuple[str, ...]] = {}
        self.no_leader_for = 0

    def topology(self) -> ClusterTopology:
        return ClusterTopology(
            topology_id="topo-1",
            all_nodes=dict(self.all_nodes),
            members=dict(self.all_nodes),
            current_state=self.state,
            leader="A",
        )

    def handle(self, op, database=None):
        if self.no_leader_for > 0 and database is None:
            self.no_leader_for -= 1
            raise NoLeaderError("No leader was elected yet", status=503,
                                type_name="Raven.Server.Rachis.NoLeaderException")

        if isinstance(op, GetClusterTopology):
            return self.topology()
        if isinstance(op, GetBuildNumber):
            return BuildNumber(build_version=self.build)
        if isinstance(op, CreateDatabase):
            if op.name in self.databases:
                raise ConcurrencyError(f"Database '{op.name}' already exists!", status=409,
                                       type_name="Raven.Client.Exceptions.ConcurrencyException")
            self.databases[op.name] = list(op.members) or ["A"]
            return None
        if isinstance(op, GetDatabaseTopology):
            if op.name not in self.databases:
                return None
            return DatabaseTopology(nodes=[TopologyNode(url=self.all_nodes.get(t, ""), cluster_tag=t)
                                           for t in self.databases[op.name]])
        if isinstance(op, DeleteDatabases):
            for name in op.names:
                if op.from_nodes:
                    self.databases[name] = [t for t in self.databases.get(name, []) if t not in op.from_nodes]
                else:
                    self.databases.pop(name, None)
            return None
        if isinstance(op, AddDatabaseNode):
            self.databases[op.name].append(op.node)
            return None
        if isinstance(op, DistributeSecretKey):
            self.keys[op.name] = op.nodes
            return None
        if isinstance(op, AddClusterNode):
            self.all_nodes[op.tag or tag_for_index(len(self.all_nodes))] = op.url
            self.state = "Leader"
            return None
        if isinstance(op, RemoveClusterNode):
            self.all_nodes.pop(op.tag, None)
            return None
        if isinstance(op, DatabaseHealthCheck):
            if database not in self.databases:
                raise DatabaseDoesNotExistError(f"Database '{database}' was not found", status=503,
                                                type_name="Raven.Client.Exceptions.Database.DatabaseDoesNotExistException")
            return None
        if isinstance(op, PutIndexes):
            for index in op.indexes:
                self.indexes.setdefault(database, {})[index.name] = PutIndexes.definition(index)
            return None
        if isinstance(op, DeleteIndex):
            self.indexes.get(database, {}).pop(op.name, None)
            return None
        raise AssertionError(f"unexpected operation {op!r}")


MUTATIONS = (CreateDatabase, DeleteDatabases, AddDatabaseNode, AddClusterNode, RemoveClusterNode)


class FakeAdminClient:
    def __init__(self, handler: Callable):
        self.handler = handler
        self.calls: List[Tuple[object, Optional[str]]] = []
        self.closed = False

    def send_server_operation(self, operation):
        self.calls.append((operation, None))
        return self.handler(operation, None)

    def send_maintenance_operation(self, operation, database=None):
        self.calls.append((operation, database))
        return self.handler(operation, database)

    def ops(self, kind=None):
        return [op for op, _ in self.calls if kind is None or isinstance(op, kind)]

    def mutations(self):
        return [op for op, _ in self.calls if isinstance(op, MUTATIONS)]

    def close(self):
        self.closed = True


# ----------------- Spec fixtures -----------------

def node_settings(tag: str) -> bytes:
    return json.dumps({
        "PublicServerUrl": f"https://{tag.lower()}.cluster.example.com",
        "Logs.Path": "/var/log/ravendb",
    }).encode()


def make_spec(host_count: int = 3, *, unsecured: bool = False, **overrides) -> ClusterSpec:
    hosts = [f"10.0.0.{i + 5}" for i in range(host_count)]
    bundles = {}
    for i in range(host_count):
        tag = tag_for_index(i)
        if unsecured:
            settings = json.dumps({"ServerUrl": f"http://{tag.lower()}.cluster.example.com"}).encode()
            bundles[tag] = CertificateHolder(settings_json=settings)
        else:
            bundles[tag] = CertificateHolder(pfx=f"PFX-{tag}".encode(), settings_json=node_settings(tag))
    if not unsecured:
        bundles[STORE_BUNDLE] = CertificateHolder(
            pfx=b"ADMIN-PFX", cert=b"ADMIN-CERT", key=b"ADMIN-KEY", license=b'{"Id": "lic"}',
        )
    fields = dict(
        hosts=hosts,
        package=Package(version="6.0.105"),
        url=UrlConfig(),
        ssh=SSHCredential(user="ubuntu", pem=b"PEM"),
        unsecured=unsecured,
        bundles=bundles,
    )
    fields.update(overrides)
    return ClusterSpec(**fields)


@pytest.fixture
def spec():
    return make_spec()

