# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/cluster/operations.py
"""
Administrative operations sent to a RavenDB cluster.

Each operation describes its HTTP request (``request``) and turns the decoded
JSON response into a result (``parse``). Server operations address the
cluster; maintenance operations are scoped to one database and receive its
name in ``request``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ravenfleet.config.models import Database, Index


@dataclass(frozen=True)
class HttpRequest:
    method: str
    path: str
    params: Tuple[Tuple[str, str], ...] = ()
    json: Any = None
    data: Optional[bytes] = None
    headers: Tuple[Tuple[str, str], ...] = ()


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BuildNumber:
    build_version: int
    product_version: str = ""
    full_version: str = ""


@dataclass(frozen=True)
class ClusterTopology:
    topology_id: str
    all_nodes: Dict[str, str] = field(default_factory=dict)
    members: Dict[str, str] = field(default_factory=dict)
    current_state: str = ""
    leader: str = ""


@dataclass(frozen=True)
class TopologyNode:
    url: str
    cluster_tag: str


@dataclass(frozen=True)
class DatabaseTopology:
    nodes: List[TopologyNode] = field(default_factory=list)

    @property
    def tags(self) -> List[str]:
        return [n.cluster_tag for n in self.nodes]


# ---------------------------------------------------------------------
# Server operations
# ---------------------------------------------------------------------
class ServerOperation:
    def request(self) -> HttpRequest:
        raise NotImplementedError

    def parse(self, response: Any) -> Any:
        return None


class MaintenanceOperation:
    def request(self, database: str) -> HttpRequest:
        raise NotImplementedError

    def parse(self, response: Any) -> Any:
        return None


class GetBuildNumber(ServerOperation):
    def request(self) -> HttpRequest:
        return HttpRequest("GET", "/build/version")

    def parse(self, response: Any) -> BuildNumber:
        response = response or {}
        return BuildNumber(
            build_version=int(response.get("BuildVersion", 0)),
            product_version=str(response.get("ProductVersion", "")),
            full_version=str(response.get("FullVersion", "")),
        )


class GetClusterTopology(ServerOperation):
    def request(self) -> HttpRequest:
        return HttpRequest("GET", "/cluster/topology")

    def parse(self, response: Any) -> ClusterTopology:
        response = response or {}
        topology = response.get("Topology") or {}
        return ClusterTopology(
            topology_id=str(topology.get("TopologyId", "")),
            all_nodes=dict(topology.get("AllNodes") or {}),
            members=dict(topology.get("Members") or {}),
            current_state=str(response.get("CurrentState", "")),
            leader=str(response.get("Leader") or ""),
        )


@dataclass(frozen=True)
class GetDatabaseTopology(ServerOperation):
    name: str

    def request(self) -> HttpRequest:
        return HttpRequest("GET", "/topology", params=(("name", self.name),))

    def parse(self, response: Any) -> Optional[DatabaseTopology]:
        if not response:
            return None
        return DatabaseTopology(nodes=[
            TopologyNode(url=str(n.get("Url", "")), cluster_tag=str(n.get("ClusterTag", "")))
            for n in response.get("Nodes") or []
        ])


@dataclass(frozen=True)
class CreateDatabase(ServerOperation):
    name: str
    members: Tuple[str, ...] = ()
    settings: Tuple[Tuple[str, str], ...] = ()
    encrypted: bool = False
    replication_factor: int = 1

    @classmethod
    def for_database(cls, db: Database) -> "CreateDatabase":
        return cls(
            name=db.name,
            members=tuple(db.replication_nodes),
            settings=tuple(sorted(db.settings.items())),
            encrypted=db.encrypted,
            replication_factor=len(db.replication_nodes),
        )

    def record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "DatabaseName": self.name,
            "Settings": dict(self.settings),
            "Encrypted": self.encrypted,
            "Disabled": False,
        }
        if self.members:
            record["Topology"] = {
                "Members": list(self.members),
                "ReplicationFactor": len(self.members),
                "DynamicNodesDistribution": False,
            }
        return record

    def request(self) -> HttpRequest:
        return HttpRequest(
            "PUT",
            "/admin/databases",
            params=(("name", self.name), ("replicationFactor", str(max(self.replication_factor, 1)))),
            json=self.record(),
        )


@dataclass(frozen=True)
class DeleteDatabases(ServerOperation):
    names: Tuple[str, ...]
    hard_delete: bool = False
    from_nodes: Tuple[str, ...] = ()

    def request(self) -> HttpRequest:
        body: Dict[str, Any] = {
            "DatabaseNames": list(self.names),
            "HardDelete": self.hard_delete,
        }
        if self.from_nodes:
            body["FromNodes"] = list(self.from_nodes)
        return HttpRequest("DELETE", "/admin/databases", json=body)


@dataclass(frozen=True)
class AddDatabaseNode(ServerOperation):
    name: str
    node: str

    def request(self) -> HttpRequest:
        return HttpRequest("PUT", "/admin/databases/node", params=(("name", self.name), ("node", self.node)))


@dataclass(frozen=True)
class AddClusterNode(ServerOperation):
    url: str
    tag: str = ""

    def request(self) -> HttpRequest:
        params: Tuple[Tuple[str, str], ...] = (("url", self.url),)
        if self.tag:
            params += (("tag", self.tag),)
        return HttpRequest("PUT", "/admin/cluster/node", params=params)


@dataclass(frozen=True)
class RemoveClusterNode(ServerOperation):
    url: str
    tag: str

    def request(self) -> HttpRequest:
        return HttpRequest("DELETE", "/admin/cluster/node", params=(("nodeTag", self.tag),))


@dataclass(frozen=True)
class DistributeSecretKey(ServerOperation):
    """Push a database encryption key into the secret store of each node."""

    name: str
    nodes: Tuple[str, ...]
    key: str

    def request(self) -> HttpRequest:
        params = (("name", self.name),) + tuple(("node", n) for n in self.nodes)
        return HttpRequest(
            "POST",
            "/admin/secrets/distribute",
            params=params,
            data=self.key.encode("utf-8"),
            headers=(("Content-Type", "application/json; charset=UTF-8"),),
        )


# ---------------------------------------------------------------------
# Maintenance operations (database scoped)
# ---------------------------------------------------------------------
def _db_path(database: str, suffix: str) -> str:
    return f"/databases/{quote(database, safe='')}{suffix}"


class DatabaseHealthCheck(MaintenanceOperation):
    def request(self, database: str) -> HttpRequest:
        return HttpRequest("GET", _db_path(database, "/healthcheck"))


@dataclass(frozen=True)
class PutIndexes(MaintenanceOperation):
    indexes: Tuple[Index, ...]

    @staticmethod
    def definition(index: Index) -> Dict[str, Any]:
        return {
            "Name": index.name,
            "Maps": list(index.maps),
            "Reduce": index.reduce or None,
            "Configuration": dict(index.configuration),
        }

    def request(self, database: str) -> HttpRequest:
        return HttpRequest(
            "PUT",
            _db_path(database, "/admin/indexes"),
            json={"Indexes": [self.definition(i) for i in self.indexes]},
        )


@dataclass(frozen=True)
class DeleteIndex(MaintenanceOperation):
    name: str

    def request(self, database: str) -> HttpRequest:
        return HttpRequest("DELETE", _db_path(database, "/indexes"), params=(("name", self.name),))
