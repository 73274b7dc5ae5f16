# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/cluster/reconciler.py

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple

from ravenfleet.cluster.client import AdminClient
from ravenfleet.cluster.errors import (
    AdminOperationError,
    AllNodesDownError,
    ConcurrencyError,
    DatabaseDoesNotExistError,
    TopologyMissingError,
    is_already_exists,
    is_transient,
)
from ravenfleet.cluster.operations import (
    AddClusterNode,
    AddDatabaseNode,
    ClusterTopology,
    CreateDatabase,
    DatabaseHealthCheck,
    DeleteDatabases,
    DeleteIndex,
    DistributeSecretKey,
    GetBuildNumber,
    GetClusterTopology,
    GetDatabaseTopology,
    MaintenanceOperation,
    PutIndexes,
    RemoveClusterNode,
    ServerOperation,
)
from ravenfleet.config.models import ClusterSpec, Database
from ravenfleet.observers.dispatcher import EventBus
from ravenfleet.observers.events import (
    ClusterNodeChanged,
    DatabaseCreated,
    DatabaseModified,
    ReconcilePhaseStarted,
    new_ctx,
)
from ravenfleet.tags import tag_from_url
from ravenfleet.utils.retry import call_with_retry

log = logging.getLogger("ravenfleet")

NUMBER_OF_RETRIES = 5
RETRY_DELAY_SECONDS = 5
PASSIVE_STATE = "Passive"


def _contains(values: List[str], item: str) -> bool:
    return any(v.upper() == item.upper() for v in values)


def member_delta(live: List[str], desired: List[str]) -> Tuple[List[str], List[str]]:
    """
    (tags to remove, tags to add) that turn *live* into *desired*.
    Tags compare case-insensitively; order follows the inputs.
    """
    remove = [tag for tag in live if not _contains(desired, tag)]
    add = [tag for tag in desired if not _contains(live, tag)]
    return remove, add


class ClusterReconciler:
    """
    Brings a running cluster in line with the databases and indexes of a
    ClusterSpec. Phases run one after another on the calling thread:
    healthcheck, deletions, database create/modify, indexes.
    """

    def __init__(
        self,
        spec: ClusterSpec,
        client: AdminClient,
        *,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        sleep: Optional[Callable[[float], None]] = None,
        retries: int = NUMBER_OF_RETRIES,
        delay: float = RETRY_DELAY_SECONDS,
    ):
        self.spec = spec
        self.client = client
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.sleep = sleep
        self.retries = retries
        self.delay = delay

    def _phase(self, name: str) -> None:
        log.info("[cluster] %s", name)
        self.bus.emit(ReconcilePhaseStarted(phase=name, **new_ctx(self.run_id)))

    def _on_retry(self, attempt: int, exc: BaseException) -> None:
        log.info("[cluster] %s (attempt %d/%d), retrying in %ss", exc, attempt, self.retries, self.delay)

    # ------------------ retry policy ------------------

    def _while_forming(self, call: Callable[[], Any]) -> Any:
        return call_with_retry(
            call,
            retries=self.retries,
            delay=self.delay,
            retry_on=(AdminOperationError,),
            retry_if=is_transient,
            on_retry=self._on_retry,
            reraise=True,
            sleep=self.sleep,
        )

    def execute_with_retries(self, operation: ServerOperation) -> Any:
        """Retry only while the cluster is still forming (no leader / all nodes down)."""
        return self._while_forming(lambda: self.client.send_server_operation(operation))

    def execute_maintenance_with_retries(self, operation: MaintenanceOperation, database: str) -> Any:
        """Same policy as execute_with_retries, on the database maintenance channel."""
        return self._while_forming(lambda: self.client.send_maintenance_operation(operation, database))

    def check_database_health(self, database: str) -> Any:
        """Retry any admin failure except a missing database, which callers handle."""
        return call_with_retry(
            lambda: self.client.send_maintenance_operation(DatabaseHealthCheck(), database),
            retries=self.retries,
            delay=self.delay,
            retry_on=(AdminOperationError,),
            retry_if=lambda exc: not isinstance(exc, DatabaseDoesNotExistError),
            on_retry=self._on_retry,
            reraise=True,
            sleep=self.sleep,
        )

    # ------------------ reads ------------------

    def get_cluster_topology(self) -> ClusterTopology:
        return self.execute_with_retries(GetClusterTopology())

    def get_build_number(self) -> str:
        return str(self.execute_with_retries(GetBuildNumber()).build_version)

    # ------------------ databases ------------------

    def healthcheck(self) -> None:
        name = self.spec.healthcheck_database
        if not name.strip():
            log.debug("[cluster] no healthcheck database configured")
            return
        try:
            self.check_database_health(name)
        except DatabaseDoesNotExistError:
            log.info("[cluster] healthcheck database '%s' is missing, creating it", name)
            self.create_database(CreateDatabase(name=name, encrypted=False, replication_factor=len(self.spec.hosts)))
            self.check_database_health(name)

    def _wait_for_members(self) -> None:
        expected = len(self.spec.url.urls)
        if not expected:
            return
        for attempt in range(1, self.retries + 1):
            topology = self.get_cluster_topology()
            if len(topology.members) == expected:
                return
            log.info(
                "[cluster] %d/%d members joined (attempt %d/%d)",
                len(topology.members), expected, attempt, self.retries,
            )
            if attempt < self.retries:
                (self.sleep or time.sleep)(self.delay)

    def create_database(self, operation: CreateDatabase) -> None:
        """
        Create one database. "already exists" is raised for the caller to
        fall back to modify; other concurrency conflicts are tolerated.
        """
        self._wait_for_members()
        try:
            self.execute_with_retries(operation)
        except ConcurrencyError as exc:
            if is_already_exists(exc):
                raise
            log.info("[cluster] ignoring concurrency conflict creating '%s': %s", operation.name, exc)
            return
        log.info("[cluster] created database '%s'", operation.name)
        self.bus.emit(DatabaseCreated(
            name=operation.name,
            encrypted=operation.encrypted,
            replication_factor=operation.replication_factor,
            **new_ctx(self.run_id),
        ))

    def modify_database(self, db: Database) -> Tuple[List[str], List[str]]:
        """
        Move an existing database onto exactly its replication nodes:
        hard-delete it from surplus nodes first, then add it to missing ones.
        """
        try:
            topology = self.execute_with_retries(GetDatabaseTopology(db.name))
        except AdminOperationError as exc:
            raise TopologyMissingError(f"Unable to retrieve topology for database: {db.name}: {exc}") from exc
        if topology is None:
            raise TopologyMissingError(f"Unable to retrieve topology for database: {db.name}")

        remove, add = member_delta(topology.tags, list(db.replication_nodes))
        if remove:
            self.execute_with_retries(DeleteDatabases(names=(db.name,), hard_delete=True, from_nodes=tuple(remove)))
        for tag in add:
            self.execute_with_retries(AddDatabaseNode(name=db.name, node=tag))

        if remove or add:
            log.info("[cluster] database '%s': removed from %s, added to %s", db.name, remove, add)
            self.bus.emit(DatabaseModified(name=db.name, removed_from=remove, added_to=add, **new_ctx(self.run_id)))
        return remove, add

    def distribute_secret_key(self, db: Database) -> None:
        try:
            self.execute_with_retries(DistributeSecretKey(name=db.name, nodes=tuple(db.replication_nodes), key=db.key))
        except AdminOperationError:
            log.error("Unable to DISTRIBUTE database key to nodes: %s", db.replication_nodes)
            raise

    def create_databases(self) -> None:
        # every key must be in place before any encrypted create
        for db in self.spec.databases:
            if db.encrypted:
                self.distribute_secret_key(db)

        for db in self.spec.databases:
            try:
                self.create_database(CreateDatabase.for_database(db))
            except AdminOperationError as exc:
                if not is_already_exists(exc):
                    log.error("Unable to CREATE database: %s because: %s", db.name, exc)
                    raise
                self.modify_database(db)

    def delete_databases(self) -> None:
        for db in self.spec.databases_to_delete:
            self.execute_with_retries(DeleteDatabases(names=(db.name,), hard_delete=db.hard_delete))
            log.info("[cluster] deleted database '%s'", db.name)

    # ------------------ indexes ------------------

    def delete_indexes(self) -> None:
        for entry in self.spec.indexes_to_delete:
            for index_name in entry.index_names:
                self.execute_maintenance_with_retries(DeleteIndex(index_name), entry.database_name)

    def create_indexes(self) -> None:
        for db in self.spec.databases:
            for index in db.indexes:
                self.execute_maintenance_with_retries(PutIndexes((index,)), db.name)

    # ------------------ entry points ------------------

    def deploy(self) -> str:
        """Run every reconciliation phase. Returns the cluster topology id."""
        self._phase("topology")
        topology = self.get_cluster_topology()

        self._phase("healthcheck")
        self.healthcheck()

        self._phase("delete databases")
        self.delete_databases()

        self._phase("delete indexes")
        self.delete_indexes()

        self._phase("databases")
        self.create_databases()

        self._phase("indexes")
        self.create_indexes()

        return topology.topology_id

    def _add_node(self, url: str) -> None:
        tag = tag_from_url(url, fallback="") or ""
        self.execute_with_retries(AddClusterNode(url=url, tag=tag))
        self.bus.emit(ClusterNodeChanged(url=url, tag=tag, action="added", **new_ctx(self.run_id)))

    def add_nodes_to_cluster(self) -> None:
        """
        Make cluster membership match spec.url.urls. An unformed cluster
        (passive, or unreachable) gets every node after the first joined to
        node 0; afterwards undeclared members are removed and missing ones
        added.
        """
        self._phase("membership")
        declared = list(self.spec.url.urls)
        try:
            unformed = self.get_cluster_topology().current_state == PASSIVE_STATE
        except AllNodesDownError:
            unformed = True
        if unformed:
            for url in declared[1:]:
                self._add_node(url)

        topology = self.get_cluster_topology()
        for node_tag, node_url in topology.all_nodes.items():
            if _contains(declared, node_url):
                continue
            tag = tag_from_url(node_url, fallback=node_tag) or node_tag
            self.execute_with_retries(RemoveClusterNode(url=node_url, tag=tag))
            self.bus.emit(ClusterNodeChanged(url=node_url, tag=tag, action="removed", **new_ctx(self.run_id)))

        live_urls = list(topology.all_nodes.values())
        for url in declared:
            if not _contains(live_urls, url):
                self._add_node(url)

