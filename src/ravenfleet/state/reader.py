# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/state/reader.py

from __future__ import annotations

import json
import logging
import posixpath
from typing import Callable, List, Optional

from ravenfleet.certs.convert import extract_server_key_and_cert
from ravenfleet.cluster.client import AdminClient, RavenAdminClient
from ravenfleet.cluster.reconciler import ClusterReconciler
from ravenfleet.config.models import CertificateHolder, ClusterSpec, normalize_settings
from ravenfleet.errors import MissingCredentialsError, SettingsParseError, is_unreachable
from ravenfleet.logging.log import flush_transcript
from ravenfleet.observers.dispatcher import EventBus
from ravenfleet.observers.events import NodeStateRead, new_ctx
from ravenfleet.state.models import NodeState
from ravenfleet.tags import tag_for_index
from ravenfleet.utils.fanout import fan_out
from ravenfleet.utils.ssh import open_ssh
from ravenfleet.utils.ssh_runner import SSHRunner
from ravenfleet.utils.transcript import Transcript

log = logging.getLogger("ravenfleet")

CONFIG_DIRS = ("/etc/ravendb", "/etc/ravendb/security")
MASTER_KEY = "master.key"
SETTINGS_FILE = "settings.json"
LICENSE_FILE = "license.json"
SERVER_PFX = "server.pfx"


class StateReader:
    """Reads back what is installed on each host of a ClusterSpec."""

    def __init__(
        self,
        spec: ClusterSpec,
        *,
        connect: Callable[..., SSHRunner] = open_ssh,
        client_factory: Callable[..., AdminClient] = RavenAdminClient.for_spec,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.spec = spec
        self.connect = connect
        self.client_factory = client_factory
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.sleep = sleep

    def _open(self, host: str, transcript: Transcript) -> SSHRunner:
        return self.connect(host, self.spec.ssh, transcript=transcript, sleep=self.sleep)

    def admin_certificate(self, index: int) -> Optional[CertificateHolder]:
        """Client identity for admin calls: the shared bundle, else the node's own."""
        if self.spec.unsecured:
            return None
        for bundle in (self.spec.store_bundle(), self.spec.node_bundle(index)):
            if bundle is not None and bundle.cert and bundle.key:
                return bundle
        raise MissingCredentialsError(
            f"no admin client certificate for node {tag_for_index(index)}: "
            "the setup package has no shared bundle with a .crt and .key"
        )

    def _read_files(self, runner: SSHRunner) -> dict:
        files = {}
        for directory in CONFIG_DIRS:
            for path in runner.list_files(directory):
                files[posixpath.basename(path)] = runner.read_file(path)
        files.pop(MASTER_KEY, None)
        return files

    def read_server(self, host: str, index: int) -> NodeState:
        tag = tag_for_index(index)
        transcript = Transcript(host)
        runner = self._open(host, transcript)
        try:
            assets = self._read_files(runner)
        finally:
            flush_transcript(transcript)
            runner.close()

        state = NodeState(host=host, unsecured=self.spec.unsecured)

        raw_settings = assets.pop(SETTINGS_FILE, None)
        if raw_settings is not None:
            try:
                parsed = json.loads(raw_settings)
            except ValueError as exc:
                transcript.line("Failed to parse settings.json")
                transcript.write(raw_settings)
                raise SettingsParseError(
                    f"settings.json on {host} is not valid JSON: {exc}\n{transcript.text()}"
                ) from exc
            state.settings = normalize_settings(parsed if isinstance(parsed, dict) else {})

        state.license = assets.pop(LICENSE_FILE, b"")
        pfx = assets.pop(SERVER_PFX, None)
        if pfx is not None:
            state.bundles[tag] = CertificateHolder(pfx=pfx)
        state.assets = assets

        client = self.client_factory(self.spec, self.admin_certificate(index))
        try:
            state.version = ClusterReconciler(self.spec, client, sleep=self.sleep).get_build_number()
        finally:
            client.close()

        state.databases = [db.model_copy(deep=True) for db in self.spec.databases]
        state.databases_to_delete = [d.model_copy() for d in self.spec.databases_to_delete]
        state.indexes_to_delete = [i.model_copy(deep=True) for i in self.spec.indexes_to_delete]

        log.info("[%s] node %s runs build %s", host, tag, state.version)
        self.bus.emit(NodeStateRead(host=host, failed=False, version=state.version, **new_ctx(self.run_id)))
        return state

    def read_all(self) -> List[NodeState]:
        """
        Read every host concurrently. Unreachable hosts come back as
        ``failed=True`` states; any other failure aborts with MultiError.
        """

        def on_error(host: str, index: int, exc: BaseException) -> NodeState:
            if not is_unreachable(exc):
                raise exc
            log.warning("[%s] unreachable, marking node as failed", host)
            self.bus.emit(NodeStateRead(host=host, failed=True, **new_ctx(self.run_id)))
            return NodeState(host=host, unsecured=self.spec.unsecured, failed=True)

        return fan_out(self.spec.hosts, self.read_server, parallel=True, on_error=on_error)

    def convert_pfx(self) -> CertificateHolder:
        """
        Key and certificate of the server identity installed on the first
        host. Empty when the cluster is unsecured or has no bundles.
        """
        if self.spec.unsecured or not self.spec.bundles or not self.spec.hosts:
            return CertificateHolder()
        host = self.spec.hosts[0]
        transcript = Transcript(host)
        runner = self._open(host, transcript)
        try:
            return extract_server_key_and_cert(runner)
        finally:
            flush_transcript(transcript)
            runner.close()
