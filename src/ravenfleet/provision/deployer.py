# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/provision/deployer.py

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ravenfleet.config.models import ClusterSpec
from ravenfleet.errors import SettingsValidationError
from ravenfleet.logging.log import flush_transcript
from ravenfleet.observers.dispatcher import EventBus
from ravenfleet.observers.events import (
    HostDeployFailed,
    HostDeployStarted,
    HostDeploySucceeded,
    HostPurged,
    new_ctx,
)
from ravenfleet.provision.commands import (
    boot_check_command,
    chown_command,
    install_commands,
    purge_command,
    service_status_command,
    start_commands,
)
from ravenfleet.provision.dns import lookup_ips, verify_dns
from ravenfleet.provision.package import package_url, validate_package
from ravenfleet.provision.settings import (
    CERTIFICATE_PATH,
    LICENSE_PATH,
    SETTINGS_PATH,
    compute_settings,
    render_settings,
)
from ravenfleet.tags import tag_for_index
from ravenfleet.utils.fanout import fan_out
from ravenfleet.utils.retry import poll_until
from ravenfleet.utils.ssh import open_ssh
from ravenfleet.utils.ssh_runner import SSHRunner
from ravenfleet.utils.transcript import Transcript

log = logging.getLogger("ravenfleet")

BOOT_WAIT_ATTEMPTS = 20
BOOT_WAIT_INTERVAL_SECONDS = 1.0


class NodeProvisioner:
    """
    Installs and starts RavenDB on every host of a ClusterSpec.

    Steps per host, strictly in order:
      - wait for cloud-init (best effort)
      - download + install the server package
      - upload license, settings.json, server.pfx and free-form assets
      - verify the public hostname resolves to this host
      - restart the service and poll /setup/alive
    """

    def __init__(
        self,
        spec: ClusterSpec,
        *,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        connect: Callable[..., SSHRunner] = open_ssh,
        resolver: Callable[[str], List[str]] = lookup_ips,
        sleep: Optional[Callable[[float], None]] = None,
        boot_attempts: int = BOOT_WAIT_ATTEMPTS,
        boot_interval: float = BOOT_WAIT_INTERVAL_SECONDS,
    ):
        self.spec = spec
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.connect = connect
        self.resolver = resolver
        self.sleep = sleep
        self.boot_attempts = boot_attempts
        self.boot_interval = boot_interval

    # ------------------ helpers ------------------

    def _open(self, host: str, transcript: Transcript) -> SSHRunner:
        return self.connect(host, self.spec.ssh, transcript=transcript, sleep=self.sleep)

    def _ensure_url_slots(self) -> None:
        if len(self.spec.url.urls) != len(self.spec.hosts):
            self.spec.url.urls = [""] * len(self.spec.hosts)

    def check_package(self) -> str:
        return validate_package(self.spec.package)

    def wait_for_boot(self, runner: SSHRunner) -> bool:
        """Poll for the cloud-init marker. A False result is not an error."""

        def booted() -> bool:
            rc, _, _ = runner.run(boot_check_command())
            return rc == 0

        ready = poll_until(booted, attempts=self.boot_attempts, interval=self.boot_interval, sleep=self.sleep)
        if not ready:
            runner.transcript.line("cloud-init did not finish, continuing anyway")
            log.info("[%s] cloud-init marker not found, continuing", runner.host)
        return ready

    # ------------------ deploy ------------------

    def deploy_server(self, host: str, index: int) -> str:
        """Run the full deployment on one host. Returns its public http URL."""
        spec = self.spec
        tag = tag_for_index(index)
        self._ensure_url_slots()
        self.bus.emit(HostDeployStarted(host=host, tag=tag, **new_ctx(self.run_id)))

        # settings are validated before anything is installed
        try:
            settings, http_url = compute_settings(spec, index)
        except SettingsValidationError as exc:
            self.bus.emit(HostDeployFailed(host=host, tag=tag, error=str(exc), **new_ctx(self.run_id)))
            raise

        transcript = Transcript(host)
        runner = self._open(host, transcript)
        try:
            self.wait_for_boot(runner)
            runner.run_sequence(install_commands(package_url(spec.package)))
            spec.url.urls[index] = http_url

            license_path = None
            store = spec.store_bundle()
            if store is not None and store.license:
                runner.upload(LICENSE_PATH, store.license)
                license_path = LICENSE_PATH

            node_bundle = spec.node_bundle(index)
            if node_bundle is not None:
                runner.upload(SETTINGS_PATH, render_settings(settings))
                if not spec.unsecured:
                    runner.upload(CERTIFICATE_PATH, node_bundle.pfx)
                    runner.run_sequence([chown_command(CERTIFICATE_PATH)], service_status_command())

            for path, content in spec.assets.items():
                runner.copy_to_absolute_path(path, content)

            verify_dns(http_url, host, self.resolver)

            runner.run_sequence(start_commands(http_url, license_path), service_status_command())
        except Exception as exc:
            self.bus.emit(HostDeployFailed(host=host, tag=tag, error=str(exc), **new_ctx(self.run_id)))
            raise
        finally:
            flush_transcript(transcript)
            runner.close()

        log.info("[%s] node %s is alive at %s", host, tag, http_url)
        self.bus.emit(HostDeploySucceeded(host=host, tag=tag, http_url=http_url, **new_ctx(self.run_id)))
        return http_url

    def deploy_all(self, parallel: bool = True) -> List[str]:
        """
        Deploy every host, concurrently or one after another. Per-host
        failures do not stop the other hosts; they come back as one MultiError.
        """
        self._ensure_url_slots()
        log.info("Deploying %d node(s) (%s)", len(self.spec.hosts), "parallel" if parallel else "serial")
        return fan_out(self.spec.hosts, self.deploy_server, parallel=parallel)

    # ------------------ teardown ------------------

    def purge_server(self, host: str, index: int) -> None:
        transcript = Transcript(host)
        runner = self._open(host, transcript)
        try:
            runner.run_sequence([purge_command()])
        except Exception as exc:
            log.info("Failed to delete ravendb instance. Host machine ip: %s", host)
            self.bus.emit(HostPurged(host=host, ok=False, error=str(exc), **new_ctx(self.run_id)))
            raise
        finally:
            flush_transcript(transcript)
            runner.close()
        log.info("Deleted ravendb instance. Host machine ip: %s", host)
        self.bus.emit(HostPurged(host=host, ok=True, **new_ctx(self.run_id)))

    def remove_all(self) -> None:
        fan_out(self.spec.hosts, self.purge_server, parallel=True)
