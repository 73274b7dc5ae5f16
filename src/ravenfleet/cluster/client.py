# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/cluster/client.py
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Any, List, Optional, Protocol, Sequence

import requests
import urllib3

from ravenfleet.cluster.errors import (
    AdminOperationError,
    AllNodesDownError,
    ConcurrencyError,
    DatabaseDoesNotExistError,
    NoLeaderError,
)
from ravenfleet.cluster.operations import HttpRequest, MaintenanceOperation, ServerOperation
from ravenfleet.config.models import CertificateHolder, ClusterSpec

log = logging.getLogger("ravenfleet")

# Exception type names reported by the server, matched on the last segment.
_ERROR_TYPES = {
    "NoLeaderException": NoLeaderError,
    "DatabaseDoesNotExistException": DatabaseDoesNotExistError,
    "ConcurrencyException": ConcurrencyError,
}


class AdminClient(Protocol):
    def send_server_operation(self, operation: ServerOperation) -> Any: ...

    def send_maintenance_operation(self, operation: MaintenanceOperation, database: Optional[str] = None) -> Any: ...

    def close(self) -> None: ...


def error_from_response(response: requests.Response) -> AdminOperationError:
    """Map a failed admin response onto the error taxonomy."""
    type_name = ""
    message = response.text
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        type_name = str(body.get("Type") or "")
        message = str(body.get("Message") or body.get("Error") or message)

    short = type_name.rsplit(".", 1)[-1]
    cls = _ERROR_TYPES.get(short, AdminOperationError)
    return cls(
        f"{response.request.method if response.request else ''} {response.url} "
        f"failed with HTTP {response.status_code}: {message}",
        status=response.status_code,
        type_name=type_name or None,
    )


class RavenAdminClient:
    """
    Thin HTTP client for the RavenDB admin API.

    Authenticates with the admin client certificate (PEM cert + key) and
    tries the known node URLs in order until one answers.
    """

    def __init__(
        self,
        urls: Sequence[str],
        *,
        certificate: Optional[CertificateHolder] = None,
        database: str = "",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        if not urls:
            raise AdminOperationError("no cluster URLs to talk to")
        self.urls: List[str] = [u.rstrip("/") for u in urls]
        self.database = database
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cert_dir: Optional[str] = None

        # server certificates are not verified
        self.session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        if certificate is not None and certificate.cert and certificate.key:
            self._cert_dir = tempfile.mkdtemp(prefix="ravenfleet-")
            cert_path = os.path.join(self._cert_dir, "admin.crt")
            key_path = os.path.join(self._cert_dir, "admin.key")
            for path, data in ((cert_path, certificate.cert), (key_path, certificate.key)):
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
            self.session.cert = (cert_path, key_path)

    @classmethod
    def for_spec(cls, spec: ClusterSpec, certificate: Optional[CertificateHolder] = None) -> "RavenAdminClient":
        return cls(spec.url.urls, certificate=certificate, database=spec.healthcheck_database)

    # ------------------ transport ------------------

    def _send(self, req: HttpRequest) -> Any:
        failures: List[str] = []
        for base in self.urls:
            try:
                response = self.session.request(
                    req.method,
                    base + req.path,
                    params=list(req.params) or None,
                    json=req.json,
                    data=req.data,
                    headers=dict(req.headers) or None,
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                failures.append(f"{base}: {exc}")
                continue
            if response.status_code >= 400:
                raise error_from_response(response)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text
        raise AllNodesDownError("All topology nodes are down:\n" + "\n".join(failures))

    def send_server_operation(self, operation: ServerOperation) -> Any:
        req = operation.request()
        log.debug("admin %s %s", req.method, req.path)
        return operation.parse(self._send(req))

    def send_maintenance_operation(self, operation: MaintenanceOperation, database: Optional[str] = None) -> Any:
        target = database or self.database
        if not target:
            raise AdminOperationError("maintenance operation needs a database name")
        req = operation.request(target)
        log.debug("admin[%s] %s %s", target, req.method, req.path)
        return operation.parse(self._send(req))

    def close(self) -> None:
        self.session.close()
        if self._cert_dir:
            shutil.rmtree(self._cert_dir, ignore_errors=True)
            self._cert_dir = None

    def __enter__(self) -> "RavenAdminClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
