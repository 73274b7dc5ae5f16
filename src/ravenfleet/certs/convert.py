# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/certs/convert.py
from __future__ import annotations

from ravenfleet.config.models import CertificateHolder
from ravenfleet.utils.ssh_runner import SSHRunner

SERVER_PFX = "/etc/ravendb/security/server.pfx"
SERVER_KEY = "/etc/ravendb/security/server.key"
SERVER_CRT = "/etc/ravendb/security/server.crt"


def extract_server_key_and_cert(runner: SSHRunner) -> CertificateHolder:
    """
    Split the installed server.pfx into a PEM key and certificate with
    openssl on the host, read both back and remove them again.
    """
    runner.run_sequence([
        f"sudo openssl pkcs12 -in {SERVER_PFX} -nocerts -nodes -out {SERVER_KEY} -password pass:",
        f"sudo openssl pkcs12 -in {SERVER_PFX} -clcerts -nokeys -out {SERVER_CRT} -password pass:",
    ])
    key = runner.read_file(SERVER_KEY)
    cert = runner.read_file(SERVER_CRT)
    runner.run_sequence([
        f"sudo rm -f {SERVER_KEY}",
        f"sudo rm -f {SERVER_CRT}",
    ])
    return CertificateHolder(key=key, cert=cert)
