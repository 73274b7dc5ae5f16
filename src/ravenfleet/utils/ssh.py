# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/utils/ssh.py
from __future__ import annotations

import io
import logging
from typing import Callable, Optional

import paramiko

from ravenfleet.config.models import SSHCredential
from ravenfleet.errors import AuthenticationError, RavenFleetError, UnreachableError
from ravenfleet.utils.retry import call_with_retry
from ravenfleet.utils.ssh_runner import SSHRunner
from ravenfleet.utils.transcript import Transcript

log = logging.getLogger("ravenfleet")

NUMBER_OF_RETRIES = 5
CONNECT_BACKOFF_SECONDS = 2


def load_private_key(pem: bytes) -> paramiko.PKey:
    text = pem.decode("utf-8")
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key(io.StringIO(text))
        except paramiko.SSHException:
            continue
    raise RavenFleetError("Unsupported private key format for SSH credential")


def open_ssh(
    address: str,
    credential: SSHCredential,
    *,
    retries: int = NUMBER_OF_RETRIES,
    backoff: float = CONNECT_BACKOFF_SECONDS,
    connect_timeout: float = 60.0,
    transcript: Optional[Transcript] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> SSHRunner:
    """
    Connect to *address* with the deploy credential, retrying while the host
    is still coming up. The last failure raises UnreachableError; a rejected
    credential raises AuthenticationError without retrying.
    """
    pkey = load_private_key(credential.pem)
    host_and_port = f"{address}:{credential.port}"

    def dial() -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=address,
                port=credential.port,
                username=credential.user,
                pkey=pkey,
                password=None,
                look_for_keys=False,
                allow_agent=False,
                timeout=connect_timeout,
            )
        except BaseException:
            client.close()
            raise
        return client

    def on_retry(attempt: int, exc: BaseException) -> None:
        log.info(
            "[%s] SSH not ready (attempt %d/%d, %s: %s)",
            host_and_port, attempt, retries, type(exc).__name__, exc,
        )

    log.info("Trying to SSH: %s", host_and_port)
    try:
        client = call_with_retry(
            dial,
            retries=retries,
            delay=backoff,
            retry_on=(paramiko.SSHException, OSError),
            retry_if=lambda exc: not isinstance(exc, paramiko.AuthenticationException),
            on_retry=on_retry,
            reraise=True,
            sleep=sleep,
        )
    except paramiko.AuthenticationException as exc:
        log.error("SSH credential rejected by %s: %s", host_and_port, exc)
        raise AuthenticationError(host_and_port, exc) from exc
    except (paramiko.SSHException, OSError) as exc:
        log.warning("Unable to SSH to %s because %s", host_and_port, exc)
        raise UnreachableError(host_and_port, exc) from exc

    log.info("Connected to %s", host_and_port)
    return SSHRunner(client, host=address, transcript=transcript)
