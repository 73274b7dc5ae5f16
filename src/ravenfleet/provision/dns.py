# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/provision/dns.py
from __future__ import annotations

import socket
from typing import Callable, List
from urllib.parse import urlparse

from ravenfleet.errors import DnsMismatchError


def lookup_ips(hostname: str) -> List[str]:
    seen: List[str] = []
    for *_, sockaddr in socket.getaddrinfo(hostname, None):
        ip = sockaddr[0]
        if ip not in seen:
            seen.append(ip)
    return seen


def verify_dns(http_url: str, host_ip: str, resolver: Callable[[str], List[str]] = lookup_ips) -> List[str]:
    """
    Fail unless the public hostname of *http_url* resolves to *host_ip*.
    """
    hostname = urlparse(http_url).hostname or http_url
    try:
        ips = resolver(hostname)
    except OSError as exc:
        raise DnsMismatchError(f"Unable to resolve '{hostname}': {exc}") from exc
    if host_ip in ips:
        return ips
    rows = "\n".join(ips)
    raise DnsMismatchError(
        f"Tried to resolve '{hostname}' but got an outdated result\n"
        f"Expected to get these ips: {host_ip} while the actual result was:\n{rows}"
    )
