# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/provision/package.py
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Optional

import requests

from ravenfleet.config.models import Package
from ravenfleet.errors import PackageError
from ravenfleet.utils.retry import RetryError, retry

log = logging.getLogger("ravenfleet")

PACKAGE_HOST = "https://daily-builds.s3.us-east-1.amazonaws.com"

PACKAGE_ARCHITECTURES = MappingProxyType({
    "arm64": "_linux-arm64",
    "arm32": "-0_armhf.deb",
    "amd64": "-0_amd64.deb",
})
DEFAULT_ARCH = "amd64"

HEAD_RETRIES = 3
HEAD_RETRY_DELAY_SECONDS = 2


def resolve_arch_suffix(arch: str) -> str:
    """Known names map through the table, blanks become amd64, anything else is taken as a literal suffix."""
    name = (arch or "").strip().lower()
    if not name:
        return PACKAGE_ARCHITECTURES[DEFAULT_ARCH]
    return PACKAGE_ARCHITECTURES.get(name, arch)


def package_url(package: Package) -> str:
    return f"{PACKAGE_HOST}/ravendb_{package.version}{resolve_arch_suffix(package.arch)}"


@retry(retries=HEAD_RETRIES, delay=HEAD_RETRY_DELAY_SECONDS, retry_on=(requests.ConnectionError, requests.Timeout))
def _head(http, link: str, timeout: float):
    return http.head(link, timeout=timeout, allow_redirects=True)


def validate_package(package: Package, session: Optional[requests.Session] = None, timeout: float = 30.0) -> str:
    """HEAD the download URL before any host is touched. Returns the URL."""
    link = package_url(package)
    try:
        response = _head(session or requests, link, timeout)
    except RetryError as exc:
        raise PackageError(
            f"unable to download the RavenDB version: {package.version}, from: {link} because of: {exc.__cause__}"
        ) from exc
    except requests.RequestException as exc:
        raise PackageError(
            f"unable to download the RavenDB version: {package.version}, from: {link} because of: {exc}"
        ) from exc
    if response.status_code != 200:
        raise PackageError(
            f"{link} is not reachable. HTTP status code: {response.status_code}. "
            f"Please check the input version: {package.version}"
        )
    log.debug("package %s is reachable", link)
    return link
