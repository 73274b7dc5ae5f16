# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/provision/commands.py
from __future__ import annotations

import shlex
from typing import List, Optional

from jinja2 import Environment, StrictUndefined

SERVICE_NAME = "ravendb"
BOOT_MARKER = "/var/lib/cloud/instance/boot-finished"
APT_UPDATE_TIMEOUT_SECONDS = 100
LIVENESS_TIMEOUT_SECONDS = 100

_env = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)
_env.filters["shq"] = shlex.quote

_INSTALL = _env.from_string(
    "wget -nv -O ravendb.deb {{ package_url | shq }}\n"
    "timeout {{ apt_timeout }} bash -c -- 'while ! sudo apt-get update -y; do sleep 1; done'\n"
    "sudo apt-get install -y -f ./ravendb.deb"
)

_START = _env.from_string(
    "{% if license_path %}\n"
    "sudo chown {{ service }}:{{ service }} {{ license_path }}\n"
    "{% endif %}\n"
    "sudo systemctl restart {{ service }}\n"
    "timeout {{ alive_timeout }} bash -c -- "
    "'while ! curl -vvv -k {{ http_url }}/setup/alive; "
    "do echo \"Curl failed with exit code $?\"; sleep 1; done'"
)


def _lines(rendered: str) -> List[str]:
    return [line for line in rendered.splitlines() if line.strip()]


def install_commands(package_url: str) -> List[str]:
    return _lines(_INSTALL.render(package_url=package_url, apt_timeout=APT_UPDATE_TIMEOUT_SECONDS))


def start_commands(http_url: str, license_path: Optional[str] = None) -> List[str]:
    return _lines(_START.render(
        service=SERVICE_NAME,
        license_path=license_path,
        http_url=http_url,
        alive_timeout=LIVENESS_TIMEOUT_SECONDS,
    ))


def service_status_command() -> str:
    return f"sudo systemctl status {SERVICE_NAME}"


def purge_command() -> str:
    return f"sudo apt-get -y purge {SERVICE_NAME}"


def boot_check_command() -> str:
    return f"test -f {BOOT_MARKER}"


def chown_command(path: str) -> str:
    return f"sudo chown {SERVICE_NAME}:{SERVICE_NAME} {shlex.quote(path)}"
