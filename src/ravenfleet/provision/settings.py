# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/provision/settings.py
from __future__ import annotations

import json
from typing import Dict, Tuple
from urllib.parse import urlparse

from ravenfleet.config.models import ClusterSpec, SettingValue
from ravenfleet.errors import SettingsValidationError
from ravenfleet.tags import tag_for_index

DEFAULT_SECURE_HTTP_PORT = 443
DEFAULT_UNSECURED_HTTP_PORT = 8080
DEFAULT_SECURE_TCP_PORT = 38888
DEFAULT_UNSECURED_TCP_PORT = 38881
DEFAULT_HTTP_PORT = 80

SETTINGS_PATH = "/etc/ravendb/settings.json"
LICENSE_PATH = "/etc/ravendb/license.json"
CERTIFICATE_PATH = "/etc/ravendb/security/server.pfx"


def effective_ports(spec: ClusterSpec) -> Tuple[int, int]:
    http_port = spec.url.http_port or (
        DEFAULT_UNSECURED_HTTP_PORT if spec.unsecured else DEFAULT_SECURE_HTTP_PORT
    )
    tcp_port = spec.url.tcp_port or (
        DEFAULT_UNSECURED_TCP_PORT if spec.unsecured else DEFAULT_SECURE_TCP_PORT
    )
    return http_port, tcp_port


def template_settings(spec: ClusterSpec, index: int) -> Dict[str, SettingValue]:
    """settings.json shipped for this node in the setup package ({} when absent)."""
    tag = tag_for_index(index)
    bundle = spec.bundles.get(tag)
    if bundle is None or not bundle.settings_json.strip():
        return {}
    try:
        parsed = json.loads(bundle.settings_json)
    except ValueError as exc:
        raise SettingsValidationError(
            f"settings.json for node {tag} is not valid JSON: {exc}\n"
            "Please verify ZIP file integrity"
        ) from exc
    if not isinstance(parsed, dict):
        raise SettingsValidationError(f"settings.json for node {tag} must be a JSON object")
    return parsed


def public_urls(spec: ClusterSpec, index: int, template: Dict[str, SettingValue]) -> Tuple[str, str]:
    """
    Public http and tcp URLs for node *index*. The hostname comes from
    PublicServerUrl (secured) or ServerUrl (unsecured) in the node template.
    """
    key = "ServerUrl" if spec.unsecured else "PublicServerUrl"
    raw = template.get(key)
    if not raw:
        raise SettingsValidationError(
            f"'{key}' setting was not found in 'settings.json' file of node "
            f"{tag_for_index(index)}\nPlease verify ZIP file integrity"
        )
    hostname = urlparse(str(raw)).hostname
    if not hostname:
        raise SettingsValidationError(f"'{key}' in settings.json of node {tag_for_index(index)} is not a URL: {raw}")

    http_port, tcp_port = effective_ports(spec)
    default_port = DEFAULT_HTTP_PORT if spec.unsecured else DEFAULT_SECURE_HTTP_PORT
    host = hostname if http_port == default_port else f"{hostname}:{http_port}"
    return f"{spec.scheme}://{host}", f"tcp://{hostname}:{tcp_port}"


def compute_settings(spec: ClusterSpec, index: int) -> Tuple[Dict[str, SettingValue], str]:
    """
    Effective settings.json for node *index* and its public http URL.

    Precedence, lowest first: the node template from the setup package,
    keys computed here, then the caller's overrides.
    """
    template = template_settings(spec, index)
    http_url, tcp_url = public_urls(spec, index, template)
    http_port, tcp_port = effective_ports(spec)

    settings: Dict[str, SettingValue] = dict(template)
    settings.update({
        "ServerUrl": f"{spec.scheme}://0.0.0.0:{http_port}",
        "ServerUrl.Tcp": f"tcp://0.0.0.0:{tcp_port}",
        "PublicServerUrl": http_url,
        "PublicServerUrl.Tcp": tcp_url,
        "License.Path": LICENSE_PATH,
        "Setup.Mode": "None",
    })
    if spec.unsecured:
        settings["Security.UnsecuredAccessAllowed"] = "PublicNetwork"
    else:
        settings["Security.Certificate.Path"] = CERTIFICATE_PATH
        settings["License.Eula.Accepted"] = True

    settings.update(spec.settings)
    return settings, http_url


def render_settings(settings: Dict[str, SettingValue]) -> bytes:
    return json.dumps(settings, indent="\t").encode("utf-8")


def populate_urls(spec: ClusterSpec) -> list[str]:
    """Fill spec.url.urls from the node templates, one entry per host."""
    spec.url.urls = [
        public_urls(spec, index, template_settings(spec, index))[0]
        for index in range(len(spec.hosts))
    ]
    return spec.url.urls
