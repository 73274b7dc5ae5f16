# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/config/loader.py

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from ravenfleet.certs.archive import is_secured, open_setup_zip
from .models import (
    ClusterSpec,
    Database,
    DatabaseToDelete,
    IndexesToDelete,
    Package,
    SettingValue,
    SSHCredential,
    UrlConfig,
)

log = logging.getLogger("ravenfleet")

SECRETS_ENV = "RAVENFLEET_SECRETS_FILE"


class SSHConfig(BaseModel):
    user: str
    pem_file: Optional[Path] = None
    pem: Optional[str] = None
    port: int = 22

    @model_validator(mode="after")
    def _one_key_source(self) -> "SSHConfig":
        if not self.pem and self.pem_file is None:
            raise ValueError("ssh needs either 'pem' or 'pem_file'")
        return self


class ClusterConfigFile(BaseModel):
    """
    On-disk shape of a cluster definition. File references are relative to
    the YAML file. The setup package is mandatory: node settings and public
    URLs come from it, in both security modes.
    """

    hosts: List[str]
    package: Package
    url: UrlConfig = Field(default_factory=UrlConfig)
    ssh: SSHConfig
    setup_zip: Path
    settings: Dict[str, SettingValue] = Field(default_factory=dict)
    assets: Dict[str, Path] = Field(default_factory=dict)
    healthcheck_database: str = ""
    databases: List[Database] = Field(default_factory=list)
    databases_to_delete: List[DatabaseToDelete] = Field(default_factory=list)
    indexes_to_delete: List[IndexesToDelete] = Field(default_factory=list)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml:

    1. RAVENFLEET_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the cluster config
    """
    env = os.environ.get(SECRETS_ENV)
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, skipping", SECRETS_ENV, env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def _resolve(base_dir: Path, ref: Path) -> Path:
    ref = ref.expanduser()
    return ref if ref.is_absolute() else base_dir / ref


def build_spec(cfg: ClusterConfigFile, base_dir: Path) -> ClusterSpec:
    """Read every file the config points at and assemble a ClusterSpec."""
    zip_path = _resolve(base_dir, cfg.setup_zip)
    log.debug("Reading setup package %s", zip_path)
    bundles = open_setup_zip(zip_path)

    if cfg.ssh.pem:
        pem = cfg.ssh.pem.encode("utf-8")
    else:
        pem = _resolve(base_dir, cfg.ssh.pem_file).read_bytes()

    assets = {
        remote: _resolve(base_dir, local).read_bytes()
        for remote, local in cfg.assets.items()
    }

    return ClusterSpec(
        hosts=cfg.hosts,
        package=cfg.package,
        url=cfg.url,
        ssh=SSHCredential(user=cfg.ssh.user, pem=pem, port=cfg.ssh.port),
        unsecured=not is_secured(bundles),
        bundles=bundles,
        settings=cfg.settings,
        assets=assets,
        healthcheck_database=cfg.healthcheck_database,
        databases=cfg.databases,
        databases_to_delete=cfg.databases_to_delete,
        indexes_to_delete=cfg.indexes_to_delete,
    )


def load_config(path: str | Path) -> ClusterSpec:
    """
    Load and validate a cluster definition.

    Secrets are injected via two methods (both can be used together):

    **Method 1: secrets.yaml file**
        A ``secrets.yaml`` whose structure mirrors the cluster config is
        deep-merged into it before validation. Discovery order:
          1. ``RAVENFLEET_SECRETS_FILE`` env var → explicit path
          2. ``secrets.yaml`` next to the cluster config file

    **Method 2: environment variables**
        Use ``${ENV_VAR}`` placeholders directly inside the config (or
        secrets.yaml).  ``os.path.expandvars`` resolves them at load time.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        secrets = _load_yaml(secrets_path)
        _deep_merge(data, secrets)
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    cfg = ClusterConfigFile.model_validate(data)
    return build_spec(cfg, path.parent)
