# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/config/models.py
from __future__ import annotations

import json
from typing import Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ravenfleet.tags import MAX_NODES, tag_for_index

# Key of the bundle holding the admin client certificate and the license.
STORE_BUNDLE = "store"

# Values found in settings.json. They are normalized to str when read back
# from a node (see normalize_settings).
SettingValue = Union[bool, int, float, str]


def normalize_settings(settings: Dict[str, object]) -> Dict[str, str]:
    """
    Coerce every settings value to its string form. Lossy on purpose: the
    read-back view only needs to compare and display values.
    """
    out: Dict[str, str] = {}
    for key, value in settings.items():
        if isinstance(value, bool):
            out[str(key)] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            out[str(key)] = json.dumps(value)
        elif value is None:
            out[str(key)] = ""
        else:
            out[str(key)] = str(value)
    return out


class Package(BaseModel):
    version: str
    arch: str = "amd64"


class UrlConfig(BaseModel):
    urls: List[str] = Field(default_factory=list)
    http_port: int = 0
    tcp_port: int = 0


class SSHCredential(BaseModel):
    user: str
    pem: bytes
    port: int = 22


class CertificateHolder(BaseModel):
    """
    Certificate/key/settings/license material for one node tag, or for the
    shared admin identity under STORE_BUNDLE.
    """

    model_config = ConfigDict(frozen=True)

    pfx: bytes = b""
    cert: bytes = b""
    key: bytes = b""
    settings_json: bytes = b""
    license: bytes = b""

    def merge(self, other: "CertificateHolder") -> "CertificateHolder":
        """Field-wise concatenation, used when an archive repeats a file kind."""
        return CertificateHolder(
            pfx=self.pfx + other.pfx,
            cert=self.cert + other.cert,
            key=self.key + other.key,
            settings_json=self.settings_json + other.settings_json,
            license=self.license + other.license,
        )

    def is_empty(self) -> bool:
        return not (self.pfx or self.cert or self.key or self.settings_json or self.license)


class Index(BaseModel):
    name: str
    maps: List[str] = Field(default_factory=list)
    reduce: str = ""
    configuration: Dict[str, str] = Field(default_factory=dict)

    @field_validator("configuration", mode="before")
    @classmethod
    def _stringify_configuration(cls, v):
        if v is None:
            return {}
        return {str(k): str(val) for k, val in dict(v).items()}


class Database(BaseModel):
    name: str
    settings: Dict[str, str] = Field(default_factory=dict)
    replication_nodes: List[str] = Field(default_factory=lambda: ["A"])
    key: str = ""
    indexes: List[Index] = Field(default_factory=list)

    @field_validator("replication_nodes", mode="before")
    @classmethod
    def _default_nodes(cls, v):
        return v or ["A"]

    @property
    def encrypted(self) -> bool:
        return bool(self.key.strip())


class DatabaseToDelete(BaseModel):
    name: str
    hard_delete: bool = False


class IndexesToDelete(BaseModel):
    database_name: str
    index_names: List[str] = Field(default_factory=list)


class ClusterSpec(BaseModel):
    """
    Desired state for one provisioning/reconciliation call.

    Host position decides the node tag (see tag_for_index); url.urls, once
    populated, lines up with hosts one to one.
    """

    hosts: List[str]
    package: Package
    url: UrlConfig = Field(default_factory=UrlConfig)
    ssh: SSHCredential
    unsecured: bool = False
    bundles: Dict[str, CertificateHolder] = Field(default_factory=dict)
    settings: Dict[str, SettingValue] = Field(default_factory=dict)
    assets: Dict[str, bytes] = Field(default_factory=dict)
    healthcheck_database: str = ""
    databases: List[Database] = Field(default_factory=list)
    databases_to_delete: List[DatabaseToDelete] = Field(default_factory=list)
    indexes_to_delete: List[IndexesToDelete] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shape(self) -> "ClusterSpec":
        if len(self.hosts) > MAX_NODES:
            raise ValueError(f"at most {MAX_NODES} hosts are supported, got {len(self.hosts)}")
        if self.url.urls and len(self.url.urls) != len(self.hosts):
            raise ValueError(
                f"url list has {len(self.url.urls)} entries but there are {len(self.hosts)} hosts"
            )
        if self.unsecured:
            for db in self.databases:
                if db.encrypted:
                    raise ValueError(
                        f"database '{db.name}': encryption key can be used only in secured mode"
                    )
        for path in self.assets:
            if not path.startswith("/"):
                raise ValueError(f"asset path must be absolute: {path}")
        return self

    @property
    def scheme(self) -> str:
        return "http" if self.unsecured else "https"

    def node_bundle(self, index: int) -> CertificateHolder | None:
        return self.bundles.get(tag_for_index(index))

    def store_bundle(self) -> CertificateHolder | None:
        return self.bundles.get(STORE_BUNDLE)
