# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/state/models.py
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ravenfleet.certs.hashing import encryption_key_hash
from ravenfleet.config.models import CertificateHolder, Database, DatabaseToDelete, IndexesToDelete


@dataclass
class NodeState:
    """What was found on one host. Rebuilt on every read."""

    host: str
    settings: Dict[str, str] = field(default_factory=dict)
    assets: Dict[str, bytes] = field(default_factory=dict)
    bundles: Dict[str, CertificateHolder] = field(default_factory=dict)
    license: bytes = b""
    version: str = ""
    unsecured: bool = False
    failed: bool = False
    databases: List[Database] = field(default_factory=list)
    databases_to_delete: List[DatabaseToDelete] = field(default_factory=list)
    indexes_to_delete: List[IndexesToDelete] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        databases = []
        for db in self.databases:
            entry = db.model_dump(exclude={"key"})
            if db.encrypted:
                entry["key"] = encryption_key_hash(db.key)
            databases.append(entry)

        return {
            "host": self.host,
            "failed": self.failed,
            "unsecured": self.unsecured,
            "version": self.version,
            "license": base64.b64encode(self.license).decode("ascii") if self.license else "",
            "settings": dict(sorted(self.settings.items())),
            "assets": {name: len(content) for name, content in sorted(self.assets.items())},
            "certificates": sorted(self.bundles),
            "databases": databases,
            "databases_to_delete": [d.model_dump() for d in self.databases_to_delete],
            "indexes_to_delete": [i.model_dump() for i in self.indexes_to_delete],
        }
