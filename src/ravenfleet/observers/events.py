# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "run_id": run_id or str(uuid.uuid4()),
    }


# ---------------------------------------------------------------------
# Host lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostDeployStarted(BaseEvent):
    host: str
    tag: str

@dataclass(frozen=True)
class HostDeploySucceeded(BaseEvent):
    host: str
    tag: str
    http_url: str

@dataclass(frozen=True)
class HostDeployFailed(BaseEvent):
    host: str
    tag: str
    error: str

@dataclass(frozen=True)
class HostPurged(BaseEvent):
    host: str
    ok: bool
    error: Optional[str] = None

@dataclass(frozen=True)
class NodeStateRead(BaseEvent):
    host: str
    failed: bool
    version: str = ""


# ---------------------------------------------------------------------
# Cluster reconciliation
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ReconcilePhaseStarted(BaseEvent):
    phase: str

@dataclass(frozen=True)
class DatabaseCreated(BaseEvent):
    name: str
    encrypted: bool
    replication_factor: int

@dataclass(frozen=True)
class DatabaseModified(BaseEvent):
    name: str
    removed_from: List[str]
    added_to: List[str]

@dataclass(frozen=True)
class ClusterNodeChanged(BaseEvent):
    url: str
    tag: str
    action: str       # "added" | "removed"
