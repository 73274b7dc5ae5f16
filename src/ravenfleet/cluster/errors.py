# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/cluster/errors.py
from __future__ import annotations

from typing import Optional

from ravenfleet.errors import RavenFleetError


class AdminOperationError(RavenFleetError):
    """An administrative call to the cluster failed."""

    def __init__(self, message: str, *, status: Optional[int] = None, type_name: Optional[str] = None):
        self.status = status
        self.type_name = type_name
        super().__init__(message)


class NoLeaderError(AdminOperationError):
    """The cluster has not elected a leader yet."""


class AllNodesDownError(AdminOperationError):
    """None of the known node URLs answered."""


class DatabaseDoesNotExistError(AdminOperationError):
    pass


class ConcurrencyError(AdminOperationError):
    pass


class TopologyMissingError(AdminOperationError):
    """A database collided on create but its topology cannot be read."""


def is_transient(exc: BaseException) -> bool:
    """Cluster-formation races worth waiting out."""
    return isinstance(exc, (NoLeaderError, AllNodesDownError))


def is_already_exists(exc: BaseException) -> bool:
    return "already exists" in str(exc)
