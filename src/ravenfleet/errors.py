# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/errors.py
from __future__ import annotations

from typing import Iterable, List

UNREACHABLE_MARKER = "Unable to SSH to"


class RavenFleetError(RuntimeError):
    """Base class for provisioning failures."""


class UnreachableError(RavenFleetError):
    """Host did not accept an SSH connection within the retry budget."""

    def __init__(self, host_and_port: str, cause: BaseException | str):
        self.host_and_port = host_and_port
        super().__init__(f"{UNREACHABLE_MARKER} {host_and_port} because {cause}")


def is_unreachable(exc: BaseException) -> bool:
    return isinstance(exc, UnreachableError) or UNREACHABLE_MARKER in str(exc)


class DeployError(RavenFleetError):
    """
    A remote command or upload failed.

    ``output`` holds the session transcript captured up to the failure.
    """

    def __init__(self, cause: BaseException | str, output: str):
        self.cause = cause
        self.output = output
        super().__init__(f"{cause} with output:\n{output}")


class MultiError(RavenFleetError):
    """Aggregate of per-host failures collected during a fan-out."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors: List[BaseException] = list(errors)
        lines = [f"{len(self.errors)} error(s) occurred:"]
        lines += [f"\t* {err}" for err in self.errors]
        super().__init__("\n".join(lines))


class PackageError(RavenFleetError):
    """Server package URL could not be verified."""


class SettingsValidationError(RavenFleetError):
    """A required key is missing from a node settings.json."""


class SettingsParseError(RavenFleetError):
    """settings.json read back from a node is not valid JSON."""


class DnsMismatchError(RavenFleetError):
    """Public hostname does not resolve to the host being deployed."""


class MissingCredentialsError(RavenFleetError):
    """The shared admin bundle is absent from the setup archive."""


class AuthenticationError(RavenFleetError):
    """The host rejected the deploy credential. Not retried."""

    def __init__(self, host_and_port: str, cause: BaseException | str):
        self.host_and_port = host_and_port
        super().__init__(f"SSH authentication to {host_and_port} failed: {cause}")
