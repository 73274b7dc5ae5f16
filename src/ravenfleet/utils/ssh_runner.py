# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/utils/ssh_runner.py
from __future__ import annotations

import logging
import posixpath
import shlex
import threading
from typing import List, Optional, Sequence, Tuple

import paramiko

from ravenfleet.errors import DeployError
from ravenfleet.utils.transcript import Transcript

log = logging.getLogger("ravenfleet")

SERVICE_USER = "ravendb"

# scp sink replies: 0 = ok, 1 = warning, 2 = fatal
_SCP_ERROR_CODES = (b"\x01", b"\x02")


class SSHRunner:
    """
    One SSH connection to one host, owned by a single host task.

    Every command runs on its own channel; commands and their combined output
    are appended to ``transcript``.
    """

    def __init__(self, client: paramiko.SSHClient, *, host: str = "", transcript: Optional[Transcript] = None):
        self.client = client
        self.host = host
        self.transcript = transcript or Transcript(host)

    # ------------------ low level ------------------

    def _exec(self, cmd: str, timeout: Optional[float] = None) -> Tuple[int, bytes, bytes]:
        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
        out = stdout.read()
        err = stderr.read()
        rc = stdout.channel.recv_exit_status()
        return rc, out, err

    def run(self, cmd: str, *, timeout: Optional[float] = None) -> tuple[int, str, str]:
        rc, out, err = self._exec(cmd, timeout=timeout)
        return rc, out.decode("utf-8", errors="replace"), err.decode("utf-8", errors="replace")

    # ------------------ command sequences ------------------

    def run_sequence(self, commands: Sequence[str], on_failure_rerun: str = "") -> str:
        """
        Run *commands* in order. The first non-zero exit stops the sequence:
        *on_failure_rerun* (if any) is executed once to capture diagnostics,
        then DeployError is raised with the transcript.
        """
        self.transcript.line(self.host)
        for cmd in commands:
            self.transcript.line(f"$ {cmd}")
            rc, out, err = self._exec(cmd)
            self.transcript.write(out)
            self.transcript.write(err)
            if rc != 0:
                log.debug("[%s] command failed (rc=%d): %s", self.host, rc, cmd)
                if on_failure_rerun:
                    self.transcript.line(f"$ {on_failure_rerun}")
                    _, dout, derr = self._exec(on_failure_rerun)
                    self.transcript.write(dout)
                    self.transcript.write(derr)
                raise DeployError(
                    f"command '{cmd}' exited with status {rc} on {self.host}",
                    self.transcript.text(),
                )
        return self.transcript.text()

    # ------------------ files ------------------

    def upload(self, destination: str, content: bytes) -> None:
        """
        Copy *content* to *destination* with the scp sink protocol, then hand
        the file to the service user.
        """
        scp_cmd = f"sudo scp -t {shlex.quote(destination)}"
        self.transcript.line(scp_cmd)
        try:
            stdin, stdout, stderr = self.client.exec_command(scp_cmd)
        except (OSError, paramiko.SSHException) as exc:
            raise DeployError(f"unable to start scp to {destination}: {exc}", self.transcript.text()) from exc

        pump_errors: List[BaseException] = []

        def pump() -> None:
            try:
                header = f"C0660 {len(content)} {posixpath.basename(destination) or 'file'}\n"
                self.transcript.write(header)
                stdin.write(header.encode("utf-8"))
                stdin.write(content)
                stdin.write(b"\x00")
                stdin.flush()
            except (OSError, paramiko.SSHException) as exc:
                pump_errors.append(exc)
            finally:
                stdin.channel.shutdown_write()

        pumper = threading.Thread(target=pump, name=f"scp-{self.host}", daemon=True)
        pumper.start()
        out = stdout.read()
        err = stderr.read()
        rc = stdout.channel.recv_exit_status()
        pumper.join()

        self.transcript.write(err)
        if pump_errors:
            raise DeployError(pump_errors[0], self.transcript.text())
        if rc != 0 or any(code in out for code in _SCP_ERROR_CODES):
            self.transcript.write(out.lstrip(b"\x00"))
            raise DeployError(
                f"scp to {destination} failed with status {rc}",
                self.transcript.text(),
            )

        chown = f"sudo chown {SERVICE_USER}:{SERVICE_USER} {shlex.quote(destination)}"
        self.transcript.line(chown)
        rc, cout, cerr = self._exec(chown)
        self.transcript.write(cout)
        self.transcript.write(cerr)
        if rc != 0:
            raise DeployError(f"failed to change ownership of {destination}", self.transcript.text())

    def copy_to_absolute_path(self, path: str, content: bytes) -> None:
        parent = posixpath.dirname(path)
        if parent and parent != "/":
            self.run_sequence([f"sudo mkdir -p {shlex.quote(parent)}"])
        self.upload(path, content)

    def list_files(self, directory: str) -> List[str]:
        """Regular files directly under *directory* (not recursive)."""
        cmd = f"sudo find '{directory}' -maxdepth 1 -type f"
        self.transcript.line(cmd)
        rc, out, err = self._exec(cmd)
        if rc != 0:
            self.transcript.write(out)
            self.transcript.write(err)
            raise DeployError(f"unable to list {directory}", self.transcript.text())
        return [line for line in out.decode("utf-8", errors="replace").splitlines() if line.strip()]

    def read_file(self, path: str) -> bytes:
        cmd = f"sudo cat {shlex.quote(path)}"
        self.transcript.line(cmd)
        rc, out, err = self._exec(cmd)
        if rc != 0:
            self.transcript.write(out)
            self.transcript.write(err)
            raise DeployError(f"unable to read {path}", self.transcript.text())
        return out

    # ------------------ lifecycle ------------------

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SSHRunner":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
