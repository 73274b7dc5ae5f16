# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/utils/transcript.py
from __future__ import annotations

import threading


class Transcript:
    """
    Append-only session log shared by one host task.

    The scp stdin pump and the control session write from different threads,
    so every append takes the lock.
    """

    def __init__(self, host: str = ""):
        self.host = host
        self._buf = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            self._buf.extend(data)
        return len(data)

    def line(self, text: str) -> None:
        self.write(text if text.endswith("\n") else text + "\n")

    def text(self) -> str:
        with self._lock:
            return self._buf.decode("utf-8", errors="replace")
