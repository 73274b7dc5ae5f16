# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/tags.py
from __future__ import annotations

import re
import string
from typing import Optional
from urllib.parse import urlparse

MAX_NODES = len(string.ascii_uppercase)

_HOST_TAG = re.compile(r"^[A-Za-z]{1,4}$")


def tag_for_index(index: int) -> str:
    """Host position -> node tag (0 -> 'A', 1 -> 'B', ...)."""
    if index < 0 or index >= MAX_NODES:
        raise ValueError(
            f"node index {index} is outside the single-letter tag range 0..{MAX_NODES - 1}"
        )
    return string.ascii_uppercase[index]


def tag_from_url(node_url: str, fallback: Optional[str] = "") -> Optional[str]:
    """
    Derive a node tag from the first DNS label of *node_url*
    (https://a.cluster.example.com -> 'A'). Labels that are not 1-4 letters
    yield *fallback*.
    """
    hostname = urlparse(node_url).hostname or ""
    label = hostname.split(".")[0]
    if _HOST_TAG.match(label):
        return label.upper()
    return fallback
