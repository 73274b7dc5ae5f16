# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/certs/archive.py
from __future__ import annotations

import logging
import posixpath
import zipfile
from pathlib import Path
from typing import BinaryIO, Dict, Union

from ravenfleet.config.models import STORE_BUNDLE, CertificateHolder

log = logging.getLogger("ravenfleet")


def classify(name: str, data: bytes) -> CertificateHolder:
    """Place one archive file into the bundle field its name implies."""
    ext = posixpath.splitext(name)[1].lower()
    if ext == ".pfx":
        return CertificateHolder(pfx=data)
    if ext == ".crt":
        return CertificateHolder(cert=data)
    if ext == ".key":
        return CertificateHolder(key=data)
    if ext == ".json":
        if posixpath.basename(name) == "license.json":
            return CertificateHolder(license=data)
        return CertificateHolder(settings_json=data)
    return CertificateHolder()


def open_setup_zip(source: Union[str, Path, BinaryIO]) -> Dict[str, CertificateHolder]:
    """
    Read a cluster setup package.

    Loose files at the archive root belong to the shared bundle
    (STORE_BUNDLE); files under ``<TAG>/`` belong to node TAG. When a bundle
    sees the same kind of file twice the bytes are appended.
    """
    bundles: Dict[str, CertificateHolder] = {}
    with zipfile.ZipFile(source) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            parts = info.filename.split("/")
            owner = STORE_BUNDLE if len(parts) == 1 else parts[0]
            piece = classify(info.filename, archive.read(info))
            current = bundles.get(owner, CertificateHolder())
            bundles[owner] = current.merge(piece)
    log.debug("setup package bundles: %s", ", ".join(sorted(bundles)))
    return bundles


def is_secured(bundles: Dict[str, CertificateHolder]) -> bool:
    """A setup package is secured when its shared bundle carries a pfx."""
    store = bundles.get(STORE_BUNDLE)
    return bool(store and store.pfx)
