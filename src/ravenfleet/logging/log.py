# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from ravenfleet.utils.transcript import Transcript

LOGGER_NAME = "ravenfleet"

# paramiko logs every channel open at INFO; urllib3 every connection.
THIRD_PARTY_LOGGERS = ("paramiko", "urllib3")


def _quiet_third_party(file_handler: logging.Handler) -> None:
    for name in THIRD_PARTY_LOGGERS:
        lib = logging.getLogger(name)
        lib.setLevel(logging.WARNING)
        lib.handlers = [h for h in lib.handlers if not isinstance(h, logging.FileHandler)]
        lib.addHandler(file_handler)
        lib.propagate = False


def init_logging(
    *,
    base_dir: Path | None = None,
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    One run = one log file under ~/.ravenfleet/logs.

    The file gets everything at DEBUG, including the per-host SSH
    transcripts; the console gets INFO (DEBUG with --verbose).
    paramiko/urllib3 warnings are kept, and only go to the file.
    Returns (logger, run_id, log_path); run_id is shared with the observers.
    """
    run_id = str(uuid.uuid4())

    if base_dir is None:
        base_dir = Path.home() / ".ravenfleet" / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{LOGGER_NAME}-{ts}-{run_id}.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)
    _quiet_third_party(fh)

    logger.info("=== ravenfleet run started ===")
    logger.info("run_id=%s", run_id)
    logger.info("log_file=%s", log_path)

    return logger, run_id, log_path


def flush_transcript(transcript: Transcript) -> None:
    """Write a host's SSH transcript to the run log at DEBUG, one record per line."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.isEnabledFor(logging.DEBUG):
        return
    for line in transcript.text().splitlines():
        logger.debug("[%s] %s", transcript.host, line)
