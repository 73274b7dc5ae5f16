# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/certs/hashing.py
from __future__ import annotations

import secrets

from argon2.low_level import Type, hash_secret_raw

ARGON_MEMORY_KIB = 64 * 1024
ARGON_ITERATIONS = 4
ARGON_PARALLELISM = 4
ARGON_SALT_LENGTH = 16
ARGON_KEY_LENGTH = 32


def encryption_key_hash(plain_text: str) -> str:
    """
    One-way argon2id digest of a database encryption key, safe to print or
    store in read-back state. The salt is random, so digests of the same key
    differ between calls.
    """
    salt = secrets.token_bytes(ARGON_SALT_LENGTH)
    digest = hash_secret_raw(
        secret=plain_text.encode("utf-8"),
        salt=salt,
        time_cost=ARGON_ITERATIONS,
        memory_cost=ARGON_MEMORY_KIB,
        parallelism=ARGON_PARALLELISM,
        hash_len=ARGON_KEY_LENGTH,
        type=Type.ID,
    )
    return digest.hex()
