"""
Canonical RNG seeding: single deterministic seed root from run_key + component salt.
All stochastic procedures derive randomness via rng_for(run_key, salt, fold_id).
Never use Python's built-in hash() (not stable across processes).

Contract: seed_root versioning
- SEED_ROOT_VERSION is the current version of the hashing scheme (salts, encoding, algorithm).
- If you change hashing scheme, salt set, or encoding, bump SEED_ROOT_VERSION.
- Simulation chunks use fold_id=<chunk index> so results do not depend on the worker count.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Union

import numpy as np

# Version of seed_root derivation; bump when hashing scheme / salt set / encoding changes
SEED_ROOT_VERSION = 1

# Component-scoped salt names (reference these, never string literals)
SALT_MODEL_TEST = "model_test"
SALT_PERM_TEST = "perm_test"
SALT_SP_PERM_TEST = "sp_perm_test"
SALT_DEMO = "demo"


def seed_root(
    run_key: str,
    *,
    salt: str,
    fold_id: Optional[Union[str, int]] = None,
    version: int = SEED_ROOT_VERSION,
) -> int:
    """
    Derive a stable 64-bit unsigned seed from run_key and component salt.
    Same (run_key, salt, fold_id, version) yields the same seed across process runs.
    Uses SHA-256 (never Python hash()). fold_id is normalized to str and prefixed with "fold:".
    """
    if fold_id is not None:
        fold_normalized = f"fold:{str(fold_id)}"
        salt_effective = f"{salt}|{fold_normalized}"
    else:
        salt_effective = salt
    payload = f"{run_key}|{salt_effective}|{version}".encode("utf-8")
    digest = hashlib.sha256(payload).digest()
    seed = int.from_bytes(digest[:8], byteorder="big")
    return seed % (2**63)


def rng_for(
    run_key: str,
    salt: str,
    fold_id: Optional[Union[str, int]] = None,
    version: int = SEED_ROOT_VERSION,
) -> np.random.Generator:
    """Return a numpy Generator seeded from seed_root(run_key, salt=salt, fold_id=fold_id, version=version)."""
    seed = seed_root(run_key, salt=salt, fold_id=fold_id, version=version)
    return np.random.default_rng(seed)


def rng_from_seed(seed: Optional[int]) -> np.random.Generator:
    """
    Build a Generator from an explicit seed.
    If seed is None, returns a non-deterministic generator.
    """
    if seed is not None:
        return np.random.default_rng(seed)
    return np.random.default_rng()


def run_key_from_seed(seed: Optional[int]) -> str:
    """Run key used when callers pass a plain integer seed (CLI --seed)."""
    return f"seed:{seed}" if seed is not None else f"seed:{np.random.SeedSequence().entropy}"


__all__ = [
    "SEED_ROOT_VERSION",
    "seed_root",
    "rng_for",
    "rng_from_seed",
    "run_key_from_seed",
    "SALT_DEMO",
    "SALT_MODEL_TEST",
    "SALT_PERM_TEST",
    "SALT_SP_PERM_TEST",
]
