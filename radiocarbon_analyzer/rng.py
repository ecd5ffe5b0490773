"""Re-export central RNG from radiocarbon_analyzer.core.seeding."""

from __future__ import annotations

from radiocarbon_analyzer.core.seeding import (
    SALT_DEMO,
    SALT_MODEL_TEST,
    SALT_PERM_TEST,
    SALT_SP_PERM_TEST,
    SEED_ROOT_VERSION,
    rng_for,
    rng_from_seed,
    run_key_from_seed,
    seed_root,
)

__all__ = [
    "SEED_ROOT_VERSION",
    "SALT_DEMO",
    "SALT_MODEL_TEST",
    "SALT_PERM_TEST",
    "SALT_SP_PERM_TEST",
    "rng_for",
    "rng_from_seed",
    "run_key_from_seed",
    "seed_root",
]
