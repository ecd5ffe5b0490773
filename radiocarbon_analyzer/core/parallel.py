"""
Chunked simulation runner. Each chunk draws from rng_for(run_key, salt, fold_id=chunk index),
so results depend only on (run_key, salt, n_sim, chunk_size) and never on the worker count.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

from .seeding import rng_for

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 25

SimFn = Callable[..., np.ndarray]


def _chunks(n_sim: int, chunk_size: int) -> List[Tuple[int, int]]:
    return [(i, min(chunk_size, n_sim - i * chunk_size)) for i in range((n_sim + chunk_size - 1) // chunk_size)]


def _run_chunk(task: Tuple[SimFn, str, str, int, int, Dict[str, Any]]) -> np.ndarray:
    fn, run_key, salt, chunk_id, n, kwargs = task
    rng = rng_for(run_key, salt, fold_id=chunk_id)
    return fn(rng, n, **kwargs)


def run_simulations(
    fn: SimFn,
    n_sim: int,
    run_key: str,
    salt: str,
    n_workers: int = 1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    **kwargs: Any,
) -> np.ndarray:
    """
    Run fn(rng, n, **kwargs) over chunks totalling n_sim simulations and stack the results along
    axis 0 in chunk order. fn and kwargs must be picklable when n_workers > 1.
    """
    tasks = [(fn, run_key, salt, cid, n, kwargs) for cid, n in _chunks(n_sim, chunk_size)]
    if not tasks:
        return np.empty((0,))
    if n_workers > 1 and len(tasks) > 1:
        try:
            ctx = mp.get_context("spawn")
            with ProcessPoolExecutor(max_workers=min(n_workers, len(tasks)), mp_context=ctx) as ex:
                results = list(ex.map(_run_chunk, tasks))
            return np.concatenate(results, axis=0)
        except (OSError, RuntimeError) as e:
            logger.warning("Parallel simulation failed (%s). Falling back to serial mode.", e)
    return np.concatenate([_run_chunk(t) for t in tasks], axis=0)
