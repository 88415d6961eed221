"""
Worker pool dispatch and per-task random streams for simulation runs
"""

from __future__ import annotations

import os
import warnings
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

T = TypeVar("T")
R = TypeVar("R")

SeedLike = Union[int, np.random.SeedSequence, None]


def resolve_n_jobs(n_jobs: Optional[int]) -> int:
    """Translate user-provided n_jobs into an actual worker count."""
    if n_jobs is None or n_jobs == 0:
        return 1
    if n_jobs < 0:
        cpu = os.cpu_count() or 1
        # -1 -> cpu, -2 -> cpu-1
        return max(1, cpu + 1 + n_jobs)
    return max(1, int(n_jobs))


def as_seed_sequence(seed: SeedLike) -> np.random.SeedSequence:
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


def child_seed(parent: np.random.SeedSequence, *index: int) -> np.random.SeedSequence:
    """Seed for a task addressed by index, independent of scheduling order.

    Unlike SeedSequence.spawn this does not advance the parent, so the same
    (parent, index) pair always yields the same stream.
    """
    key: Tuple[int, ...] = tuple(parent.spawn_key) + tuple(int(i) for i in index)
    return np.random.SeedSequence(parent.entropy, spawn_key=key, pool_size=parent.pool_size)


def map_tasks(
    func: Callable[[T], R],
    tasks: Sequence[T],
    n_jobs: Optional[int] = 1,
) -> List[R]:
    """Apply func to every task, preserving task order in the output.

    Uses a process pool when more than one worker is requested and falls back
    to threads where processes are not permitted.
    """
    workers = min(resolve_n_jobs(n_jobs), len(tasks)) or 1
    if workers <= 1:
        return [func(task) for task in tasks]

    chunksize = max(1, len(tasks) // (workers * 4))
    try:
        with ProcessPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(func, tasks, chunksize=chunksize))
    except (PermissionError, NotImplementedError, OSError):
        # Worker threads share the process-wide warning filters; restore them
        # here once the pool is drained.
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with ThreadPoolExecutor(max_workers=workers) as executor:
                return list(executor.map(func, tasks))
