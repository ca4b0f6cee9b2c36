#!/usr/bin/env python3
"""
batch.py - Balance many independent contact maps in parallel.

Each job (one per chromosome or resolution) is self-contained, so jobs
run in separate workers without any shared state.
"""

import logging
import os
import platform
import traceback
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Any, Dict, Mapping, Optional, Tuple

from tqdm import tqdm

from .config import BalanceConfig
from .rescale import scale_to_vector
from .scaling import ScalingResult, scale

logger = logging.getLogger(__name__)

# Detect Apple Silicon for worker optimization.
IS_APPLE_SILICON = (platform.system() == 'Darwin' and
                    platform.machine() == 'arm64')


def get_optimal_workers(workers: int = -1) -> int:
    """
    Determine the number of worker processes/threads.

    Parameters
    ----------
    workers : int, optional
        Requested number of workers (-1 for auto-detection).

    Returns
    -------
    int
        Number of workers.
    """
    if workers > 0:
        return workers

    cpu_count = os.cpu_count() or 4

    # Too many workers slow Apple Silicon down
    if IS_APPLE_SILICON:
        return max(min(cpu_count - 1, 4), 1)

    return cpu_count


def _scale_job(
    key: str,
    contacts: Any,
    target: Any,
    config: BalanceConfig,
    normalize: bool
) -> ScalingResult:
    if normalize:
        return scale_to_vector(contacts, target, key=key, config=config)
    return scale(contacts, target, key=key, config=config)


def scale_many(
    jobs: Mapping[str, Tuple[Any, Any]],
    config: Optional[BalanceConfig] = None,
    workers: int = -1,
    use_processes: bool = False,
    normalize: bool = True,
    show_progress: bool = False
) -> Dict[str, ScalingResult]:
    """
    Balance several contact maps in parallel.

    Parameters
    ----------
    jobs : Mapping[str, Tuple[Any, Any]]
        ``key -> (contacts, target)``.
    config : BalanceConfig, optional
        Solver configuration shared by all jobs.
    workers : int, optional
        Number of workers (-1 for auto-detection).
    use_processes : bool, optional
        Use processes (True) or threads (False).
    normalize : bool, optional
        Return normalization vectors (True) or raw scaling vectors (False).
    show_progress : bool, optional
        Show a progress bar.

    Returns
    -------
    Dict[str, ScalingResult]
        Results in the order of `jobs`.

    Raises
    ------
    Exception
        Whatever a job raised on malformed input, after logging it.
    """
    config = config or BalanceConfig()
    n_workers = min(get_optimal_workers(workers), max(len(jobs), 1))
    executor_class = (ProcessPoolExecutor if use_processes
                      else ThreadPoolExecutor)

    logger.info(f"Balancing {len(jobs)} contact maps with {n_workers} workers")

    results: Dict[str, ScalingResult] = {}
    with executor_class(max_workers=n_workers) as executor:
        futures = {
            executor.submit(_scale_job, key, contacts, target, config, normalize): key
            for key, (contacts, target) in jobs.items()
        }
        for future in tqdm(as_completed(futures), total=len(futures),
                           desc="Balancing", disable=not show_progress):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as e:
                logger.error(f"Error balancing {key}: {e}")
                logger.debug(traceback.format_exc())
                raise

    failed = [key for key, result in results.items() if not result.success]
    if failed:
        logger.warning(f"No normalization vector for {len(failed)} of "
                       f"{len(jobs)} maps: {', '.join(failed)}")
    return {key: results[key] for key in jobs}
