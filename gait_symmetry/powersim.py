"""
Power Simulation
================

Sweeps {metric x mean ratio x variance x group size} and estimates how often
each symmetry metric detects a simulated asymmetry.

Work is split into one task per (variance, ratio) pair and run on a thread
pool; the numpy kernels release the GIL, so threads scale on the numeric
work while sharing the result tensor. Every task owns a disjoint
``data[:, :, ratio, variance]`` slice, and sample/score buffers are checked
out of bounded pools instead of being reallocated per task.
"""

import logging
import os
import threading
import time
from multiprocessing.pool import ThreadPool

import numpy as np
import pandas as pd
from scipy import stats
from tqdm import tqdm

from .buffer_pool import BufferPool
from .simulation import calc_symmetry_into, estimate_power, fill_sim_data
from .symmetry_functions import SymmetryMetric, as_metric, metric_class


DEFAULT_DTYPE = np.float32

logger = logging.getLogger(__name__)


def power_sim(metrics, ratios, variances, Ns, samples, dtype=DEFAULT_DTYPE, *,
              null=False, batch=1, workers=None, rng=None, progress=None):
    """
    Estimate detection counts over a parameter grid

    Parameters:
    -----------
    metrics : list
        Metric instances, classes or names. ``WeightedEuclideanNormalized``
        given as a class or name is rebuilt for every variance with
        ``sigma`` equal to that variance.
    ratios : array-like
        Mean ratios mu; y ~ Normal(mu, mu*sigma)
    variances : array-like
        Noise levels sigma; x ~ Normal(1, sigma)
    Ns : list of int
        Group sizes to test
    samples : int
        Number of groups per cell
    dtype : numpy dtype
        Working precision of buffers and result (default float32)
    null : bool
        Draw y from the x distribution (false-positive rate)
    batch : int
        Label for the progress bar
    workers : int, optional
        Thread count (default: CPU count)
    rng : numpy.random.Generator, optional
        Parent generator; every task gets an independent child stream
    progress : object with ``update(n)``, False or None
        Progress sink. None shows a tqdm bar, False disables progress.

    Returns:
    --------
    data : array (len(Ns), len(metrics), len(ratios), len(variances))
        Raw count of significant groups for each cell
    """
    dtype = np.dtype(dtype)
    if not np.issubdtype(dtype, np.floating):
        raise ValueError(f"dtype must be a floating-point type, got {dtype}")
    Ns = [int(n) for n in Ns]
    ratios = np.asarray(ratios, dtype=dtype)
    variances = np.asarray(variances, dtype=dtype)
    if not Ns:
        raise ValueError("Ns must contain at least one group size")
    if min(Ns) < 1:
        raise ValueError(f"Group sizes must be positive, got {Ns}")
    if np.any(variances <= 0):
        raise ValueError(f"Variances must be positive, got {variances}")
    if workers is None:
        workers = os.cpu_count() or 1
    if rng is None:
        rng = np.random.default_rng()

    # Fail on unknown metrics before any work starts
    for metric in metrics:
        as_metric(metric, sigma=dtype.type(0))

    data = np.empty((len(Ns), len(metrics), len(ratios), len(variances)), dtype=dtype)

    full_n = max(Ns) * samples
    respool = BufferPool(workers + 1, lambda: np.empty(full_n, dtype=dtype))
    storpool = BufferPool(workers + 1, lambda: np.empty((full_n, 2), dtype=dtype, order='F'))

    idxs = [(si, i) for si in range(len(variances)) for i in range(len(ratios))]
    task_rngs = rng.spawn(len(idxs))

    total = len(metrics) * len(ratios) * len(variances) * sum(Ns) * samples
    owns_progress = progress is None or progress is False
    if owns_progress:
        progress = tqdm(total=total, desc=f"Batch {batch:>2} progress: ",
                        unit='sample', mininterval=5, disable=progress is False)
    progress_lock = threading.Lock()

    def _task(args):
        (si, i), task_rng = args
        sigma = variances[si]
        xdist = stats.norm(1, sigma)
        mu = ratios[i]
        ydist = xdist if null else stats.norm(mu, mu * sigma)

        with storpool.checkout() as stor:
            fill_sim_data(task_rng, stor, xdist, ydist)
            for mi, spec in enumerate(metrics):
                metric = as_metric(spec, sigma=sigma)

                with respool.checkout() as res:
                    calc_symmetry_into(res, metric, stor, full_n)
                    for ni, n in enumerate(Ns):
                        data[ni, mi, i, si] = estimate_power(res, n, samples)
                        with progress_lock:
                            progress.update(n * samples)
        return si, i

    logger.info("Batch %d: %d tasks on %d workers, %d samples per task",
                batch, len(idxs), workers, full_n)
    start = time.perf_counter()
    try:
        with ThreadPool(processes=workers) as pool:
            for si, i in pool.imap_unordered(_task, zip(idxs, task_rngs)):
                logger.debug("Finished variance=%s ratio=%s", variances[si], ratios[i])
    finally:
        if owns_progress:
            progress.close()
    logger.info("Batch %d finished in %.1f s", batch, time.perf_counter() - start)

    return data


def metric_label(metric):
    if isinstance(metric, SymmetryMetric):
        return metric.name
    if isinstance(metric, str):
        return metric_class(metric).name
    return metric.name


def sweep_to_frame(data, metrics, ratios, variances, Ns, samples=None):
    """
    Flatten a power_sim result into a long DataFrame

    One row per cell with columns n, metric, ratio, variance, count and,
    when ``samples`` is given, power = count / samples.
    """
    expected = (len(Ns), len(metrics), len(ratios), len(variances))
    if data.shape != expected:
        raise ValueError(f"Result shape {data.shape} does not match grid {expected}")

    index = pd.MultiIndex.from_product(
        [list(Ns), [metric_label(m) for m in metrics], list(ratios), list(variances)],
        names=['n', 'metric', 'ratio', 'variance'],
    )
    frame = pd.DataFrame({'count': np.asarray(data).reshape(-1)}, index=index).reset_index()
    if samples:
        frame['power'] = frame['count'] / samples
    return frame
