"""
Simulation Kernels
==================

Monte Carlo building blocks for the power simulation:

- generate_sim_data / fill_sim_data: paired |Normal| samples, one column per side
- calc_symmetry / calc_symmetry_into: same-subject minus paired-subject contrast
- estimate_power: number of significant groups under a one-sample t-test
"""

import numpy as np
from scipy import stats

from .errors import DimensionMismatch
from .symmetry_functions import as_metric


ALPHA = 0.05
NATIVE_DRAW_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def generate_sim_data(rng, xdist, ydist, samples, dtype=None):
    """
    Draw ``samples`` paired measurements

    Parameters:
    -----------
    rng : numpy.random.Generator or None
        Random source (None uses a fresh default generator)
    xdist, ydist : frozen distribution
        Anything with ``mean()`` and ``std()``, e.g. ``scipy.stats.norm(1, 0.1)``
    samples : int
        Number of rows
    dtype : numpy dtype, optional
        Defaults to float64

    Returns:
    --------
    stor : array (samples x 2)
        Column 0 holds x, column 1 holds y; all values are non-negative
    """
    if dtype is None:
        dtype = np.float64
    # Column-major so each side is one contiguous block
    stor = np.empty((samples, 2), dtype=dtype, order='F')
    return fill_sim_data(rng, stor, xdist, ydist)


def fill_sim_data(rng, stor, xdist, ydist):
    """Refill ``stor`` in place with |Normal| draws and return it"""
    if stor.ndim != 2 or stor.shape[1] != 2:
        raise DimensionMismatch(stor.shape, f"expected 2 columns; got shape {stor.shape}")
    if not np.issubdtype(stor.dtype, np.floating):
        raise ValueError(f"Simulated data needs a floating-point buffer, got {stor.dtype}")
    if rng is None:
        rng = np.random.default_rng()

    for col, dist in ((stor[:, 0], xdist), (stor[:, 1], ydist)):
        _randn_kernel(rng, col, dist.mean(), dist.std())

    return stor


def _randn_kernel(rng, arr, mu, sigma):
    # The generator only draws float32 and float64; other widths are cast
    if arr.dtype not in NATIVE_DRAW_DTYPES:
        arr[:] = rng.standard_normal(arr.shape[0])
    elif arr.flags.c_contiguous:
        rng.standard_normal(dtype=arr.dtype, out=arr)
    else:
        arr[:] = rng.standard_normal(arr.shape[0], dtype=arr.dtype)
    arr *= arr.dtype.type(sigma)
    arr += arr.dtype.type(mu)
    np.abs(arr, out=arr)


def calc_symmetry(metric, stor, length=None):
    """
    Evaluate a symmetry contrast over simulated pairs

    res[i] = metric(x[i], x[i+1]) - metric(x[i], y[i]); the last element
    wraps around to x[0].

    Parameters:
    -----------
    metric : SymmetryMetric, class or name
    stor : array (N x 2)
        Simulated data from generate_sim_data
    length : int, optional
        Number of rows to use (default: all rows)

    Returns:
    --------
    res : 1-D array of ``length`` scores
    """
    if stor.ndim != 2 or stor.shape[1] != 2:
        ncols = stor.shape[1] if stor.ndim == 2 else stor.ndim
        raise DimensionMismatch(ncols, f"expected 2 columns; got {ncols}")
    if length is None:
        length = stor.shape[0]
    if length > stor.shape[0]:
        raise DimensionMismatch(length, f"`length` must be <= {stor.shape[0]}; got {length}")

    res = np.empty(length, dtype=stor.dtype)
    return calc_symmetry_into(res, metric, stor, length)


def calc_symmetry_into(res, metric, stor, length):
    """Write the contrast for the first ``length`` rows of ``stor`` into ``res``"""
    metric = as_metric(metric)
    if length == 0:
        return res

    x = stor[:length, 0]
    y = stor[:length, 1]

    head = res[:length - 1]
    head[:] = metric(x[:-1], x[1:])
    head -= metric(x[:-1], y[:-1])

    last = x[length - 1]
    res[length - 1] = metric(last, x[0]) - metric(last, y[length - 1])

    return res


def estimate_power(res, n, samples, alpha=ALPHA):
    """
    Count significant groups of scores

    The first ``n*samples`` scores are split into ``samples`` contiguous
    groups of ``n``. Each group gets a one-sample t-test against a zero
    mean; groups with a two-sided p-value <= ``alpha`` are counted.

    Returns the raw count, not the fraction ``count / samples``.
    """
    if n < 1:
        raise ValueError(f"Group size must be positive, got {n}")
    full_n = n * samples
    if full_n > len(res):
        raise DimensionMismatch(full_n, f"need {full_n} scores, got {len(res)}")
    if n == 1:
        # A single score has no sample variance, so no group can be significant
        return 0

    groups = np.asarray(res[:full_n], dtype=np.float64).reshape(samples, n)
    with np.errstate(divide='ignore', invalid='ignore'):
        pvalues = stats.ttest_1samp(groups, 0.0, axis=1).pvalue

    return int(np.count_nonzero(pvalues <= alpha))


def simulate_power(metric, xdist, ydist, n, samples, rng=None, dtype=None):
    """Generate data, evaluate ``metric`` and estimate power in one call"""
    stor = generate_sim_data(rng, xdist, ydist, n * samples, dtype=dtype)
    res = calc_symmetry(metric, stor)
    return estimate_power(res, n, samples)


def estimate_power_from_buffer(metric, stor, n, samples):
    res = calc_symmetry(metric, stor, n * samples)
    return estimate_power(res, n, samples)


def estimate_power_into(res, metric, stor, n, samples):
    """Same as estimate_power_from_buffer but reuses the score buffer ``res``"""
    full_n = n * samples
    calc_symmetry_into(res, metric, stor, full_n)
    return estimate_power(res, n, samples)
