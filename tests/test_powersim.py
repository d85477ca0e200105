import numpy as np
import pytest
from scipy import stats

from gait_symmetry import powersim
from gait_symmetry.buffer_pool import BufferPool
from gait_symmetry.powersim import power_sim, sweep_to_frame
from gait_symmetry.simulation import calc_symmetry_into, estimate_power, fill_sim_data
from gait_symmetry.symmetry_functions import (
    Ratio, SymmetryMetric, WeightedEuclideanNormalized,
)


METRICS = [Ratio(), 'symmetry_angle', WeightedEuclideanNormalized]
RATIOS = [1.0, 1.5]
VARIANCES = [0.05, 0.1]
NS = [5, 10]
SAMPLES = 20


class CountingProgress:

    def __init__(self):
        self.total = 0
        self.calls = 0

    def update(self, n):
        self.total += n
        self.calls += 1


class FailingMetric(SymmetryMetric):
    name = 'failing'

    def apply(self, x, y):
        raise RuntimeError("metric failed")


def run(seed=11, **kwargs):
    kwargs.setdefault('workers', 2)
    kwargs.setdefault('progress', False)
    return power_sim(METRICS, RATIOS, VARIANCES, NS, SAMPLES,
                     rng=np.random.default_rng(seed), **kwargs)


def test_result_shape_and_range():
    data = run()
    assert data.shape == (len(NS), len(METRICS), len(RATIOS), len(VARIANCES))
    assert data.dtype == np.float32
    assert np.all(data >= 0)
    assert np.all(data <= SAMPLES)
    assert np.all(data == np.round(data))


def test_float64_results():
    assert run(dtype=np.float64).dtype == np.float64


def test_reproducible_for_any_worker_count():
    np.testing.assert_array_equal(run(workers=1), run(workers=3))
    np.testing.assert_array_equal(run(seed=5), run(seed=5))


def test_strong_asymmetry_is_detected():
    data = run()
    # ratio 1.5 at the lowest noise level, larger group size
    assert data[1, 0, 1, 0] == SAMPLES


def test_null_mode_is_mostly_insignificant():
    data = run(null=True)
    assert data.mean() < 0.3 * SAMPLES


def test_progress_counts_every_sample():
    progress = CountingProgress()
    run(progress=progress)
    expected = len(METRICS) * len(RATIOS) * len(VARIANCES) * sum(NS) * SAMPLES
    assert progress.total == expected
    assert progress.calls == len(METRICS) * len(RATIOS) * len(VARIANCES) * len(NS)


def test_unknown_metric_fails_before_running():
    progress = CountingProgress()
    with pytest.raises(KeyError):
        power_sim(['not_a_metric'], RATIOS, VARIANCES, NS, SAMPLES,
                  progress=progress)
    assert progress.calls == 0


def test_task_error_aborts_sweep():
    with pytest.raises(RuntimeError, match="metric failed"):
        power_sim([FailingMetric()], RATIOS, VARIANCES, NS, SAMPLES,
                  workers=2, progress=False)


def test_rejects_bad_grid():
    with pytest.raises(ValueError):
        power_sim([Ratio()], RATIOS, [0.0], NS, SAMPLES, progress=False)
    with pytest.raises(ValueError):
        power_sim([Ratio()], RATIOS, VARIANCES, [], SAMPLES, progress=False)


WEIGHTED_VARIANCES = [0.05, 0.2]


def test_weighted_metric_uses_cell_variance(monkeypatch):
    seen = []
    real_as_metric = powersim.as_metric

    def recording_as_metric(metric, sigma=None):
        built = real_as_metric(metric, sigma=sigma)
        if isinstance(built, WeightedEuclideanNormalized):
            seen.append(built.sigma)
        return built

    monkeypatch.setattr(powersim, 'as_metric', recording_as_metric)
    power_sim([WeightedEuclideanNormalized], RATIOS, WEIGHTED_VARIANCES, NS, SAMPLES,
              workers=2, progress=False, rng=np.random.default_rng(3))

    task_sigmas = sorted(set(float(s) for s in seen if s != 0))
    assert task_sigmas == [float(np.float32(v)) for v in WEIGHTED_VARIANCES]


def test_weighted_cell_matches_direct_computation():
    ratios = [1.2]
    n, samples = 5, 10
    data = power_sim([WeightedEuclideanNormalized], ratios, WEIGHTED_VARIANCES, [n], samples,
                     workers=2, progress=False, rng=np.random.default_rng(21))

    # one child stream per (variance, ratio) task, variance-major
    children = np.random.default_rng(21).spawn(len(WEIGHTED_VARIANCES) * len(ratios))
    for si, variance in enumerate(WEIGHTED_VARIANCES):
        sigma = np.float32(variance)
        mu = np.float32(ratios[0])
        stor = np.empty((n * samples, 2), dtype=np.float32, order='F')
        fill_sim_data(children[si], stor, stats.norm(1, sigma), stats.norm(mu, mu * sigma))
        res = np.empty(n * samples, dtype=np.float32)
        calc_symmetry_into(res, WeightedEuclideanNormalized(sigma), stor, n * samples)
        assert data[0, 0, 0, si] == estimate_power(res, n, samples)


def test_pools_hold_one_buffer_more_than_workers(monkeypatch):
    sizes = []

    class RecordingPool(BufferPool):
        def __init__(self, size, factory):
            sizes.append(size)
            super().__init__(size, factory)

    monkeypatch.setattr(powersim, 'BufferPool', RecordingPool)
    run(workers=3)
    assert sizes == [4, 4]


def test_single_score_groups_count_zero():
    data = power_sim([Ratio()], RATIOS, VARIANCES, [1, 5], SAMPLES, workers=2,
                     progress=False, rng=np.random.default_rng(4))
    assert np.all(data[0] == 0)


def test_half_precision_sweep():
    data = run(dtype=np.float16)
    assert data.dtype == np.float16
    assert np.all((data >= 0) & (data <= SAMPLES))


def test_rejects_bad_group_size_and_dtype():
    progress = CountingProgress()
    with pytest.raises(ValueError):
        power_sim([Ratio()], RATIOS, VARIANCES, [0, 5], SAMPLES, progress=progress)
    with pytest.raises(ValueError):
        power_sim([Ratio()], RATIOS, VARIANCES, NS, SAMPLES, dtype=np.int32,
                  progress=progress)
    assert progress.calls == 0


def test_tqdm_progress_bar():
    data = power_sim([Ratio()], [1.2], [0.1], [5], 4, workers=1,
                     rng=np.random.default_rng(0))
    assert data.shape == (1, 1, 1, 1)


class TestSweepToFrame:

    def test_long_format(self):
        data = run()
        frame = sweep_to_frame(data, METRICS, RATIOS, VARIANCES, NS, samples=SAMPLES)
        assert list(frame.columns) == ['n', 'metric', 'ratio', 'variance', 'count', 'power']
        assert len(frame) == data.size
        assert set(frame['metric']) == {'ratio', 'symmetry_angle',
                                        'weighted_euclidean_normalized'}
        np.testing.assert_allclose(frame['power'], frame['count'] / SAMPLES)

    def test_cell_order(self):
        data = np.arange(16, dtype=np.float32).reshape(2, 2, 2, 2)
        frame = sweep_to_frame(data, [Ratio(), 'log_ratio'], [1.0, 1.5], [0.05, 0.1], [5, 10])
        row = frame[(frame['n'] == 10) & (frame['metric'] == 'ratio')
                    & (frame['ratio'] == 1.5) & (frame['variance'] == 0.05)]
        assert row['count'].item() == data[1, 0, 1, 0]
        assert 'power' not in frame.columns

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            sweep_to_frame(np.zeros((1, 1, 1, 1)), METRICS, RATIOS, VARIANCES, NS)
