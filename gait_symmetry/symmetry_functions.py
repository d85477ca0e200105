"""
Symmetry Functions
==================

Directional gait-symmetry indices between paired measurements (x, y),
originally the left and right limbs. Every index has an exact inverse, so a
score under one index can be converted into the score under another.

All formulas are written with numpy ufuncs: the same call works on scalars
and on whole columns of simulated data.
"""

import math

import numpy as np
from scipy.optimize import brentq

from .errors import DomainError


SQRT2 = math.sqrt(2.0)


def promote(x, y):
    """
    Promote two numeric arguments to their common numpy dtype

    Scalars come back as numpy scalars, anything else as arrays.
    """
    dtype = np.result_type(x, y)
    if np.ndim(x) == 0 and np.ndim(y) == 0:
        return dtype.type(x), dtype.type(y)
    return np.asarray(x, dtype=dtype), np.asarray(y, dtype=dtype)


class SymmetryMetric:
    """
    A symmetry index ``f(x, y) -> score``

    Calling an instance promotes ``x`` and ``y`` to a common dtype and
    forwards any trailing arguments to ``apply``. ``inverse(s, baseline)``
    returns a pair ``(baseline, y)`` that reproduces ``s``.
    """

    name = None
    alias = None

    def __call__(self, x, y, *args, **kwargs):
        x, y = promote(x, y)
        return self.apply(x, y, *args, **kwargs)

    def apply(self, x, y):
        raise NotImplementedError

    def inverse(self, s, baseline=1):
        raise NotImplementedError

    def _params(self):
        return ()

    def __eq__(self, other):
        return type(self) is type(other) and self._params() == other._params()

    def __hash__(self):
        return hash((type(self), self._params()))

    def __repr__(self):
        args = ', '.join(repr(p) for p in self._params())
        return f"{type(self).__name__}({args})"


class Ratio(SymmetryMetric):
    """
    y/x

    R. Seliktar and J. Mizrahi, "Some Gait Characteristics of Below-Knee
    Amputees and Their Reflection on the Ground Reaction Forces,"
    Engineering in Medicine, vol. 15, no. 1, pp. 27-34, 1986.
    """

    name = 'ratio'
    alias = 'Sel86'

    def apply(self, x, y):
        return y / x

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        return baseline, s / baseline


class DifferencePercent(SymmetryMetric):
    """
    (y - x)/(0.5*(x + y))*100%

    R. O. Robinson, W. Herzog, and B. M. Nigg, "Use of force platform
    variables to quantify the effects of chiropractic manipulation on gait
    symmetry," J Manipulative Physiol Ther, vol. 10, no. 4, pp. 172-176, 1987.

    DifferencePercent()(2., 2.2) is 9.5238...; inverting it with a
    baseline of 2 gives back (2.0, 2.1999999999999997).
    """

    name = 'difference_percent'
    alias = 'Rob87'

    def apply(self, x, y):
        return (y - x) / (x + y) * 200

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        y = -baseline * (s + 200) / (s - 200)
        return baseline, y


class MaxNormalizedPercent(SymmetryMetric):
    """
    (y - x)/max(x, y)*100%

    G. Vagenas and B. Hoshizaki, "A Multivariable Analysis of Lower
    Extremity Kinematic Asymmetry in Running," Journal of Applied
    Biomechanics, vol. 8, no. 1, pp. 11-29, 1992.
    """

    name = 'max_normalized_percent'
    alias = 'Vag92'

    def apply(self, x, y):
        return (y - x) / np.maximum(x, y) * 100

    def inverse(self, s, baseline=1):
        """
        Two roots are possible depending on which side is the maximum;
        the one that reproduces ``s`` is returned.
        """
        s, baseline = promote(s, baseline)
        with np.errstate(divide='ignore', invalid='ignore'):
            y_xmax = baseline * (1 + s / 100)
            y_ymax = baseline / (1 - s / 100)
            candidates = []
            for y in (y_xmax, y_ymax):
                err = abs(self.apply(baseline, y) - s)
                candidates.append((np.inf if np.isnan(err) else err, y))

        err, y = min(candidates, key=lambda c: c[0])
        if not np.isclose(s + err, s):
            # Unreachable for scores produced by apply()
            raise DomainError(s, "no possible x/y pair found")

        return baseline, y


class LogRatio(SymmetryMetric):
    """
    ln(y/x), multiplied by 100% by default

    M. Plotnik, N. Giladi, Y. Balash, C. Peretz, and J. M. Hausdorff, "Is
    freezing of gait in Parkinson's disease related to asymmetric motor
    function?," Ann Neurol., vol. 57, no. 5, pp. 656-663, 2005.

    The index is used for its magnitude: ``absolute`` is the usual entry
    point and ``inverse`` only accepts non-negative scores, so conversions
    out of this index keep the magnitude but not the direction.

    Parameters:
    -----------
    scaled : bool
        Multiply by 100 (default True). ``apply`` and ``inverse`` accept a
        ``scaled`` keyword that overrides the instance setting.
    """

    name = 'log_ratio'
    alias = 'Plo05'

    def __init__(self, scaled=True):
        self.scaled = scaled

    def _params(self):
        return (self.scaled,) if not self.scaled else ()

    def apply(self, x, y, scaled=None):
        if scaled is None:
            scaled = self.scaled
        ga = np.log(y / x)
        if scaled:
            ga = ga * 100
        return ga

    def absolute(self, x, y, **kwargs):
        return np.abs(self(x, y, **kwargs))

    def inverse(self, s, baseline=1, scaled=None):
        if scaled is None:
            scaled = self.scaled
        s, baseline = promote(s, baseline)
        if np.signbit(s):
            raise DomainError(s, "log_ratio only produces positive values")

        if scaled:
            y = baseline * np.exp(s / 100)
        else:
            y = baseline * np.exp(s)
        return baseline, y


class SymmetryAngle(SymmetryMetric):
    """
    ((45° - arctan(x/y))/90°)*100%

    When ``45° - arctan(x/y) > 90°`` the angle is brought back by 180°. The
    comparison is strict, so an angle of exactly 90° (x = -y, y > 0) scores
    +100.

    R. A. Zifchock, I. Davis, J. Higginson, and T. Royer, "The symmetry
    angle: A novel, robust method of quantifying asymmetry," Gait & Posture,
    vol. 27, no. 4, pp. 622-627, 2008.
    """

    name = 'symmetry_angle'
    alias = 'Zif08'

    def apply(self, x, y):
        # Radians keep the 90° boundary exact (pi/4 + pi/4 == pi/2)
        a = np.pi / 4 - np.arctan2(x, y)
        a = np.where(a > np.pi / 2, a - np.pi, a)
        return a / np.pi * 200

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        a = s / 200 * np.pi
        return baseline, baseline / np.tan(np.pi / 4 - a)


class PlainDifference(SymmetryMetric):
    """
    y - x

    L. Rochester, B. Galna, S. Lord, and D. Burn, "The nature of dual-task
    interference during gait in incident Parkinson's disease,"
    Neuroscience, vol. 265, pp. 83-94, 2014.
    """

    name = 'plain_difference'
    alias = 'Roc14'

    def apply(self, x, y):
        return y - x

    def absolute(self, x, y):
        return np.abs(self(x, y))

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        return baseline, s + baseline


class NormalizedDifference(SymmetryMetric):
    """
    (y - x)/(max(0, x, y) - min(0, x, y))

    R. Queen, L. Dickerson, S. Ranganathan, and D. Schmitt, "A novel method
    for measuring asymmetry in kinematic and kinetic variables: The
    normalized symmetry index," J Biomech, vol. 99, p. 109531, 2020.
    """

    name = 'normalized_difference'
    alias = 'Que20'

    def apply(self, x, y):
        hi = np.maximum(np.maximum(0, x), y)
        lo = np.minimum(np.minimum(0, x), y)
        return (y - x) / (hi - lo)

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        if s >= 1 or s < -1:
            raise DomainError(s, "normalized_difference scores lie in [-1, 1)")

        if s > 0:
            y = -baseline / (s - 1)
        else:
            y = s * baseline + baseline
        return baseline, y


class EuclideanNormalized(SymmetryMetric):
    """
    (y - x)/sqrt(2*(x^2 + y^2))

    A trailing ``sigma`` argument applies the noise weighting of
    ``WeightedEuclideanNormalized``.

    S. A. Alves, R. M. Ehrig, P. C. Raffalt, A. Bender, G. N. Duda, and
    A. N. Agres, "Quantifying Asymmetry in Gait: The Weighted Universal
    Symmetry Index to Evaluate 3D Ground Reaction Forces," Frontiers Bioeng
    Biotechnology, vol. 8, p. 579511, 2020.
    """

    name = 'euclidean_normalized'
    alias = 'Alv20'

    def apply(self, x, y, sigma=None):
        s = (y - x) / np.hypot(SQRT2 * x, SQRT2 * y)
        if sigma is not None:
            s = s * (1 - SQRT2 * sigma / np.sqrt(2 * sigma**2 + x**2 + y**2))
        return s

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        if abs(s) > 1 or 2 * s * s == 1:
            raise DomainError(s, "no finite x/y pair for this score")

        y = -baseline * (2 * s * np.sqrt(1 - s * s) + 1) / (2 * s * s - 1)
        return baseline, y


class WeightedEuclideanNormalized(EuclideanNormalized):
    """
    Euclidean-normalized index weighted by a fixed noise scale ``sigma``

    The weighting has no closed-form inverse; ``inverse`` solves for y
    numerically with Brent's method. Only positive baselines are supported.
    """

    name = 'weighted_euclidean_normalized'
    alias = 'Alv20b'

    def __init__(self, sigma):
        self.sigma = sigma

    def _params(self):
        return (self.sigma,)

    def apply(self, x, y, sigma=None):
        if sigma is None:
            sigma = self.sigma
        return super().apply(x, y, sigma)

    def inverse(self, s, baseline=1):
        s, baseline = promote(s, baseline)
        if self.sigma == 0:
            return super().inverse(s, baseline)
        if baseline <= 0:
            raise DomainError(baseline, "weighted inverse needs a positive baseline")
        if s == 0:
            return baseline, baseline

        b = float(baseline)
        target = float(s)

        def residual(y):
            return float(self.apply(b, y)) - target

        with np.errstate(over='ignore', invalid='ignore'):
            if target > 0:
                lo, hi = b, 2 * b
                for _ in range(64):
                    if residual(hi) > 0:
                        break
                    lo, hi = hi, hi * 2
                else:
                    raise DomainError(s, "score is above the reachable range")
            else:
                lo, hi = 0.0, b
                if residual(lo) > 0:
                    raise DomainError(s, "score is below the reachable range")

        y = brentq(residual, lo, hi, xtol=1e-15, maxiter=200)
        return baseline, type(baseline)(y)


# Paper-citation names
Sel86 = Ratio
Rob87 = DifferencePercent
Vag92 = MaxNormalizedPercent
Plo05 = LogRatio
Zif08 = SymmetryAngle
Roc14 = PlainDifference
Que20 = NormalizedDifference
Alv20 = EuclideanNormalized
Alv20b = WeightedEuclideanNormalized

SYMMETRY_METRICS = {
    cls.name: cls
    for cls in (Ratio, DifferencePercent, MaxNormalizedPercent, LogRatio,
                SymmetryAngle, PlainDifference, NormalizedDifference,
                EuclideanNormalized, WeightedEuclideanNormalized)
}


def metric_class(name):
    """Look up a metric class by its short name or paper alias"""
    for cls in SYMMETRY_METRICS.values():
        if name == cls.name or name == cls.alias:
            return cls
    raise KeyError(
        f"Unknown symmetry metric {name!r}; expected one of {sorted(SYMMETRY_METRICS)}"
    )


def get_metric(name, **params):
    """
    Instantiate a symmetry metric by its short name or paper alias

    >>> get_metric('weighted_euclidean_normalized', sigma=0.1)
    WeightedEuclideanNormalized(0.1)
    """
    return metric_class(name)(**params)


def as_metric(metric, sigma=None):
    """
    Normalize a metric given as an instance, a class or a name

    ``sigma`` is only used to build a ``WeightedEuclideanNormalized``.
    """
    if isinstance(metric, SymmetryMetric):
        return metric
    if isinstance(metric, str):
        metric = metric_class(metric)
    if isinstance(metric, type) and issubclass(metric, SymmetryMetric):
        if issubclass(metric, WeightedEuclideanNormalized):
            if sigma is None:
                raise ValueError(f"{metric.__name__} needs a sigma")
            return metric(sigma)
        return metric()
    raise TypeError(f"Not a symmetry metric: {metric!r}")


def convert(target, source, baseline=1):
    """
    Return a function converting a ``source`` score into a ``target`` score

    The score is inverted with ``source`` (x assumed equal to ``baseline``)
    and the resulting pair is evaluated with ``target``.

    Examples:
    ---------
    >>> s = SymmetryAngle()(1., 1.1)
    >>> round(float(convert(DifferencePercent(), SymmetryAngle())(s)), 6)
    9.52381
    """
    target = as_metric(target)
    source = as_metric(source)

    def converter(s):
        return target(*source.inverse(s, baseline))

    return converter


def limits(metric, dtype=np.float64):
    """
    Saturation limits of a metric for a floating dtype

    Combines the smallest normal and the largest finite value of ``dtype``
    in both orders, rounds both scores to 2 decimals and returns them as a
    ``(min, max)`` pair.
    """
    metric = as_metric(metric, sigma=0)
    info = np.finfo(dtype)

    with np.errstate(over='ignore', under='ignore', divide='ignore', invalid='ignore'):
        small_x = metric(info.tiny, info.max)
        small_y = metric(info.max, info.tiny)

    small_x = _round_digits(small_x, 2)
    small_y = _round_digits(small_y, 2)

    return min(small_x, small_y), max(small_x, small_y)


def _round_digits(value, digits):
    # np.round scales by 10**digits first and overflows near finfo.max
    value = float(value)
    if not math.isfinite(value):
        return value
    return round(value, digits)


def reflect(x):
    """
    Mirror a grid of ratios around its first element

    The first half is the reverse of ``x`` inverted, the last half is ``x``;
    the first element of ``x`` occurs once.

    >>> reflect([1., 2., 3.])
    array([0.33333333, 0.5       , 1.        , 2.        , 3.        ])
    """
    x = np.asarray(x)
    return np.concatenate([1 / x[1:][::-1], x])
