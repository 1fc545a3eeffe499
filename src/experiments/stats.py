"""
Significance statistics for two-variant experiments.

Welch's t-test works directly from running count/mean/variance, so it can
be computed from Welford aggregates without the samples.
"""

from dataclasses import dataclass
from typing import Any, Dict
import math

_EPS = 3.0e-14
_TINY = 1.0e-300
_MAX_ITER = 300


@dataclass(frozen=True)
class WelchResult:
    """Outcome of a Welch two-sample t-test"""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "t_statistic": self.t_statistic,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
        }


def _beta_continued_fraction(a: float, b: float, x: float) -> float:
    """Continued fraction for the incomplete beta (modified Lentz)."""
    qab = a + b
    qap = a + 1.0
    qam = a - 1.0
    c = 1.0
    d = 1.0 - qab * x / qap
    if abs(d) < _TINY:
        d = _TINY
    d = 1.0 / d
    h = d

    for m in range(1, _MAX_ITER + 1):
        m2 = 2 * m
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = 1.0 + aa * d
        if abs(d) < _TINY:
            d = _TINY
        c = 1.0 + aa / c
        if abs(c) < _TINY:
            c = _TINY
        d = 1.0 / d
        h *= d * c

        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = 1.0 + aa * d
        if abs(d) < _TINY:
            d = _TINY
        c = 1.0 + aa / c
        if abs(c) < _TINY:
            c = _TINY
        d = 1.0 / d
        delta = d * c
        h *= delta
        if abs(delta - 1.0) < _EPS:
            break

    return h


def regularized_incomplete_beta(a: float, b: float, x: float) -> float:
    """
    I_x(a, b) for a, b > 0 and x in [0, 1].

    Raises:
        ValueError: x outside [0, 1] or non-positive shape parameters
    """
    if a <= 0 or b <= 0:
        raise ValueError("Shape parameters must be positive")
    if x < 0.0 or x > 1.0:
        raise ValueError(f"x must be in [0, 1], got {x}")
    if x == 0.0 or x == 1.0:
        return x

    log_front = (
        math.lgamma(a + b) - math.lgamma(a) - math.lgamma(b)
        + a * math.log(x) + b * math.log1p(-x)
    )
    front = math.exp(log_front)

    # Continued fraction converges fastest on this side of the mean
    if x < (a + 1.0) / (a + b + 2.0):
        return front * _beta_continued_fraction(a, b, x) / a
    return 1.0 - front * _beta_continued_fraction(b, a, 1.0 - x) / b


def student_t_two_sided_p(t: float, df: float) -> float:
    """Two-sided p-value of Student's t with (possibly fractional) df"""
    if math.isinf(t):
        return 0.0
    if df <= 0:
        return 1.0
    x = df / (df + t * t)
    return max(0.0, min(1.0, regularized_incomplete_beta(df / 2.0, 0.5, x)))


def welch_t_test(
    mean_a: float, var_a: float, n_a: int,
    mean_b: float, var_b: float, n_b: int,
) -> WelchResult:
    """
    Welch's unequal-variance t-test, B relative to A.

    Fewer than two samples on either side gives t=0, p=1. Zero variance on
    both sides gives p=1 for equal means and p=0 otherwise.
    """
    if n_a < 2 or n_b < 2:
        return WelchResult(0.0, 0.0, 1.0)

    se_a = var_a / n_a
    se_b = var_b / n_b
    se_sq = se_a + se_b
    diff = mean_b - mean_a

    if se_sq <= 0.0:
        if diff == 0.0:
            return WelchResult(0.0, float(n_a + n_b - 2), 1.0)
        return WelchResult(math.copysign(math.inf, diff), float(n_a + n_b - 2), 0.0)

    t = diff / math.sqrt(se_sq)
    df = se_sq ** 2 / (se_a ** 2 / (n_a - 1) + se_b ** 2 / (n_b - 1))

    return WelchResult(t, df, student_t_two_sided_p(t, df))


def cohens_d(
    mean_a: float, var_a: float, n_a: int,
    mean_b: float, var_b: float, n_b: int,
) -> float:
    """Cohen's d of B relative to A with pooled standard deviation"""
    if n_a + n_b <= 2:
        return 0.0
    pooled_var = ((n_a - 1) * var_a + (n_b - 1) * var_b) / (n_a + n_b - 2)
    if pooled_var <= 0.0:
        return 0.0
    return (mean_b - mean_a) / math.sqrt(pooled_var)
