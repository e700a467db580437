"""
Streaming mean, variance and correlation of (E_sym, E_asym) samples.

Welford's update keeps the running sums numerically stable over long runs;
no samples are stored.
"""

import csv
import io
import math
from dataclasses import dataclass

STATISTICS_COLUMNS = [
    "n",
    "mean_sym", "variance_sym",
    "mean_asym", "variance_asym",
    "covariance", "rho",
]


@dataclass(frozen=True)
class StatisticsSnapshot:
    n: int
    mean_sym: float
    variance_sym: float
    mean_asym: float
    variance_asym: float
    covariance: float
    rho: float


class OnlineStatistics:
    """
    Welford accumulator for paired samples.

    Variances and covariance are sample estimates (n - 1 denominator) and are
    0 until two samples have been seen.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.n = 0
        self.mean_sym = 0.0
        self.mean_asym = 0.0
        self._m2_sym = 0.0
        self._m2_asym = 0.0
        self._c_xy = 0.0

    def update(self, e_sym: float, e_asym: float) -> None:
        self.n += 1
        dx = e_sym - self.mean_sym
        self.mean_sym += dx / self.n
        dy = e_asym - self.mean_asym
        self.mean_asym += dy / self.n
        # Second factors use the updated means
        self._m2_sym += dx * (e_sym - self.mean_sym)
        self._m2_asym += dy * (e_asym - self.mean_asym)
        self._c_xy += dx * (e_asym - self.mean_asym)

    @property
    def variance_sym(self) -> float:
        return self._m2_sym / (self.n - 1) if self.n > 1 else 0.0

    @property
    def variance_asym(self) -> float:
        return self._m2_asym / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std_sym(self) -> float:
        return math.sqrt(self.variance_sym)

    @property
    def std_asym(self) -> float:
        return math.sqrt(self.variance_asym)

    @property
    def covariance(self) -> float:
        return self._c_xy / (self.n - 1) if self.n > 1 else 0.0

    @property
    def correlation(self) -> float:
        """Pearson rho(E_sym, E_asym); 0 when either series is constant."""
        denom = math.sqrt(self._m2_sym * self._m2_asym)
        if denom == 0:
            return 0.0
        return max(-1.0, min(1.0, self._c_xy / denom))

    def snapshot(self) -> StatisticsSnapshot:
        return StatisticsSnapshot(
            n=self.n,
            mean_sym=self.mean_sym,
            variance_sym=self.variance_sym,
            mean_asym=self.mean_asym,
            variance_asym=self.variance_asym,
            covariance=self.covariance,
            rho=self.correlation,
        )

    def to_csv(self) -> str:
        s = self.snapshot()
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(STATISTICS_COLUMNS)
        writer.writerow([s.n, s.mean_sym, s.variance_sym, s.mean_asym, s.variance_asym, s.covariance, s.rho])
        return buffer.getvalue()
