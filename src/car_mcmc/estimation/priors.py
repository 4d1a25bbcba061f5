"""CAR(1)パラメータの事前分布

データから導出した範囲に制限された事前分布を定義する。

- 定常標準偏差 σ/√(2ω): (0, max_stdev] 上の一様分布
- 緩和率 ω: [min_freq, max_freq] 上の対数一様分布（log ω について一様）
- 測定誤差スケール: 自由度50のスケール逆χ²分布を許容帯域で切断

いずれも範囲内で正規化されている。範囲外は -inf を返し、例外は投げない。
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any

import numpy as np
import scipy.stats

from car_mcmc.core.exceptions import ParameterValidationError
from car_mcmc.estimation.state_space import CAR1Parameters


class DistributionType(Enum):
    """事前分布の種類"""

    UNIFORM = "uniform"
    LOG_UNIFORM = "log_uniform"
    SCALED_INV_CHI2 = "scaled_inv_chi2"


@dataclass(frozen=True)
class ParameterPrior:
    """閉区間 [lower_bound, upper_bound] に切断された単一パラメータの事前分布

    Attributes:
        name: パラメータ名
        dist_type: 分布の種類
        lower_bound: 下限値
        upper_bound: 上限値
        dof: 自由度（SCALED_INV_CHI2のみ）
        scale: スケール（SCALED_INV_CHI2のみ）
    """

    name: str
    dist_type: DistributionType
    lower_bound: float
    upper_bound: float
    dof: float = 1.0
    scale: float = 1.0

    def __post_init__(self) -> None:
        if not self.lower_bound < self.upper_bound:
            msg = f"{self.name}: lower_bound < upper_bound が必要 (got {self.lower_bound}, {self.upper_bound})"
            raise ParameterValidationError(msg)

    @cached_property
    def _dist(self) -> Any:
        """scipy frozen分布オブジェクト"""
        match self.dist_type:
            case DistributionType.UNIFORM:
                return scipy.stats.uniform(loc=self.lower_bound, scale=self.upper_bound - self.lower_bound)
            case DistributionType.LOG_UNIFORM:
                return scipy.stats.loguniform(self.lower_bound, self.upper_bound)
            case DistributionType.SCALED_INV_CHI2:
                return scipy.stats.invgamma(self.dof / 2.0, scale=self.dof * self.scale**2 / 2.0)

    @cached_property
    def _log_mass(self) -> float:
        """区間内の確率質量の対数（切断分布の正規化定数）"""
        mass = float(self._dist.cdf(self.upper_bound) - self._dist.cdf(self.lower_bound))
        return float(np.log(mass))

    def contains(self, value: float) -> bool:
        return bool(self.lower_bound <= value <= self.upper_bound)

    def log_pdf(self, value: float) -> float:
        """切断分布の対数確率密度を計算する

        Args:
            value: パラメータの値

        Returns:
            対数確率密度。範囲外の場合は -inf
        """
        if not self.contains(value):
            return -np.inf
        lp = float(self._dist.logpdf(value)) - self._log_mass
        if not np.isfinite(lp):
            return -np.inf
        return lp

    def sample(self, rng: np.random.Generator, size: int = 1) -> np.ndarray:
        """切断分布からサンプルを生成する（逆CDF法）"""
        lo = float(self._dist.cdf(self.lower_bound))
        hi = float(self._dist.cdf(self.upper_bound))
        u = rng.uniform(lo, hi, size=size)
        samples = np.asarray(self._dist.ppf(u), dtype=np.float64)
        clipped: np.ndarray = np.clip(samples, self.lower_bound, self.upper_bound)
        return clipped


@dataclass(frozen=True)
class PriorConfig:
    """事前分布の範囲設定

    Attributes:
        max_freq: ω の上限（時間単位の逆数）
        min_freq_span_factor: ω の下限を 1/(factor × 観測期間) とする係数
        measerr_scale_bounds: 測定誤差スケールの許容帯域
        measerr_dof: 測定誤差スケール事前分布の自由度
    """

    max_freq: float = 10.0
    min_freq_span_factor: float = 10.0
    measerr_scale_bounds: tuple[float, float] = field(default=(0.5, 2.0))
    measerr_dof: float = 50.0

    def __post_init__(self) -> None:
        if self.max_freq <= 0.0:
            raise ParameterValidationError(f"max_freqは正が必要 (got {self.max_freq})")
        if self.min_freq_span_factor <= 0.0:
            raise ParameterValidationError(f"min_freq_span_factorは正が必要 (got {self.min_freq_span_factor})")
        lo, hi = self.measerr_scale_bounds
        if not 0.0 < lo < 1.0 < hi:
            msg = f"measerr_scale_boundsは 0 < lower < 1 < upper が必要 (got {self.measerr_scale_bounds})"
            raise ParameterValidationError(msg)
        if self.measerr_dof <= 0.0:
            raise ParameterValidationError(f"measerr_dofは正が必要 (got {self.measerr_dof})")


class CAR1Prior:
    """CAR(1)パラメータベクトルの事前分布

    Attributes:
        max_stdev: 定常標準偏差の上限
        min_freq: ω の下限
        max_freq: ω の上限
        priors: 定常標準偏差・ω・測定誤差スケールの ParameterPrior
    """

    def __init__(self, max_stdev: float, min_freq: float, max_freq: float, config: PriorConfig) -> None:
        if not np.isfinite(max_stdev) or max_stdev <= 0.0:
            raise ParameterValidationError(f"max_stdevは正の有限値が必要 (got {max_stdev})")
        if not 0.0 < min_freq < max_freq:
            msg = f"0 < min_freq < max_freq が必要 (got {min_freq}, {max_freq})"
            raise ParameterValidationError(msg)

        self.max_stdev = float(max_stdev)
        self.min_freq = float(min_freq)
        self.max_freq = float(max_freq)
        self.config = config
        lo, hi = config.measerr_scale_bounds
        self.priors: list[ParameterPrior] = [
            ParameterPrior(
                name="stdev",
                dist_type=DistributionType.UNIFORM,
                lower_bound=0.0,
                upper_bound=self.max_stdev,
            ),
            ParameterPrior(
                name="omega",
                dist_type=DistributionType.LOG_UNIFORM,
                lower_bound=self.min_freq,
                upper_bound=self.max_freq,
            ),
            ParameterPrior(
                name="measerr_scale",
                dist_type=DistributionType.SCALED_INV_CHI2,
                lower_bound=lo,
                upper_bound=hi,
                dof=config.measerr_dof,
                scale=1.0,
            ),
        ]

    @classmethod
    def from_time_span(
        cls, time_span: float, max_stdev: float, config: PriorConfig | None = None
    ) -> "CAR1Prior":
        """観測期間から ω の範囲を導出して事前分布を構築する"""
        config = config or PriorConfig()
        if time_span <= 0.0:
            raise ParameterValidationError(f"time_spanは正が必要 (got {time_span})")
        min_freq = 1.0 / (config.min_freq_span_factor * time_span)
        return cls(max_stdev, min_freq, config.max_freq, config)

    @property
    def stdev_prior(self) -> ParameterPrior:
        return self.priors[0]

    @property
    def omega_prior(self) -> ParameterPrior:
        return self.priors[1]

    @property
    def measerr_prior(self) -> ParameterPrior:
        return self.priors[2]

    def in_support(self, theta: np.ndarray) -> bool:
        """θが事前分布の台に含まれるか"""
        p = CAR1Parameters.from_theta(theta)
        if not p.is_finite() or p.sigma <= 0.0:
            return False
        return (
            self.omega_prior.contains(p.omega)
            and p.stationary_stdev <= self.max_stdev
            and self.measerr_prior.contains(p.measerr_scale)
        )

    def log_prior(self, theta: np.ndarray) -> float:
        """θ = (σ, measerr_scale, log ω) に対する対数事前確率を計算する

        ヤコビアン:
            log ω について一様 ⇔ ω について対数一様: log p(log ω) = log p(ω) + log ω
            σ | ω: 定常標準偏差 σ/√(2ω) が一様 ⇒ log p(σ|ω) = log p(stdev) - 0.5 log(2ω)

        Returns:
            対数事前確率。台の外では -inf
        """
        if not self.in_support(theta):
            return -np.inf
        p = CAR1Parameters.from_theta(theta)

        lp_omega = self.omega_prior.log_pdf(p.omega) + np.log(p.omega)
        lp_sigma = self.stdev_prior.log_pdf(p.stationary_stdev) - 0.5 * np.log(2.0 * p.omega)
        lp_scale = self.measerr_prior.log_pdf(p.measerr_scale)

        total = float(lp_omega + lp_sigma + lp_scale)
        if not np.isfinite(total):
            return -np.inf
        return total

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        """事前分布からθを生成する"""
        omega = float(self.omega_prior.sample(rng)[0])
        stdev = float(self.stdev_prior.sample(rng)[0])
        measerr_scale = float(self.measerr_prior.sample(rng)[0])
        sigma = max(stdev, 1e-12 * self.max_stdev) * np.sqrt(2.0 * omega)
        return CAR1Parameters(sigma=sigma, measerr_scale=measerr_scale, omega=omega).to_theta()
