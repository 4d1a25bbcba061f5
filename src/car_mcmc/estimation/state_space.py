"""連続時間自己回帰過程の状態空間モデル

過程の次数ごとに異なる実装を持てるよう、尤度計算の機能をProtocolで定義し、
CAR(1)（Ornstein-Uhlenbeck過程）をその実装として提供する。

CAR(1)過程:
    dx(t) = -ω x(t) dt + σ dW(t)

パラメータベクトル θ = (σ, measerr_scale, log ω)
"""

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from car_mcmc.core.exceptions import InvalidInputError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.kalman_filter import (
    KalmanFilterResult,
    car1_kalman_filter,
    car1_smoother,
    transition_coefficients,
)


class ProcessModel(Protocol):
    """状態空間尤度のプロトコル（過程の次数ごとに実装する）"""

    @property
    def time_series(self) -> TimeSeries: ...
    @property
    def parameter_dimension(self) -> int: ...
    @property
    def parameter_names(self) -> list[str]: ...
    def log_likelihood(self, theta: np.ndarray) -> float: ...
    def kalman_filter(self, theta: np.ndarray) -> KalmanFilterResult: ...


@dataclass(frozen=True)
class CAR1Parameters:
    """θベクトルを展開したCAR(1)パラメータ

    Attributes:
        sigma: 駆動ノイズの振幅 σ
        measerr_scale: 測定誤差分散のスケール係数
        omega: 緩和率 ω（緩和時間の逆数）
    """

    sigma: float
    measerr_scale: float
    omega: float

    @classmethod
    def from_theta(cls, theta: np.ndarray) -> "CAR1Parameters":
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (CAR1Process.N_PARAMS,):
            msg = f"thetaは({CAR1Process.N_PARAMS},)が必要 (got {theta.shape})"
            raise InvalidInputError(msg)
        return cls(sigma=float(theta[0]), measerr_scale=float(theta[1]), omega=float(np.exp(theta[2])))

    def to_theta(self) -> np.ndarray:
        return np.array([self.sigma, self.measerr_scale, np.log(self.omega)])

    @property
    def tau(self) -> float:
        """緩和時間 1/ω"""
        return 1.0 / self.omega

    @property
    def stationary_variance(self) -> float:
        """定常分散 σ² / (2ω)"""
        return self.sigma**2 / (2.0 * self.omega)

    @property
    def stationary_stdev(self) -> float:
        return float(np.sqrt(self.stationary_variance))

    def is_finite(self) -> bool:
        return bool(np.isfinite(self.sigma) and np.isfinite(self.measerr_scale) and np.isfinite(self.omega))


class CAR1Process:
    """1次の連続時間自己回帰過程

    時系列データを保持し、θに対する厳密なガウス対数尤度を
    Kalmanフィルタで計算する。構築後は読み取り専用。
    """

    N_PARAMS: int = 3
    PARAMETER_NAMES: tuple[str, ...] = ("sigma", "measerr_scale", "log_omega")

    def __init__(self, time_series: TimeSeries) -> None:
        self._ts = time_series

    @property
    def time_series(self) -> TimeSeries:
        return self._ts

    @property
    def parameter_dimension(self) -> int:
        return self.N_PARAMS

    @property
    def parameter_names(self) -> list[str]:
        return list(self.PARAMETER_NAMES)

    def kalman_filter(self, theta: np.ndarray) -> KalmanFilterResult:
        """θに対するKalmanフィルタを実行する

        Args:
            theta: パラメータベクトル (σ, measerr_scale, log ω)

        Returns:
            KalmanFilterResult
        """
        p = CAR1Parameters.from_theta(theta)
        ts = self._ts
        return car1_kalman_filter(
            ts.time,
            ts.value,
            ts.measurement_variance,
            sigma=p.sigma,
            omega=p.omega,
            measerr_scale=p.measerr_scale,
        )

    def log_likelihood(self, theta: np.ndarray) -> float:
        """対数尤度を計算する

        σ ≤ 0、ω ≤ 0、負のスケール、非有限値の場合は -inf を返す。
        """
        p = CAR1Parameters.from_theta(theta)
        if not p.is_finite() or p.sigma <= 0.0 or p.omega <= 0.0 or p.measerr_scale < 0.0:
            return -np.inf
        ll = self.kalman_filter(theta).log_likelihood
        if not np.isfinite(ll):
            return -np.inf
        return ll

    def predict(self, theta: np.ndarray, time: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """任意の時刻における過程の条件付き平均と分散を計算する

        全観測で条件付けた（補間・外挿）測定誤差を含まない過程値の分布を返す。
        平均には時系列から除去した平均値を戻す。

        Args:
            theta: パラメータベクトル
            time: 予測時刻 (m,)

        Returns:
            (mean, variance) のタプル、各 (m,)
        """
        p = CAR1Parameters.from_theta(theta)
        query = np.atleast_1d(np.asarray(time, dtype=np.float64))
        if query.ndim != 1 or not np.all(np.isfinite(query)):
            raise InvalidInputError("予測時刻は有限値の1次元配列が必要")

        ts = self._ts
        n_obs = ts.n
        grid = np.concatenate([ts.time, query])
        values = np.concatenate([ts.value, np.zeros(query.size)])
        variances = np.concatenate([ts.measurement_variance, np.zeros(query.size)])
        observed = np.concatenate([np.ones(n_obs, dtype=bool), np.zeros(query.size, dtype=bool)])

        # 同一時刻では観測点を先に置く
        order = np.lexsort((~observed, grid))
        mean, var = car1_smoother(
            grid[order],
            values[order],
            variances[order],
            observed[order],
            sigma=p.sigma,
            omega=p.omega,
            measerr_scale=p.measerr_scale,
        )

        inverse = np.empty_like(order)
        inverse[order] = np.arange(order.size)
        query_idx = inverse[n_obs:]
        return mean[query_idx] + ts.mean, var[query_idx]

    @staticmethod
    def power_spectrum(theta: np.ndarray, freq: np.ndarray) -> np.ndarray:
        """CAR(1)過程のパワースペクトル密度

        P(f) = σ² / (ω² + (2πf)²)
        """
        p = CAR1Parameters.from_theta(theta)
        f = np.asarray(freq, dtype=np.float64)
        result: np.ndarray = p.sigma**2 / (p.omega**2 + (2.0 * np.pi * f) ** 2)
        return result

    @staticmethod
    def simulate(theta: np.ndarray, time: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """厳密な遷移分布を用いてCAR(1)過程をシミュレートする

        初期値は定常分布から生成する。測定誤差は含まない。

        Args:
            theta: パラメータベクトル
            time: 時刻 (n,)。非減少。
            rng: NumPy乱数生成器

        Returns:
            過程の値 (n,)
        """
        p = CAR1Parameters.from_theta(theta)
        t = np.asarray(time, dtype=np.float64)
        if t.ndim != 1 or t.size == 0 or np.any(np.diff(t) < 0.0):
            raise InvalidInputError("timeは空でない非減少の1次元配列が必要")

        a, q = transition_coefficients(np.diff(t), p.omega, p.stationary_variance)
        shocks = rng.standard_normal(t.size)

        x = np.empty(t.size)
        x[0] = p.stationary_stdev * shocks[0]
        for i in range(1, t.size):
            x[i] = a[i - 1] * x[i - 1] + np.sqrt(q[i - 1]) * shocks[i]
        return x
