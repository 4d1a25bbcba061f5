"""CAR(1)過程の事後分布

log p(θ|y) = log p(y|θ) + log p(θ) を単一のスカラー関数として提供する。
事前分布の台の外では例外ではなく -inf を返す。
"""

import logging

import numpy as np

from car_mcmc.core.exceptions import EstimationError, ValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.kalman_filter import KalmanFilterResult
from car_mcmc.estimation.priors import CAR1Prior, PriorConfig
from car_mcmc.estimation.state_space import CAR1Parameters, CAR1Process, ProcessModel

logger = logging.getLogger(__name__)


class PosteriorModel:
    """尤度と事前分布を合成した対数事後密度

    log_density は θ の純粋関数であり、サンプラーの状態を持たない。
    現在値とキャッシュされた対数密度はサンプラー（SamplerState）が保持する。

    Attributes:
        process: 状態空間尤度モデル
        prior: CAR(1)事前分布（set_prior() 後に利用可能）
    """

    def __init__(self, process: ProcessModel) -> None:
        self.process = process
        self.prior: CAR1Prior | None = None
        self._last_filter: KalmanFilterResult | None = None

    @classmethod
    def from_time_series(cls, time_series: TimeSeries) -> "PosteriorModel":
        return cls(CAR1Process(time_series))

    @property
    def time_series(self) -> TimeSeries:
        return self.process.time_series

    @property
    def parameter_dimension(self) -> int:
        return self.process.parameter_dimension

    @property
    def parameter_names(self) -> list[str]:
        return self.process.parameter_names

    def set_prior(self, max_stdev: float, config: PriorConfig | None = None) -> CAR1Prior:
        """データから事前分布の範囲を設定する

        Args:
            max_stdev: 過程の定常標準偏差の上限（通常はデータ標準偏差の数倍）
            config: 範囲設定。Noneの場合はデフォルト。

        Returns:
            構築された CAR1Prior
        """
        self.prior = CAR1Prior.from_time_span(self.time_series.time_span, max_stdev, config)
        logger.info(
            "事前分布を設定: max_stdev=%.4g, ω ∈ [%.4g, %.4g]",
            self.prior.max_stdev,
            self.prior.min_freq,
            self.prior.max_freq,
        )
        return self.prior

    def _require_prior(self) -> CAR1Prior:
        if self.prior is None:
            msg = "事前分布が未設定です。先に set_prior() を呼んでください"
            raise ValidationError(msg)
        return self.prior

    def bounds(self) -> list[tuple[float, float]]:
        """モード探索用の (下限, 上限) のリスト

        σ の上限は ω が最大のときの値。σ と ω の結合制約は log_density が判定する。
        """
        prior = self._require_prior()
        sigma_max = prior.max_stdev * np.sqrt(2.0 * prior.max_freq)
        return [
            (1e-10 * sigma_max, sigma_max),
            (prior.measerr_prior.lower_bound, prior.measerr_prior.upper_bound),
            (float(np.log(prior.min_freq)), float(np.log(prior.max_freq))),
        ]

    def log_prior(self, theta: np.ndarray) -> float:
        return self._require_prior().log_prior(theta)

    def log_likelihood(self, theta: np.ndarray) -> float:
        return self.process.log_likelihood(theta)

    def log_density(self, theta: np.ndarray) -> float:
        """対数事後密度を計算する

        Args:
            theta: パラメータベクトル (σ, measerr_scale, log ω)

        Returns:
            log p(θ) + log p(y|θ)。事前分布の台の外では -inf
        """
        lp = self.log_prior(theta)
        if not np.isfinite(lp):
            return -np.inf

        ll = self.log_likelihood(theta)
        if not np.isfinite(ll):
            return -np.inf

        return lp + ll

    def kalman_filter(self, theta: np.ndarray) -> KalmanFilterResult:
        """Kalmanフィルタを実行し、結果を診断用に保持する"""
        self._last_filter = self.process.kalman_filter(theta)
        return self._last_filter

    @property
    def kalman_mean(self) -> np.ndarray:
        """直近の kalman_filter() の予測平均"""
        return self._require_filter().predicted_mean

    @property
    def kalman_variance(self) -> np.ndarray:
        """直近の kalman_filter() の予測分散"""
        return self._require_filter().predicted_variance

    def _require_filter(self) -> KalmanFilterResult:
        if self._last_filter is None:
            msg = "kalman_filter() が未実行です"
            raise ValidationError(msg)
        return self._last_filter

    def starting_value(self, rng: np.random.Generator, max_tries: int = 1000) -> np.ndarray:
        """事前分布の台の中から初期値をランダムに生成する

        σ はデータ分散と ω から、ω は事前範囲の対数一様分布から、
        測定誤差スケールは1付近から生成し、対数密度が有限になるまで再試行する。

        Raises:
            EstimationError: max_tries 回以内に有限な初期値が見つからない場合
        """
        prior = self._require_prior()
        data_var = float(np.var(self.time_series.value))
        lo, hi = prior.measerr_prior.lower_bound, prior.measerr_prior.upper_bound

        for _ in range(max_tries):
            omega = float(prior.omega_prior.sample(rng)[0])
            stdev = min(np.sqrt(data_var) * rng.uniform(0.5, 1.0), 0.99 * prior.max_stdev)
            if stdev <= 0.0:
                stdev = 0.5 * prior.max_stdev
            measerr_scale = float(np.clip(rng.normal(1.0, 0.1), lo, hi))
            theta = CAR1Parameters(
                sigma=stdev * np.sqrt(2.0 * omega),
                measerr_scale=measerr_scale,
                omega=omega,
            ).to_theta()
            if np.isfinite(self.log_density(theta)):
                return theta

        msg = f"{max_tries}回の試行で有限な対数事後密度の初期値が見つかりません"
        raise EstimationError(msg)
