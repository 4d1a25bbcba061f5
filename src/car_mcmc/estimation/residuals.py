"""Kalmanフィルタ残差による当てはまりの評価

モデルが正しければ標準化残差は独立な標準正規分布に従う。
平均・分散・自己相関・Ljung-Box検定・Kolmogorov-Smirnov検定で確認する。
"""

from dataclasses import dataclass

import numpy as np
import scipy.stats

from car_mcmc.core.exceptions import ValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.kalman_filter import KalmanFilterResult


@dataclass
class FitAssessment:
    """標準化残差の評価結果

    Attributes:
        residuals: 標準化残差 (n,)
        mean: 残差の標本平均（≈ 0）
        variance: 残差の標本分散（≈ 1）
        autocorrelation: ラグ1..max_lagの自己相関 (max_lag,)
        ljung_box_stat: Ljung-Box統計量
        ljung_box_p: Ljung-Box検定のp値
        ks_p: 標準正規分布に対するKS検定のp値
        squared_ljung_box_p: 残差二乗のLjung-Box検定のp値
    """

    residuals: np.ndarray
    mean: float
    variance: float
    autocorrelation: np.ndarray
    ljung_box_stat: float
    ljung_box_p: float
    ks_p: float
    squared_ljung_box_p: float


def standardized_residuals(
    time_series: TimeSeries,
    filter_result: KalmanFilterResult,
    measerr_scale: float = 1.0,
) -> np.ndarray:
    """標準化残差を計算する

    (value - predicted_mean) / √(predicted_variance + measerr_scale · σ_i²)
    """
    if filter_result.predicted_mean.shape != time_series.value.shape:
        msg = (
            f"フィルタ結果の長さ {filter_result.predicted_mean.shape} が"
            f"時系列の長さ {time_series.value.shape} と一致しません"
        )
        raise ValidationError(msg)
    total_var = filter_result.predicted_variance + measerr_scale * time_series.measurement_variance
    result: np.ndarray = (time_series.value - filter_result.predicted_mean) / np.sqrt(total_var)
    return result


def autocorrelation(x: np.ndarray, max_lag: int) -> np.ndarray:
    """ラグ1..max_lagの標本自己相関を計算する

    Returns:
        自己相関 (max_lag,)。分散が0の場合はゼロ。
    """
    x = np.asarray(x, dtype=np.float64)
    n = x.size
    if max_lag < 1 or max_lag >= n:
        raise ValidationError(f"max_lagは1以上{n}未満が必要 (got {max_lag})")

    centered = x - x.mean()
    denom = float(centered @ centered)
    acf = np.zeros(max_lag)
    if denom <= 0.0:
        return acf
    for lag in range(1, max_lag + 1):
        acf[lag - 1] = float(centered[:-lag] @ centered[lag:]) / denom
    return acf


def ljung_box(x: np.ndarray, n_lags: int) -> tuple[float, float]:
    """Ljung-Box検定

    Q = n (n+2) Σ_k ρ_k² / (n-k) は白色雑音の下で自由度 n_lags のχ²分布に従う。

    Returns:
        (Q, p_value) のタプル
    """
    n = np.asarray(x).size
    acf = autocorrelation(x, n_lags)
    lags = np.arange(1, n_lags + 1)
    q_stat = float(n * (n + 2.0) * np.sum(acf**2 / (n - lags)))
    p_value = float(scipy.stats.chi2.sf(q_stat, df=n_lags))
    return q_stat, p_value


def assess_fit(
    time_series: TimeSeries,
    filter_result: KalmanFilterResult,
    measerr_scale: float = 1.0,
    max_lag: int | None = None,
) -> FitAssessment:
    """標準化残差に対する全ての評価を実行する

    Args:
        time_series: 時系列
        filter_result: 同じ時系列に対するKalmanフィルタ結果
        measerr_scale: 測定誤差スケール
        max_lag: 自己相関の最大ラグ。Noneの場合は min(20, n // 5)。

    Returns:
        FitAssessment
    """
    resid = standardized_residuals(time_series, filter_result, measerr_scale)
    n = resid.size
    if max_lag is None:
        max_lag = max(1, min(20, n // 5))

    acf = autocorrelation(resid, max_lag)
    q_stat, q_p = ljung_box(resid, max_lag)
    _, sq_p = ljung_box(resid**2, max_lag)
    ks_p = float(scipy.stats.kstest(resid, "norm").pvalue)

    return FitAssessment(
        residuals=resid,
        mean=float(np.mean(resid)),
        variance=float(np.var(resid, ddof=1)),
        autocorrelation=acf,
        ljung_box_stat=q_stat,
        ljung_box_p=q_p,
        ks_p=ks_p,
        squared_ljung_box_p=sq_p,
    )
