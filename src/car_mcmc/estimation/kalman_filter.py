"""CAR(1)過程のKalmanフィルタ

不等間隔に観測されたOrnstein-Uhlenbeck型過程に対するKalmanフィルタと
Rauch-Tung-Striebel平滑化を実装する。

状態空間モデル:
    x(t_i) = a_i x(t_{i-1}) + ε_i,   a_i = exp(-ω Δt_i),  ε_i ~ N(0, s² (1 - a_i²))
    y_i    = x(t_i) + η_i,            η_i ~ N(0, r_i)

ここで s² = σ² / (2ω) は定常分散、r_i = measerr_scale · σ_i² は測定誤差分散。
状態は1次元なので、各ステップの計算はO(1)、全体でO(n)となる。
"""

from dataclasses import dataclass

import numpy as np

from car_mcmc.core.exceptions import InvalidInputError

LOG_2PI = float(np.log(2.0 * np.pi))

# 分散の下限（定常分散に対する比）
VARIANCE_FLOOR_RATIO = 1e-12


@dataclass
class KalmanFilterResult:
    """Kalmanフィルタの結果

    Attributes:
        log_likelihood: 対数尤度
        predicted_mean: 各観測を取り込む前の予測平均 (n,)
        predicted_variance: 各観測を取り込む前の予測分散 (n,)
        innovations: 予測誤差 y_i - predicted_mean_i (n,)
        innovation_variance: 予測誤差の分散 (n,)
        filtered_mean: フィルタ済み平均 (n,)
        filtered_variance: フィルタ済み分散 (n,)
    """

    log_likelihood: float
    predicted_mean: np.ndarray
    predicted_variance: np.ndarray
    innovations: np.ndarray
    innovation_variance: np.ndarray
    filtered_mean: np.ndarray
    filtered_variance: np.ndarray


def transition_coefficients(
    dt: np.ndarray, omega: float, stationary_variance: float
) -> tuple[np.ndarray, np.ndarray]:
    """OU過程の遷移係数を計算する

    Args:
        dt: 時刻間隔 (m,)
        omega: 緩和率 ω
        stationary_variance: 定常分散 s²

    Returns:
        (a, q) のタプル。a = exp(-ω Δt)、q = s² (1 - exp(-2ω Δt))
    """
    a = np.exp(-omega * dt)
    q = stationary_variance * -np.expm1(-2.0 * omega * dt)
    return a, q


def car1_kalman_filter(
    time: np.ndarray,
    value: np.ndarray,
    measurement_variance: np.ndarray,
    sigma: float,
    omega: float,
    measerr_scale: float = 1.0,
) -> KalmanFilterResult:
    """CAR(1)過程のKalmanフィルタ

    Args:
        time: 観測時刻 (n,)。狭義単調増加。
        value: 観測値 (n,)
        measurement_variance: 報告された測定誤差分散 σ_i² (n,)
        sigma: 駆動ノイズの振幅 σ (> 0)
        omega: 緩和率 ω (> 0)
        measerr_scale: 測定誤差分散のスケール係数

    Returns:
        KalmanFilterResult

    Raises:
        InvalidInputError: 配列の次元が不整合な場合
    """
    _validate_dimensions(time, value, measurement_variance)

    n = time.size
    stationary_variance = sigma**2 / (2.0 * omega)
    floor = VARIANCE_FLOOR_RATIO * stationary_variance
    a, q = transition_coefficients(np.diff(time), omega, stationary_variance)
    noise_variance = measerr_scale * measurement_variance

    predicted_mean = np.empty(n)
    predicted_variance = np.empty(n)
    innovations = np.empty(n)
    innovation_variance = np.empty(n)
    filtered_mean = np.empty(n)
    filtered_variance = np.empty(n)

    mean = 0.0
    var = stationary_variance
    total_ll = 0.0

    for i in range(n):
        predicted_mean[i] = mean
        predicted_variance[i] = var

        # --- Update ---
        v, s, mean, var, ll_contrib = _update_step(mean, var, value[i], noise_variance[i], floor)
        innovations[i] = v
        innovation_variance[i] = s
        filtered_mean[i] = mean
        filtered_variance[i] = var
        total_ll += ll_contrib

        # --- Predict ---
        if i < n - 1:
            mean = a[i] * mean
            var = max(a[i] * a[i] * var + q[i], floor)

    return KalmanFilterResult(
        log_likelihood=total_ll,
        predicted_mean=predicted_mean,
        predicted_variance=predicted_variance,
        innovations=innovations,
        innovation_variance=innovation_variance,
        filtered_mean=filtered_mean,
        filtered_variance=filtered_variance,
    )


def car1_smoother(
    time: np.ndarray,
    value: np.ndarray,
    measurement_variance: np.ndarray,
    observed: np.ndarray,
    sigma: float,
    omega: float,
    measerr_scale: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """CAR(1)過程のRauch-Tung-Striebel平滑化

    observed=False の点は予測のみ行い（尤度・更新なし）、
    全観測で条件付けた過程の平均と分散を返す。
    時刻は非減少であればよい（同一時刻の点は Δt=0 で遷移する）。

    Args:
        time: 時刻グリッド (m,)。非減少。
        value: 観測値 (m,)。observed=False の要素は無視される。
        measurement_variance: 報告された測定誤差分散 (m,)
        observed: 観測点かどうかのマスク (m,)
        sigma: 駆動ノイズの振幅 σ
        omega: 緩和率 ω
        measerr_scale: 測定誤差分散のスケール係数

    Returns:
        (smoothed_mean, smoothed_variance) のタプル
    """
    _validate_dimensions(time, value, measurement_variance, strict=False)
    if observed.shape != time.shape:
        msg = f"observedは{time.shape}が必要 (got {observed.shape})"
        raise InvalidInputError(msg)

    m = time.size
    stationary_variance = sigma**2 / (2.0 * omega)
    floor = VARIANCE_FLOOR_RATIO * stationary_variance
    a, q = transition_coefficients(np.diff(time), omega, stationary_variance)
    noise_variance = measerr_scale * measurement_variance

    pred_mean = np.empty(m)
    pred_var = np.empty(m)
    filt_mean = np.empty(m)
    filt_var = np.empty(m)

    mean = 0.0
    var = stationary_variance
    for i in range(m):
        pred_mean[i] = mean
        pred_var[i] = var
        if observed[i]:
            _, _, mean, var, _ = _update_step(mean, var, value[i], noise_variance[i], floor)
        filt_mean[i] = mean
        filt_var[i] = var
        if i < m - 1:
            mean = a[i] * mean
            var = max(a[i] * a[i] * var + q[i], floor)

    # 後ろ向き平滑化
    smooth_mean = filt_mean.copy()
    smooth_var = filt_var.copy()
    for k in range(m - 2, -1, -1):
        gain = filt_var[k] * a[k] / pred_var[k + 1]
        smooth_mean[k] = filt_mean[k] + gain * (smooth_mean[k + 1] - pred_mean[k + 1])
        smooth_var[k] = max(filt_var[k] + gain * gain * (smooth_var[k + 1] - pred_var[k + 1]), floor)

    return smooth_mean, smooth_var


def _update_step(
    mean: float,
    var: float,
    y: float,
    noise_variance: float,
    floor: float,
) -> tuple[float, float, float, float, float]:
    """Kalmanフィルタの更新ステップ

    事後分散は P·r/S の形で計算し、丸め誤差による負の分散を避ける。

    Returns:
        (innovation, innovation_variance, filtered_mean, filtered_variance, ll_contrib)
    """
    v = y - mean
    s = max(var + noise_variance, floor)
    gain = var / s

    filtered_mean = mean + gain * v
    filtered_variance = max(var * noise_variance / s, floor)

    ll_contrib = -0.5 * (LOG_2PI + np.log(s) + v * v / s)
    return v, s, filtered_mean, filtered_variance, float(ll_contrib)


def _validate_dimensions(
    time: np.ndarray,
    value: np.ndarray,
    measurement_variance: np.ndarray,
    strict: bool = True,
) -> None:
    """入力配列の次元整合性を検証する"""
    if time.ndim != 1:
        raise InvalidInputError(f"timeは1次元配列が必要 (got {time.ndim}D)")
    n = time.size
    if n < 1:
        raise InvalidInputError("timeが空です")
    if value.shape != (n,):
        raise InvalidInputError(f"valueは({n},)が必要 (got {value.shape})")
    if measurement_variance.shape != (n,):
        raise InvalidInputError(f"measurement_varianceは({n},)が必要 (got {measurement_variance.shape})")
    dt = np.diff(time)
    if strict and np.any(dt <= 0.0):
        raise InvalidInputError("timeは狭義単調増加が必要")
    if not strict and np.any(dt < 0.0):
        raise InvalidInputError("timeは非減少が必要")
