"""不等間隔時系列データ

観測時刻・観測値・測定誤差を保持する不変コンテナ。
構築時に時刻順の安定ソート、重複時刻の除去、平均の除去（centering）を行う。
"""

import logging
from collections.abc import Sequence

import numpy as np

from car_mcmc.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

ArrayLike = Sequence[float] | np.ndarray


def _as_vector(name: str, values: ArrayLike) -> np.ndarray:
    """入力を1次元float配列に変換する"""
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        msg = f"{name}は1次元配列が必要 (got {arr.ndim}D)"
        raise InvalidInputError(msg)
    if not np.all(np.isfinite(arr)):
        msg = f"{name}にNaN/infが含まれています"
        raise InvalidInputError(msg)
    return arr


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


class TimeSeries:
    """ソート・重複除去・中心化済みの時系列

    重複時刻の扱い:
        安定ソート後、直前に保持した時刻と等しい時刻を持つ要素を除去する。
        つまり同一時刻の組では入力順で最初の要素が残る。

    Attributes:
        time: 観測時刻（狭義単調増加）
        value: 観測値（center=True の場合は平均除去済み）
        measurement_sigma: 測定誤差の標準偏差（0は誤差なし）
        mean: 除去した平均値（center=False の場合は 0.0）
    """

    def __init__(
        self,
        time: ArrayLike,
        value: ArrayLike,
        measurement_sigma: ArrayLike,
        center: bool = True,
    ) -> None:
        t = _as_vector("time", time)
        y = _as_vector("value", value)
        ysig = _as_vector("measurement_sigma", measurement_sigma)

        if not (t.size == y.size == ysig.size):
            msg = (
                "time, value, measurement_sigma の長さが一致しません "
                f"(got {t.size}, {y.size}, {ysig.size})"
            )
            raise InvalidInputError(msg)
        if np.any(ysig < 0.0):
            msg = "measurement_sigmaは非負が必要"
            raise InvalidInputError(msg)

        # 安定ソート: 同一時刻は入力順を保つ
        order = np.argsort(t, kind="stable")
        t, y, ysig = t[order], y[order], ysig[order]

        keep = np.ones(t.size, dtype=bool)
        if t.size > 1:
            keep[1:] = np.diff(t) != 0.0
        n_dropped = int(t.size - np.count_nonzero(keep))
        if n_dropped > 0:
            logger.info("重複時刻を %d 点除去しました", n_dropped)
        t, y, ysig = t[keep], y[keep], ysig[keep]

        if t.size < 2:
            msg = f"重複除去後に異なる時刻が2点以上必要 (got {t.size})"
            raise InvalidInputError(msg)

        mean = float(np.mean(y)) if center else 0.0

        self._time = _readonly(t)
        self._value = _readonly(y - mean)
        self._measurement_sigma = _readonly(ysig)
        self._mean = mean

    @property
    def time(self) -> np.ndarray:
        return self._time

    @property
    def value(self) -> np.ndarray:
        return self._value

    @property
    def measurement_sigma(self) -> np.ndarray:
        return self._measurement_sigma

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def n(self) -> int:
        """観測点数"""
        return int(self._time.size)

    @property
    def time_span(self) -> float:
        """観測期間の長さ"""
        return float(self._time[-1] - self._time[0])

    @property
    def dt(self) -> np.ndarray:
        """隣接する観測時刻の間隔 (n-1,)"""
        return np.diff(self._time)

    @property
    def raw_value(self) -> np.ndarray:
        """平均を戻した観測値"""
        return self._value + self._mean

    @property
    def measurement_variance(self) -> np.ndarray:
        return self._measurement_sigma**2

    def __len__(self) -> int:
        return self.n

    def __repr__(self) -> str:
        return f"TimeSeries(n={self.n}, time_span={self.time_span:.6g}, mean={self._mean:.6g})"
