"""合成データ生成モジュール

既知のパラメータでCAR(1)過程をシミュレートし、測定誤差を加えた
不等間隔の合成観測データを生成する。テスト・検証に使用する。
"""

from pathlib import Path

import numpy as np

from car_mcmc.core.exceptions import ParameterValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.state_space import CAR1Parameters, CAR1Process


class SyntheticCAR1Generator:
    """合成データ生成（テスト・検証用）"""

    def __init__(self, center: bool = True) -> None:
        """初期化

        Args:
            center: 生成した時系列から平均を除去するかどうか
        """
        self.center = center

    @staticmethod
    def random_times(
        n: int,
        time_span: float,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """[0, time_span] 上の一様乱数で不等間隔の観測時刻を生成する（端点を含む）"""
        if n < 2:
            raise ParameterValidationError(f"nは2以上が必要 (got {n})")
        if time_span <= 0.0:
            raise ParameterValidationError(f"time_spanは正が必要 (got {time_span})")
        interior = np.sort(rng.uniform(0.0, time_span, size=n - 2))
        return np.concatenate([[0.0], interior, [time_span]])

    def generate(
        self,
        params: CAR1Parameters,
        time: np.ndarray,
        measurement_sigma: float | np.ndarray = 0.0,
        rng: np.random.Generator | None = None,
    ) -> TimeSeries:
        """CAR(1)過程をシミュレートして合成観測データを生成する

        1. 定常分布から初期値を生成
        2. 厳密な遷移分布で過程をシミュレート
        3. 測定誤差 N(0, measerr_scale · σ_i²) を付加
        4. TimeSeries として返す

        Args:
            params: CAR(1)パラメータ
            time: 観測時刻 (n,)
            measurement_sigma: 報告する測定誤差の標準偏差（スカラーまたは (n,)）
            rng: 乱数生成器。Noneの場合はデフォルトを使用。

        Returns:
            合成観測データ
        """
        if rng is None:
            rng = np.random.default_rng()

        t = np.sort(np.asarray(time, dtype=np.float64))
        ysig = np.broadcast_to(np.asarray(measurement_sigma, dtype=np.float64), t.shape).copy()

        x = CAR1Process.simulate(params.to_theta(), t, rng)
        noise = rng.standard_normal(t.size) * np.sqrt(params.measerr_scale) * ysig

        return TimeSeries(t, x + noise, ysig, center=self.center)

    def to_csv(self, data: TimeSeries, path: str | Path) -> None:
        """TimeSeriesをDataLoader.load_csv互換のCSVファイルに出力する

        平均を戻した観測値（raw_value）を書き出す。

        Args:
            data: 時系列
            path: 出力先ファイルパス
        """
        filepath = Path(path)
        lines = ["time,value,sigma"]
        for t, y, s in zip(data.time, data.raw_value, data.measurement_sigma, strict=True):
            lines.append(f"{t:.10g},{y:.10g},{s:.10g}")
        filepath.write_text("\n".join(lines) + "\n", encoding="utf-8")
