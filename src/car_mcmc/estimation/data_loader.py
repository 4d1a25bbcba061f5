"""推定用データの読込モジュール

CSVファイルから時刻・観測値・測定誤差を読み込み、TimeSeriesを構築する。
CSVフォーマット: time, value[, sigma]（ヘッダー行必須、sigma列は省略可能で省略時は0）
"""

from pathlib import Path

import numpy as np

from car_mcmc.core.exceptions import InvalidInputError
from car_mcmc.core.time_series import ArrayLike, TimeSeries


class DataLoader:
    """データ読込クラス

    列名の別名を受け付ける（例: "t", "mjd" → time, "y", "flux" → value, "yerr", "err" → sigma）。
    """

    # CSV列名から標準列名へのマッピング
    _COLUMN_ALIASES: dict[str, str] = {
        "time": "time",
        "t": "time",
        "mjd": "time",
        "value": "value",
        "y": "value",
        "flux": "value",
        "mag": "value",
        "sigma": "sigma",
        "yerr": "sigma",
        "err": "sigma",
        "error": "sigma",
    }

    def __init__(self, center: bool = True) -> None:
        """初期化

        Args:
            center: 観測値から平均を除去するかどうか
        """
        self.center = center

    def load_csv(self, path: str | Path) -> TimeSeries:
        """CSV読込→TimeSeries

        Args:
            path: CSVファイルパス

        Returns:
            ソート・重複除去・中心化済みのTimeSeries

        Raises:
            InvalidInputError: 必須列の欠落、数値に変換できないセルがある場合
        """
        filepath = Path(path)
        raw_text = filepath.read_text(encoding="utf-8")
        lines = [
            line.strip()
            for line in raw_text.strip().split("\n")
            if line.strip() and not line.strip().startswith("#")
        ]
        if len(lines) < 2:
            msg = f"CSVにヘッダーとデータ行が必要です: {filepath}"
            raise InvalidInputError(msg)

        header = [self._COLUMN_ALIASES.get(col.strip().lower(), col.strip().lower()) for col in lines[0].split(",")]
        for required in ("time", "value"):
            if required not in header:
                msg = f"CSV列 '{required}' が見つかりません: {filepath}"
                raise InvalidInputError(msg)

        n_rows = len(lines) - 1
        columns: dict[str, np.ndarray] = {col: np.zeros(n_rows) for col in header}

        for row_idx, line in enumerate(lines[1:]):
            values = [v.strip() for v in line.split(",")]
            if len(values) != len(header):
                msg = f"{row_idx + 2}行目の列数が{len(header)}ではありません (got {len(values)})"
                raise InvalidInputError(msg)
            for col_idx, col_name in enumerate(header):
                try:
                    columns[col_name][row_idx] = float(values[col_idx])
                except ValueError as e:
                    msg = f"{row_idx + 2}行目の列 '{col_name}' を数値に変換できません: '{values[col_idx]}'"
                    raise InvalidInputError(msg) from e

        sigma = columns.get("sigma", np.zeros(n_rows))
        return TimeSeries(columns["time"], columns["value"], sigma, center=self.center)

    def from_arrays(
        self,
        time: ArrayLike,
        value: ArrayLike,
        sigma: ArrayLike | None = None,
    ) -> TimeSeries:
        """配列からTimeSeriesを構築する（sigma省略時は0）"""
        if sigma is None:
            sigma = np.zeros(np.asarray(value).shape)
        return TimeSeries(time, value, sigma, center=self.center)
