"""多変量Student-t提案分布

ランダムウォークの摂動ベクトルを裾の重いt分布から生成する。
"""

from dataclasses import dataclass

import numpy as np
import scipy.stats

from car_mcmc.core.exceptions import ParameterValidationError


@dataclass(frozen=True)
class StudentProposal:
    """位置0・形状 scale²·I の多変量Student-t分布

    x = scale · z / √(w / dof),  z ~ N(0, I),  w ~ χ²(dof)

    Attributes:
        dof: 自由度
        scale: 基準スケール
    """

    dof: float = 8.0
    scale: float = 1.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.dof) or self.dof <= 0.0:
            raise ParameterValidationError(f"dofは正の有限値が必要 (got {self.dof})")
        if not np.isfinite(self.scale) or self.scale <= 0.0:
            raise ParameterValidationError(f"scaleは正の有限値が必要 (got {self.scale})")

    def draw(self, rng: np.random.Generator, dim: int) -> np.ndarray:
        """dim次元の摂動ベクトルを1つ生成する"""
        z = rng.standard_normal(dim)
        w = rng.chisquare(self.dof)
        result: np.ndarray = self.scale * z / np.sqrt(w / self.dof)
        return result

    def log_pdf(self, x: np.ndarray) -> float:
        """対数確率密度"""
        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        dim = x.shape[-1]
        dist = scipy.stats.multivariate_t(loc=np.zeros(dim), shape=self.scale**2 * np.eye(dim), df=self.dof)
        return float(dist.logpdf(x))
