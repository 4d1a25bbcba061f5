"""Robust Adaptive Metropolis (RAM) サンプラー

Vihola (2012) のRAMアルゴリズムを実装する。Student-t分布による
ランダムウォーク提案、Metropolis採択、提案形状行列のオンライン適応を行う。

適応則:
    S_{n+1} S_{n+1}' = S_n (I + η_n (α_n - α*) u_n u_n' / ||u_n||²) S_n'
    η_n = min(1, d · n^{-γ})

ここで u_n は単位提案（形状行列を掛ける前の摂動）、α_n は採択確率、α* は目標採択率。
採択率が目標より低ければ提案は縮小し、高ければ拡大する。
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
import scipy.optimize

from car_mcmc.core.exceptions import EstimationError, NotInitializedError, ParameterValidationError
from car_mcmc.estimation.proposal import StudentProposal

logger = logging.getLogger(__name__)


class LogDensityModel(Protocol):
    """サンプラーが要求する対数密度モデルのプロトコル"""

    @property
    def parameter_dimension(self) -> int: ...
    def log_density(self, theta: np.ndarray) -> float: ...
    def starting_value(self, rng: np.random.Generator) -> np.ndarray: ...


@dataclass(frozen=True)
class RAMConfig:
    """RAM適応の設定

    Attributes:
        target_rate: 目標採択率 α*
        gamma: 適応ステップサイズの減衰指数 γ ∈ (0.5, 1]
        adapt_iterations: 適応を行う反復数。Noneの場合は常に適応する。
    """

    target_rate: float = 0.4
    gamma: float = 2.0 / 3.0
    adapt_iterations: int | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.target_rate < 1.0:
            raise ParameterValidationError(f"target_rateは(0, 1)が必要 (got {self.target_rate})")
        if not 0.5 < self.gamma <= 1.0:
            raise ParameterValidationError(f"gammaは(0.5, 1]が必要 (got {self.gamma})")
        if self.adapt_iterations is not None and self.adapt_iterations < 0:
            raise ParameterValidationError(f"adapt_iterationsは非負が必要 (got {self.adapt_iterations})")


@dataclass(frozen=True)
class SamplerConfig:
    """MCMC実行設定

    バーンイン中のみ提案形状を適応し、保存するドローは固定した提案で生成する。

    Attributes:
        n_samples: 保存するドロー数（間引き後）
        n_burnin: バーンイン数
        thinning: 間引き間隔
        proposal_dof: Student-t提案の自由度
        target_rate: 目標採択率
        seed: 乱数シード
    """

    n_samples: int = 10_000
    n_burnin: int = 5_000
    thinning: int = 1
    proposal_dof: float = 8.0
    target_rate: float = 0.4
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.n_samples <= 0:
            raise ParameterValidationError(f"n_samplesは正が必要 (got {self.n_samples})")
        if self.n_burnin < 0:
            raise ParameterValidationError(f"n_burninは非負が必要 (got {self.n_burnin})")
        if self.thinning <= 0:
            raise ParameterValidationError(f"thinningは正が必要 (got {self.thinning})")
        if not 0.0 < self.target_rate < 1.0:
            raise ParameterValidationError(f"target_rateは(0, 1)が必要 (got {self.target_rate})")


@dataclass(frozen=True, eq=False)
class SamplerState:
    """サンプラーの状態

    do_step() ごとに新しいインスタンスに置き換えられる。配列は読み取り専用。

    Attributes:
        theta: 現在のパラメータベクトル
        log_density: theta の対数事後密度（常に model.log_density(theta) と一致）
        proposal_shape: 提案共分散の下三角Cholesky因子
        iteration: 反復回数
        n_accepted: 採択回数
    """

    theta: np.ndarray
    log_density: float
    proposal_shape: np.ndarray
    iteration: int = 0
    n_accepted: int = 0

    def __post_init__(self) -> None:
        for name in ("theta", "proposal_shape"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def acceptance_rate(self) -> float:
        if self.iteration == 0:
            return 0.0
        return self.n_accepted / self.iteration


@dataclass(frozen=True, eq=False)
class StepResult:
    """1ステップの結果"""

    theta: np.ndarray
    log_density: float
    accepted: bool
    acceptance_probability: float


@dataclass
class SamplerResult:
    """MCMC結果"""

    samples: np.ndarray  # (n_samples, n_params) thinned draws
    log_densities: np.ndarray  # (n_samples,)
    accepted: np.ndarray  # (n_total,) acceptance flag of every iteration
    acceptance_rate: float
    proposal_covariance: np.ndarray  # (n_params, n_params)
    n_burnin: int
    thinning: int
    parameter_names: list[str] = field(default_factory=list)
    mode: np.ndarray | None = None
    mode_log_density: float | None = None


def adaptation_step_size(iteration: int, dim: int, gamma: float) -> float:
    """適応ステップサイズ η = min(1, d · (iteration+1)^{-γ})"""
    return float(min(1.0, dim * (iteration + 1.0) ** (-gamma)))


def adapt_proposal_shape(
    shape: np.ndarray,
    unit_perturbation: np.ndarray,
    acceptance_probability: float,
    target_rate: float,
    step_size: float,
) -> np.ndarray:
    """提案形状行列をランク1更新する

    S_new S_new' = S (I + η (α - α*) u u' / ||u||²) S'

    η ≤ 1 のとき中央の行列の固有値は 1 - η α* 以上で正定値となる。
    Cholesky分解が失敗した場合は元の形状行列を返す。

    Args:
        shape: 現在の下三角Cholesky因子 S (d, d)
        unit_perturbation: 単位提案 u (d,)
        acceptance_probability: 採択確率 α
        target_rate: 目標採択率 α*
        step_size: 適応ステップサイズ η

    Returns:
        更新された下三角Cholesky因子 (d, d)
    """
    u = np.asarray(unit_perturbation, dtype=np.float64)
    norm2 = float(u @ u)
    if norm2 <= 0.0 or not np.isfinite(norm2):
        return np.array(shape, dtype=np.float64)

    dim = u.size
    coef = step_size * (acceptance_probability - target_rate) / norm2
    middle = np.eye(dim) + coef * np.outer(u, u)
    target_cov = shape @ middle @ shape.T

    # 対称性の強制
    target_cov = 0.5 * (target_cov + target_cov.T)

    try:
        new_shape = np.linalg.cholesky(target_cov)
    except np.linalg.LinAlgError:
        logger.warning("提案形状の更新が正定値でないため前の値を維持")
        return np.array(shape, dtype=np.float64)

    if not np.all(np.isfinite(new_shape)):
        logger.warning("提案形状の更新でNaN/infが発生したため前の値を維持")
        return np.array(shape, dtype=np.float64)
    return new_shape


class AdaptiveMetropolis:
    """Robust Adaptive Metropolisサンプラー

    状態遷移:
        未初期化 --start()--> 準備完了 --do_step()--> 実行中 (自己ループ)
    """

    def __init__(
        self,
        model: LogDensityModel,
        proposal: StudentProposal,
        initial_covariance: np.ndarray,
        config: RAMConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._model = model
        self._proposal = proposal
        self._config = config or RAMConfig()
        self._rng = rng if rng is not None else np.random.default_rng()
        self._dim = model.parameter_dimension
        self._initial_shape = self._validate_covariance(initial_covariance)
        self._state: SamplerState | None = None

    def _validate_covariance(self, covariance: np.ndarray) -> np.ndarray:
        """初期共分散を検証し、下三角Cholesky因子を返す"""
        cov = np.asarray(covariance, dtype=np.float64)
        d = self._dim
        if cov.shape != (d, d):
            raise ParameterValidationError(f"initial_covarianceは({d}, {d})が必要 (got {cov.shape})")
        if not np.all(np.isfinite(cov)):
            raise ParameterValidationError("initial_covarianceにNaN/infが含まれています")
        if not np.allclose(cov, cov.T):
            raise ParameterValidationError("initial_covarianceは対称行列が必要")
        try:
            return np.linalg.cholesky(cov)
        except np.linalg.LinAlgError as e:
            raise ParameterValidationError("initial_covarianceは正定値が必要") from e

    @property
    def config(self) -> RAMConfig:
        return self._config

    @property
    def is_started(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> SamplerState:
        return self._require_state()

    def value(self) -> np.ndarray:
        """現在のパラメータベクトル（コピー）"""
        return self._require_state().theta.copy()

    def get_log_density(self) -> float:
        """現在のパラメータベクトルのキャッシュ済み対数密度"""
        return self._require_state().log_density

    @property
    def acceptance_rate(self) -> float:
        return self._require_state().acceptance_rate

    @property
    def proposal_covariance(self) -> np.ndarray:
        shape = self._require_state().proposal_shape
        cov: np.ndarray = shape @ shape.T
        return cov

    def _require_state(self) -> SamplerState:
        if self._state is None:
            msg = "サンプラーが未初期化です。先に start() を呼んでください"
            raise NotInitializedError(msg)
        return self._state

    def start(self, theta0: np.ndarray | None = None) -> SamplerState:
        """サンプラーを初期化する

        Args:
            theta0: 初期パラメータベクトル。Noneの場合は model.starting_value() を使用。

        Returns:
            初期状態

        Raises:
            EstimationError: 初期値の対数密度が有限でない場合
        """
        if theta0 is None:
            theta0 = self._model.starting_value(self._rng)
        theta = np.array(theta0, dtype=np.float64)
        if theta.shape != (self._dim,):
            raise ParameterValidationError(f"theta0は({self._dim},)が必要 (got {theta.shape})")

        log_density = self._model.log_density(theta)
        if not np.isfinite(log_density):
            msg = f"初期値の対数密度が有限ではありません: theta0={theta}"
            raise EstimationError(msg)

        self._state = SamplerState(
            theta=theta,
            log_density=float(log_density),
            proposal_shape=self._initial_shape,
        )
        return self._state

    def do_step(self) -> StepResult:
        """Metropolisステップを1回実行し、提案形状を適応する

        Raises:
            NotInitializedError: start() 前に呼ばれた場合
        """
        state = self._require_state()
        cfg = self._config

        # 提案値の生成
        unit = self._proposal.draw(self._rng, self._dim)
        candidate = state.theta + state.proposal_shape @ unit
        candidate_log_density = self._model.log_density(candidate)

        # Accept/reject (-inf の候補は常に棄却)
        if np.isfinite(candidate_log_density):
            log_ratio = min(0.0, candidate_log_density - state.log_density)
            alpha = float(np.exp(log_ratio))
        else:
            alpha = 0.0
        accepted = bool(self._rng.uniform() < alpha)

        if accepted:
            theta = candidate
            log_density = float(candidate_log_density)
            n_accepted = state.n_accepted + 1
        else:
            theta = state.theta
            log_density = state.log_density
            n_accepted = state.n_accepted

        # 提案形状の適応
        shape = state.proposal_shape
        if cfg.adapt_iterations is None or state.iteration < cfg.adapt_iterations:
            step_size = adaptation_step_size(state.iteration, self._dim, cfg.gamma)
            shape = adapt_proposal_shape(shape, unit, alpha, cfg.target_rate, step_size)

        self._state = SamplerState(
            theta=theta,
            log_density=log_density,
            proposal_shape=shape,
            iteration=state.iteration + 1,
            n_accepted=n_accepted,
        )
        return StepResult(
            theta=self._state.theta.copy(),
            log_density=log_density,
            accepted=accepted,
            acceptance_probability=alpha,
        )

    def run(self, n_samples: int, n_burnin: int = 0, thinning: int = 1) -> SamplerResult:
        """バーンイン・間引き付きでサンプリングを実行する

        未初期化の場合は start() を呼んでから実行する。

        Args:
            n_samples: 保存するドロー数
            n_burnin: 破棄する初期反復数
            thinning: 間引き間隔

        Returns:
            SamplerResult
        """
        if n_samples <= 0:
            raise EstimationError(f"n_samplesは正が必要 (got {n_samples})")
        if n_burnin < 0:
            raise EstimationError(f"n_burninは非負が必要 (got {n_burnin})")
        if thinning <= 0:
            raise EstimationError(f"thinningは正が必要 (got {thinning})")

        if not self.is_started:
            self.start()

        n_total = n_burnin + n_samples * thinning
        samples = np.empty((n_samples, self._dim))
        log_densities = np.empty(n_samples)
        accepted = np.zeros(n_total, dtype=bool)

        logger.info("サンプリング開始: burnin=%d, samples=%d, thinning=%d", n_burnin, n_samples, thinning)

        for t in range(n_total):
            step = self.do_step()
            accepted[t] = step.accepted

            k = t - n_burnin
            if k >= 0 and k % thinning == 0:
                samples[k // thinning] = step.theta
                log_densities[k // thinning] = step.log_density

        acceptance_rate = float(np.mean(accepted))
        logger.info("サンプリング終了: 受容率 %.3f", acceptance_rate)

        names = getattr(self._model, "parameter_names", None)
        return SamplerResult(
            samples=samples,
            log_densities=log_densities,
            accepted=accepted,
            acceptance_rate=acceptance_rate,
            proposal_covariance=self.proposal_covariance,
            n_burnin=n_burnin,
            thinning=thinning,
            parameter_names=list(names) if names is not None else [f"param_{i}" for i in range(self._dim)],
        )


def find_map(
    log_density_fn: Callable[[np.ndarray], float],
    theta0: np.ndarray,
    bounds: list[tuple[float, float]] | None = None,
    max_iter: int = 500,
) -> tuple[np.ndarray, np.ndarray]:
    """事後モードとヘシアン逆行列を求める

    scipy.optimize.minimize (L-BFGS-B) で負の対数事後密度を最小化する。
    ヘシアンは有限差分で数値近似する。正定値でなければ 0.01·I にフォールバック。

    Args:
        log_density_fn: 対数事後密度関数
        theta0: 初期パラメータベクトル
        bounds: パラメータごとの (下限, 上限)
        max_iter: 最大反復回数

    Returns:
        (mode, hessian_inverse) のタプル
    """

    def neg_log_density(theta: np.ndarray) -> float:
        lp = log_density_fn(theta)
        if not np.isfinite(lp):
            return 1e10
        return -lp

    result = scipy.optimize.minimize(
        neg_log_density,
        np.asarray(theta0, dtype=np.float64),
        method="L-BFGS-B",
        bounds=bounds,
        options={"maxiter": max_iter},
    )

    mode = result.x
    if not np.isfinite(log_density_fn(mode)):
        logger.warning("モード探索が台の外で終了したため初期値を使用")
        mode = np.asarray(theta0, dtype=np.float64)

    return mode, _compute_hessian_inverse(log_density_fn, mode)


def _compute_hessian_inverse(
    log_density_fn: Callable[[np.ndarray], float],
    mode: np.ndarray,
) -> np.ndarray:
    """負の対数事後密度のヘシアン逆行列を数値的に計算する

    有限差分で二階微分を近似し、逆行列を計算する。
    差分点が台の外に出る場合や正定値でない場合は 0.01·I にフォールバックする。
    """
    n = mode.size
    eps = 1e-4
    hessian = np.zeros((n, n))

    def f(theta: np.ndarray) -> float:
        return -log_density_fn(theta)

    for i in range(n):
        ei = np.zeros(n)
        ei[i] = eps * max(1.0, abs(mode[i]))
        for j in range(i, n):
            ej = np.zeros(n)
            ej[j] = eps * max(1.0, abs(mode[j]))

            fpp = f(mode + ei + ej)
            fpm = f(mode + ei - ej)
            fmp = f(mode - ei + ej)
            fmm = f(mode - ei - ej)

            hessian[i, j] = (fpp - fpm - fmp + fmm) / (4.0 * ei[i] * ej[j])
            hessian[j, i] = hessian[i, j]

    if np.all(np.isfinite(hessian)):
        try:
            eigvals = np.linalg.eigvalsh(hessian)
            if np.all(eigvals > 0):
                hessian_inv: np.ndarray = np.linalg.inv(hessian)
                return 0.5 * (hessian_inv + hessian_inv.T)
        except np.linalg.LinAlgError:
            pass

    logger.warning("ヘシアンが正定値でないため 0.01·I にフォールバック")
    return 0.01 * np.eye(n)


def run_sampler(
    model: LogDensityModel,
    config: SamplerConfig | None = None,
    theta0: np.ndarray | None = None,
    bounds: list[tuple[float, float]] | None = None,
) -> SamplerResult:
    """モード探索からRAMサンプリングまでを実行する

    1. theta0（Noneの場合は model.starting_value()）からモードを探索
    2. 提案共分散: hessian_inverse * (2.38^2 / n_params)
    3. モードから開始し、バーンイン中のみ提案形状を適応
    4. バーンイン除去 + thinning

    Args:
        model: 対数密度モデル
        config: 実行設定
        theta0: 初期パラメータベクトル
        bounds: モード探索用のパラメータ範囲

    Returns:
        モード情報を含む SamplerResult
    """
    cfg = config or SamplerConfig()
    rng = np.random.default_rng(cfg.seed)
    n_params = model.parameter_dimension

    if theta0 is None:
        theta0 = model.starting_value(rng)

    mode, hessian_inv = find_map(model.log_density, theta0, bounds=bounds)
    mode_log_density = model.log_density(mode)

    proposal_cov = (2.38**2) / n_params * hessian_inv
    proposal_cov = 0.5 * (proposal_cov + proposal_cov.T)
    eigvals = np.linalg.eigvalsh(proposal_cov)
    if np.any(eigvals <= 0):
        proposal_cov += (abs(eigvals.min()) + 1e-8) * np.eye(n_params)

    sampler = AdaptiveMetropolis(
        model,
        StudentProposal(dof=cfg.proposal_dof),
        proposal_cov,
        config=RAMConfig(target_rate=cfg.target_rate, adapt_iterations=cfg.n_burnin),
        rng=rng,
    )
    sampler.start(mode)
    result = sampler.run(cfg.n_samples, n_burnin=cfg.n_burnin, thinning=cfg.thinning)
    result.mode = mode
    result.mode_log_density = float(mode_log_density)
    return result
