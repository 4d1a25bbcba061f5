"""ベイズ推定結果

MCMCサンプリング結果の集約、事後分布のサマリー、DICの計算を提供する。
θ = (σ, measerr_scale, log ω) に加えて、緩和時間 τ = 1/ω と
定常標準偏差 σ/√(2ω) のサマリーも作成する。
"""

from dataclasses import dataclass

import numpy as np

from car_mcmc.estimation.mcmc import SamplerResult
from car_mcmc.estimation.posterior import PosteriorModel


@dataclass
class PosteriorSummary:
    """単一パラメータの事後分布サマリー

    Attributes:
        name: パラメータ名
        mean: 事後平均
        median: 事後中央値
        std: 事後標準偏差
        hpd_lower: 90% HPD下限
        hpd_upper: 90% HPD上限
    """

    name: str
    mean: float
    median: float
    std: float
    hpd_lower: float
    hpd_upper: float


@dataclass
class EstimationResult:
    """推定結果

    Attributes:
        posterior_samples: 事後サンプル (n_samples, n_params)
        parameter_names: パラメータ名のリスト
        summaries: パラメータおよび派生量ごとの事後分布サマリー
        acceptance_rate: 全反復の採択率
        dic: Deviance Information Criterion
        effective_parameters: DICの有効パラメータ数 p_D
        mode: 事後分布のモード。モード探索をしていない場合はNone。
        mode_log_density: モードでの対数事後密度
        n_samples: 保存されたドロー数
        n_burnin: バーンイン数
    """

    posterior_samples: np.ndarray
    parameter_names: list[str]
    summaries: list[PosteriorSummary]
    acceptance_rate: float
    dic: float
    effective_parameters: float
    mode: np.ndarray | None
    mode_log_density: float | None
    n_samples: int
    n_burnin: int

    def get_summary(self, name: str) -> PosteriorSummary:
        """名前でパラメータサマリーを取得する

        Raises:
            KeyError: パラメータが見つからない場合
        """
        for s in self.summaries:
            if s.name == name:
                return s
        msg = f"パラメータ '{name}' が見つかりません"
        raise KeyError(msg)

    def posterior_mean(self) -> np.ndarray:
        """θの事後平均"""
        mean: np.ndarray = self.posterior_samples.mean(axis=0)
        return mean

    def summary_table(self) -> str:
        """マークダウン形式のサマリーテーブルを生成する"""
        header = "| Parameter | Post. Mean | Post. Median | Post. Std | 90% HPD Lower | 90% HPD Upper |"
        separator = "|-----------|-----------|-------------|----------|--------------|--------------|"

        rows = [header, separator]
        for s in self.summaries:
            row = (
                f"| {s.name:13s} "
                f"| {s.mean:10.4g} "
                f"| {s.median:11.4g} "
                f"| {s.std:8.4g} "
                f"| {s.hpd_lower:12.4g} "
                f"| {s.hpd_upper:12.4g} |"
            )
            rows.append(row)

        return "\n".join(rows)


def compute_hpd(samples: np.ndarray, alpha: float = 0.1) -> tuple[float, float]:
    """Highest Posterior Density (HPD) 区間を計算する

    (1-alpha)*100% の確率質量を含む最短の区間を求める。

    Args:
        samples: 1次元の事後サンプル配列
        alpha: 有意水準 (0.1 で 90% HPD)

    Returns:
        (lower, upper) HPD区間の下限と上限
    """
    sorted_samples = np.sort(samples)
    n = len(sorted_samples)
    interval_size = min(max(int(np.ceil((1.0 - alpha) * n)), 2), n)

    widths = sorted_samples[interval_size - 1 :] - sorted_samples[: n - interval_size + 1]
    best_idx = int(np.argmin(widths))

    return float(sorted_samples[best_idx]), float(sorted_samples[best_idx + interval_size - 1])


def summarize(name: str, samples: np.ndarray, alpha: float = 0.1) -> PosteriorSummary:
    """1次元サンプルの事後分布サマリーを作成する"""
    hpd_lower, hpd_upper = compute_hpd(samples, alpha=alpha)
    return PosteriorSummary(
        name=name,
        mean=float(np.mean(samples)),
        median=float(np.median(samples)),
        std=float(np.std(samples)),
        hpd_lower=hpd_lower,
        hpd_upper=hpd_upper,
    )


def derived_quantities(samples: np.ndarray) -> dict[str, np.ndarray]:
    """θサンプルから派生量 τ と定常標準偏差を計算する"""
    sigma = samples[:, 0]
    omega = np.exp(samples[:, 2])
    return {
        "tau": 1.0 / omega,
        "stdev": sigma / np.sqrt(2.0 * omega),
    }


def compute_dic(
    posterior: PosteriorModel,
    samples: np.ndarray,
    max_samples: int = 1000,
) -> tuple[float, float]:
    """Deviance Information Criterion を計算する

    D(θ) = -2 log p(y|θ)
    p_D = mean(D(θ)) - D(mean(θ))
    DIC = mean(D(θ)) + p_D

    計算量を抑えるため、最大 max_samples 個のサンプルを等間隔で使用する。

    Returns:
        (dic, p_d) のタプル
    """
    step = max(1, len(samples) // max_samples)
    subset = samples[::step]
    deviances = np.array([-2.0 * posterior.log_likelihood(theta) for theta in subset])
    mean_deviance = float(np.mean(deviances))
    deviance_at_mean = -2.0 * posterior.log_likelihood(subset.mean(axis=0))
    p_d = mean_deviance - deviance_at_mean
    return mean_deviance + p_d, p_d


def build_estimation_result(
    sampler_result: SamplerResult,
    posterior: PosteriorModel,
) -> EstimationResult:
    """SamplerResult から EstimationResult を構築する

    Args:
        sampler_result: MCMC結果
        posterior: サンプリングに使用した事後分布モデル

    Returns:
        完成した EstimationResult
    """
    samples = sampler_result.samples
    names = list(sampler_result.parameter_names)

    summaries = [summarize(name, samples[:, i]) for i, name in enumerate(names)]
    for name, values in derived_quantities(samples).items():
        summaries.append(summarize(name, values))

    dic, p_d = compute_dic(posterior, samples)

    return EstimationResult(
        posterior_samples=samples,
        parameter_names=names,
        summaries=summaries,
        acceptance_rate=sampler_result.acceptance_rate,
        dic=dic,
        effective_parameters=p_d,
        mode=sampler_result.mode,
        mode_log_density=sampler_result.mode_log_density,
        n_samples=samples.shape[0],
        n_burnin=sampler_result.n_burnin,
    )
