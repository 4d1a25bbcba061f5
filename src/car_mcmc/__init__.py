"""car-mcmc - 不等間隔時系列に対するCAR(1)過程のベイズ推定"""

from importlib.metadata import PackageNotFoundError, version


def _resolve_version() -> str:
    """配布メタデータからバージョンを解決する。"""
    try:
        return version("car-mcmc")
    except PackageNotFoundError:
        # インストール前のローカル実行時フォールバック
        return "0+unknown"


__version__ = _resolve_version()

from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.mcmc import AdaptiveMetropolis, SamplerConfig, run_sampler
from car_mcmc.estimation.posterior import PosteriorModel
from car_mcmc.estimation.priors import PriorConfig
from car_mcmc.estimation.proposal import StudentProposal
from car_mcmc.estimation.results import EstimationResult
from car_mcmc.estimation.state_space import CAR1Parameters, CAR1Process

__all__ = [
    "AdaptiveMetropolis",
    "CAR1Parameters",
    "CAR1Process",
    "EstimationResult",
    "PosteriorModel",
    "PriorConfig",
    "SamplerConfig",
    "StudentProposal",
    "TimeSeries",
    "run_sampler",
]
