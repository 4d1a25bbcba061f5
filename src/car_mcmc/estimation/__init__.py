"""ベイズ推定モジュール

不等間隔時系列に対するCAR(1)過程のKalmanフィルタ尤度、事前分布、
Robust Adaptive Metropolisサンプラーを提供する。
"""

from car_mcmc.estimation.data_loader import DataLoader
from car_mcmc.estimation.kalman_filter import KalmanFilterResult, car1_kalman_filter
from car_mcmc.estimation.mcmc import (
    AdaptiveMetropolis,
    RAMConfig,
    SamplerConfig,
    SamplerResult,
    SamplerState,
    find_map,
    run_sampler,
)
from car_mcmc.estimation.posterior import PosteriorModel
from car_mcmc.estimation.priors import CAR1Prior, PriorConfig
from car_mcmc.estimation.proposal import StudentProposal
from car_mcmc.estimation.residuals import FitAssessment, assess_fit
from car_mcmc.estimation.results import EstimationResult, build_estimation_result
from car_mcmc.estimation.state_space import CAR1Parameters, CAR1Process
from car_mcmc.estimation.synthetic import SyntheticCAR1Generator

__all__ = [
    "AdaptiveMetropolis",
    "CAR1Parameters",
    "CAR1Prior",
    "CAR1Process",
    "DataLoader",
    "EstimationResult",
    "FitAssessment",
    "KalmanFilterResult",
    "PosteriorModel",
    "PriorConfig",
    "RAMConfig",
    "SamplerConfig",
    "SamplerResult",
    "SamplerState",
    "StudentProposal",
    "SyntheticCAR1Generator",
    "assess_fit",
    "build_estimation_result",
    "car1_kalman_filter",
    "find_map",
    "run_sampler",
]
