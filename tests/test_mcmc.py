"""Robust Adaptive Metropolisサンプラーのテスト"""

import numpy as np
import pytest

from car_mcmc.core.exceptions import EstimationError, NotInitializedError, ParameterValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.mcmc import (
    AdaptiveMetropolis,
    RAMConfig,
    SamplerConfig,
    adapt_proposal_shape,
    adaptation_step_size,
    find_map,
    run_sampler,
)
from car_mcmc.estimation.posterior import PosteriorModel
from car_mcmc.estimation.proposal import StudentProposal


class GaussianModel:
    """テスト用の多変量正規分布（対角共分散）"""

    def __init__(self, mean: np.ndarray, variance: np.ndarray) -> None:
        self.mean = mean
        self.variance = variance
        self.parameter_names = [f"x{i}" for i in range(mean.size)]

    @property
    def parameter_dimension(self) -> int:
        return self.mean.size

    def log_density(self, theta: np.ndarray) -> float:
        z = (theta - self.mean) ** 2 / self.variance
        return float(-0.5 * np.sum(z))

    def starting_value(self, rng: np.random.Generator) -> np.ndarray:
        return self.mean + 0.1 * rng.standard_normal(self.mean.size)


class TruncatedModel(GaussianModel):
    """第1成分が負の領域で -inf を返すモデル"""

    def log_density(self, theta: np.ndarray) -> float:
        if theta[0] < 0.0:
            return -np.inf
        return super().log_density(theta)


@pytest.fixture
def gaussian() -> GaussianModel:
    return GaussianModel(np.zeros(3), np.ones(3))


@pytest.fixture
def car1_posterior() -> PosteriorModel:
    rng = np.random.default_rng(2013)
    ny = 100
    time = np.linspace(0.0, 100.0, ny)
    y = rng.standard_normal(ny)
    posterior = PosteriorModel.from_time_series(TimeSeries(time, y, 0.01 * np.ones(ny)))
    posterior.set_prior(10.0 * float(np.std(y)))
    return posterior


def _sampler(model: GaussianModel, seed: int = 0, config: RAMConfig | None = None) -> AdaptiveMetropolis:
    return AdaptiveMetropolis(
        model,
        StudentProposal(dof=8.0, scale=1.0),
        np.eye(model.parameter_dimension),
        config=config,
        rng=np.random.default_rng(seed),
    )


class TestAdaptation:
    """提案形状適応の純粋関数のテスト"""

    def test_step_size(self) -> None:
        assert adaptation_step_size(0, 3, 2.0 / 3.0) == 1.0
        assert adaptation_step_size(999, 3, 2.0 / 3.0) == pytest.approx(3.0 * 1000.0 ** (-2.0 / 3.0))

    def test_step_size_decreasing(self) -> None:
        sizes = [adaptation_step_size(i, 3, 2.0 / 3.0) for i in range(10, 1000, 10)]
        assert all(a > b for a, b in zip(sizes, sizes[1:], strict=False))

    def test_on_target_is_unchanged(self) -> None:
        """採択確率が目標と等しければ形状は変わらない"""
        shape = np.linalg.cholesky(np.array([[2.0, 0.3], [0.3, 1.0]]))
        new = adapt_proposal_shape(shape, np.array([0.4, -1.3]), 0.4, 0.4, 1.0)
        np.testing.assert_allclose(new @ new.T, shape @ shape.T)

    def test_shrinks_on_rejection(self) -> None:
        """棄却されると摂動方向の分散が縮小する"""
        new = adapt_proposal_shape(np.eye(3), np.array([2.0, 0.0, 0.0]), 0.0, 0.4, 1.0)
        np.testing.assert_allclose(new @ new.T, np.diag([0.6, 1.0, 1.0]))

    def test_grows_on_acceptance(self) -> None:
        """採択されると摂動方向の分散が拡大する"""
        new = adapt_proposal_shape(np.eye(2), np.array([0.0, 0.5]), 1.0, 0.4, 0.5)
        np.testing.assert_allclose(new @ new.T, np.diag([1.0, 1.3]))

    def test_result_is_lower_triangular(self) -> None:
        rng = np.random.default_rng(4)
        shape = np.linalg.cholesky(np.array([[1.0, 0.5, 0.1], [0.5, 2.0, 0.3], [0.1, 0.3, 0.5]]))
        new = adapt_proposal_shape(shape, rng.standard_normal(3), 0.9, 0.4, 0.8)
        np.testing.assert_allclose(new, np.tril(new))
        assert np.all(np.diag(new) > 0.0)

    def test_zero_perturbation(self) -> None:
        shape = np.eye(2)
        new = adapt_proposal_shape(shape, np.zeros(2), 1.0, 0.4, 1.0)
        np.testing.assert_array_equal(new, shape)


class TestConfig:
    """設定のテスト"""

    @pytest.mark.parametrize(
        "kwargs",
        [{"target_rate": 0.0}, {"target_rate": 1.0}, {"gamma": 0.5}, {"gamma": 1.5}, {"adapt_iterations": -1}],
    )
    def test_invalid_ram_config(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ParameterValidationError):
            RAMConfig(**kwargs)  # type: ignore[arg-type]

    @pytest.mark.parametrize("kwargs", [{"n_samples": 0}, {"n_burnin": -1}, {"thinning": 0}, {"target_rate": 1.2}])
    def test_invalid_sampler_config(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ParameterValidationError):
            SamplerConfig(**kwargs)

    def test_invalid_covariance(self, gaussian: GaussianModel) -> None:
        proposal = StudentProposal()
        with pytest.raises(ParameterValidationError, match="正定値"):
            AdaptiveMetropolis(gaussian, proposal, -np.eye(3))
        with pytest.raises(ParameterValidationError, match="initial_covariance"):
            AdaptiveMetropolis(gaussian, proposal, np.eye(2))
        with pytest.raises(ParameterValidationError, match="対称"):
            AdaptiveMetropolis(gaussian, proposal, np.array([[1.0, 0.5, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]))


class TestLifecycle:
    """サンプラーの状態遷移のテスト"""

    def test_step_before_start(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        assert not sampler.is_started
        with pytest.raises(NotInitializedError):
            sampler.do_step()
        with pytest.raises(NotInitializedError):
            sampler.value()
        with pytest.raises(NotInitializedError):
            sampler.get_log_density()

    def test_start_with_given_value(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        state = sampler.start(np.array([0.5, 0.0, -0.5]))
        assert sampler.is_started
        assert state.iteration == 0
        np.testing.assert_array_equal(sampler.value(), [0.5, 0.0, -0.5])
        assert sampler.get_log_density() == pytest.approx(-0.25)
        np.testing.assert_allclose(sampler.proposal_covariance, np.eye(3))

    def test_start_uses_model_starting_value(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        sampler.start()
        assert np.all(np.abs(sampler.value()) < 1.0)

    def test_start_outside_support(self) -> None:
        model = TruncatedModel(np.ones(2), np.ones(2))
        sampler = _sampler(model)
        with pytest.raises(EstimationError, match="有限"):
            sampler.start(np.array([-1.0, 0.0]))

    def test_start_wrong_dimension(self, gaussian: GaussianModel) -> None:
        with pytest.raises(ParameterValidationError, match="theta0"):
            _sampler(gaussian).start(np.zeros(2))

    def test_value_is_a_copy(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        sampler.start(np.zeros(3))
        v = sampler.value()
        v[0] = 100.0
        assert sampler.value()[0] == 0.0

    def test_state_arrays_read_only(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        sampler.start(np.zeros(3))
        with pytest.raises(ValueError):
            sampler.state.theta[0] = 1.0

    def test_iteration_counter(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        sampler.start(np.zeros(3))
        n_accepted = 0
        for _ in range(50):
            n_accepted += sampler.do_step().accepted
        assert sampler.state.iteration == 50
        assert sampler.state.n_accepted == n_accepted
        assert sampler.acceptance_rate == pytest.approx(n_accepted / 50)


class TestInvariants:
    """サンプラーの不変条件のテスト"""

    def test_cached_log_density_matches_model(self, car1_posterior: PosteriorModel) -> None:
        """全ステップでキャッシュされた対数密度が log_density(value) と一致する"""
        niter = 1000
        sampler = AdaptiveMetropolis(
            car1_posterior,
            StudentProposal(8.0, 1.0),
            np.eye(3),
            config=RAMConfig(target_rate=0.4, adapt_iterations=niter + 1),
            rng=np.random.default_rng(1),
        )
        sampler.start()

        n_mismatch = 0
        for _ in range(niter):
            sampler.do_step()
            stored = sampler.get_log_density()
            computed = car1_posterior.log_density(sampler.value())
            if abs(computed - stored) > 1e-10:
                n_mismatch += 1
        assert n_mismatch == 0

    def test_rejected_candidates_outside_support(self) -> None:
        """台の外の候補は採択されない"""
        model = TruncatedModel(np.array([0.05, 0.0]), np.array([1.0, 1.0]))
        sampler = _sampler(model, seed=3)
        sampler.start(np.array([0.05, 0.0]))
        for _ in range(300):
            step = sampler.do_step()
            assert step.theta[0] >= 0.0
            assert np.isfinite(step.log_density)
            if step.acceptance_probability == 0.0:
                assert not step.accepted

    def test_acceptance_rate_near_target(self, gaussian: GaussianModel) -> None:
        """1000反復後の採択率が目標 ±0.1 に収まる"""
        sampler = _sampler(gaussian, seed=123, config=RAMConfig(target_rate=0.4))
        sampler.start(np.zeros(3))
        for _ in range(1000):
            sampler.do_step()
        assert abs(sampler.acceptance_rate - 0.4) <= 0.1

    def test_adaptation_stops(self, gaussian: GaussianModel) -> None:
        """adapt_iterations 以降は提案形状が固定される"""
        sampler = _sampler(gaussian, config=RAMConfig(adapt_iterations=20))
        sampler.start(np.zeros(3))
        for _ in range(20):
            sampler.do_step()
        frozen = sampler.proposal_covariance.copy()
        assert not np.allclose(frozen, np.eye(3))
        for _ in range(30):
            sampler.do_step()
        np.testing.assert_array_equal(sampler.proposal_covariance, frozen)


class TestRun:
    """run() のテスト"""

    def test_output_shapes(self, gaussian: GaussianModel) -> None:
        sampler = _sampler(gaussian)
        result = sampler.run(n_samples=100, n_burnin=50, thinning=2)
        assert result.samples.shape == (100, 3)
        assert result.log_densities.shape == (100,)
        assert result.accepted.shape == (250,)
        assert result.n_burnin == 50
        assert result.thinning == 2
        assert result.parameter_names == ["x0", "x1", "x2"]
        assert 0.0 < result.acceptance_rate < 1.0

    def test_log_densities_match_samples(self, gaussian: GaussianModel) -> None:
        result = _sampler(gaussian).run(n_samples=50)
        for theta, lp in zip(result.samples, result.log_densities, strict=True):
            assert lp == pytest.approx(gaussian.log_density(theta))

    @pytest.mark.parametrize(
        "kwargs",
        [{"n_samples": 0}, {"n_samples": 10, "n_burnin": -1}, {"n_samples": 10, "thinning": 0}],
    )
    def test_invalid_arguments(self, gaussian: GaussianModel, kwargs: dict[str, int]) -> None:
        with pytest.raises(EstimationError):
            _sampler(gaussian).run(**kwargs)


class TestFindMap:
    """モード探索のテスト"""

    def test_gaussian_mode_and_covariance(self) -> None:
        model = GaussianModel(np.array([1.0, -1.0, 0.5]), np.array([1.0, 4.0, 0.25]))
        mode, hess_inv = find_map(model.log_density, np.zeros(3))
        np.testing.assert_allclose(mode, model.mean, atol=1e-3)
        np.testing.assert_allclose(hess_inv, np.diag(model.variance), rtol=1e-2, atol=1e-3)

    def test_respects_bounds(self) -> None:
        model = GaussianModel(np.array([3.0, 0.0]), np.ones(2))
        mode, _ = find_map(model.log_density, np.zeros(2), bounds=[(-1.0, 1.0), (-1.0, 1.0)])
        assert mode[0] == pytest.approx(1.0, abs=1e-6)
        assert mode[1] == pytest.approx(0.0, abs=1e-3)


class TestRunSampler:
    """run_sampler のテスト"""

    def test_recovers_gaussian_moments(self) -> None:
        model = GaussianModel(np.array([1.0, -1.0, 0.5]), np.array([1.0, 4.0, 0.25]))
        result = run_sampler(model, SamplerConfig(n_samples=4000, n_burnin=1000, seed=1))
        std = np.sqrt(model.variance)
        assert np.all(np.abs(result.samples.mean(axis=0) - model.mean) < 0.4 * std)
        np.testing.assert_allclose(result.samples.std(axis=0), std, rtol=0.3)
        assert result.mode is not None
        assert result.mode_log_density is not None

    def test_reproducible_with_seed(self) -> None:
        model = GaussianModel(np.zeros(2), np.ones(2))
        cfg = SamplerConfig(n_samples=100, n_burnin=50, seed=7)
        r1 = run_sampler(model, cfg)
        r2 = run_sampler(model, cfg)
        np.testing.assert_array_equal(r1.samples, r2.samples)

    def test_car1_posterior(self, car1_posterior: PosteriorModel) -> None:
        result = run_sampler(
            car1_posterior,
            SamplerConfig(n_samples=500, n_burnin=500, seed=3),
            bounds=car1_posterior.bounds(),
        )
        assert result.samples.shape == (500, 3)
        assert np.all(np.isfinite(result.log_densities))
        assert result.parameter_names == ["sigma", "measerr_scale", "log_omega"]
        assert result.mode is not None
        assert np.isfinite(car1_posterior.log_density(result.mode))
