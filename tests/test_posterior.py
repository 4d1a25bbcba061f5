"""事後分布モデルのテスト"""

import numpy as np
import pytest

from car_mcmc.core.exceptions import ValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.posterior import PosteriorModel


@pytest.fixture
def posterior() -> PosteriorModel:
    rng = np.random.default_rng(17)
    ny = 100
    time = np.linspace(0.0, 100.0, ny)
    y = rng.standard_normal(ny)
    model = PosteriorModel.from_time_series(TimeSeries(time, y, 0.01 * np.ones(ny)))
    model.set_prior(10.0 * float(np.std(y)))
    return model


class TestPriorBounds:
    """事前分布の範囲外で -inf を返すことのテスト"""

    def test_bounds_violations(self, posterior: PosteriorModel) -> None:
        assert posterior.prior is not None
        max_stdev = posterior.prior.max_stdev
        max_freq = 10.0
        min_freq = 1.0 / (10.0 * 100.0)

        bad_theta = np.array([max_stdev / 10.0, 1.0, np.log(2.0 * max_freq)])
        assert posterior.log_density(bad_theta) == -np.inf

        bad_theta[2] = np.log(min_freq / 2.0)
        assert posterior.log_density(bad_theta) == -np.inf

        bad_theta[0] = -1.0
        bad_theta[2] = 0.0
        assert posterior.log_density(bad_theta) == -np.inf

        bad_theta[0] = 100.0 * max_stdev
        assert posterior.log_density(bad_theta) == -np.inf

        bad_theta[0] = 1.0
        bad_theta[1] = 0.1
        assert posterior.log_density(bad_theta) == -np.inf

        bad_theta[1] = 4.0
        assert posterior.log_density(bad_theta) == -np.inf

    def test_nan_gives_minus_inf(self, posterior: PosteriorModel) -> None:
        assert posterior.log_density(np.array([np.nan, 1.0, 0.0])) == -np.inf


class TestLogDensity:
    """対数事後密度のテスト"""

    def test_sum_of_prior_and_likelihood(self, posterior: PosteriorModel) -> None:
        theta = np.array([1.0, 1.0, np.log(0.5)])
        expected = posterior.log_prior(theta) + posterior.log_likelihood(theta)
        assert np.isfinite(expected)
        assert posterior.log_density(theta) == pytest.approx(expected)

    def test_deterministic(self, posterior: PosteriorModel) -> None:
        theta = np.array([0.8, 1.2, np.log(0.1)])
        assert posterior.log_density(theta) == posterior.log_density(theta.copy())

    def test_prior_required(self) -> None:
        ts = TimeSeries([0.0, 1.0, 2.0], [1.0, 2.0, 0.0], [0.1, 0.1, 0.1])
        model = PosteriorModel.from_time_series(ts)
        with pytest.raises(ValidationError, match="set_prior"):
            model.log_density(np.array([1.0, 1.0, 0.0]))


class TestKalmanAccessors:
    """Kalmanフィルタ結果の取得のテスト"""

    def test_before_filter(self, posterior: PosteriorModel) -> None:
        with pytest.raises(ValidationError, match="kalman_filter"):
            _ = posterior.kalman_mean

    def test_after_filter(self, posterior: PosteriorModel) -> None:
        result = posterior.kalman_filter(np.array([1.0, 1.0, np.log(0.5)]))
        np.testing.assert_array_equal(posterior.kalman_mean, result.predicted_mean)
        np.testing.assert_array_equal(posterior.kalman_variance, result.predicted_variance)
        assert posterior.kalman_mean.shape == (posterior.time_series.n,)


class TestStartingValue:
    """初期値生成のテスト"""

    def test_starting_value_is_finite(self, posterior: PosteriorModel) -> None:
        rng = np.random.default_rng(0)
        for _ in range(20):
            theta = posterior.starting_value(rng)
            assert theta.shape == (3,)
            assert np.isfinite(posterior.log_density(theta))

    def test_bounds_contain_starting_value(self, posterior: PosteriorModel) -> None:
        rng = np.random.default_rng(1)
        theta = posterior.starting_value(rng)
        bounds = posterior.bounds()
        assert len(bounds) == 3
        for value, (lo, hi) in zip(theta, bounds, strict=True):
            assert lo <= value <= hi
