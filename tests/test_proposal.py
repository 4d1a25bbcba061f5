"""Student-t提案分布のテスト"""

import numpy as np
import pytest
import scipy.special

from car_mcmc.core.exceptions import ParameterValidationError
from car_mcmc.estimation.proposal import StudentProposal


class TestStudentProposal:
    """StudentProposalのテスト"""

    def test_draw_shape(self) -> None:
        proposal = StudentProposal(dof=8.0, scale=1.0)
        x = proposal.draw(np.random.default_rng(0), 3)
        assert x.shape == (3,)
        assert np.all(np.isfinite(x))

    def test_draw_variance(self) -> None:
        """多変量t分布の分散 scale² · dof / (dof - 2)"""
        proposal = StudentProposal(dof=8.0, scale=2.0)
        rng = np.random.default_rng(1)
        draws = np.array([proposal.draw(rng, 2) for _ in range(40_000)])
        expected = 4.0 * 8.0 / 6.0
        np.testing.assert_allclose(draws.var(axis=0), expected, rtol=0.1)
        np.testing.assert_allclose(draws.mean(axis=0), 0.0, atol=0.05)

    def test_log_pdf(self) -> None:
        proposal = StudentProposal(dof=8.0, scale=1.0)
        x = np.array([0.3, -1.2, 0.5])
        nu, d = 8.0, 3
        expected = (
            scipy.special.gammaln((nu + d) / 2.0)
            - scipy.special.gammaln(nu / 2.0)
            - 0.5 * d * np.log(nu * np.pi)
            - 0.5 * (nu + d) * np.log1p(float(x @ x) / nu)
        )
        assert proposal.log_pdf(x) == pytest.approx(expected)

    @pytest.mark.parametrize("kwargs", [{"dof": 0.0}, {"dof": np.inf}, {"scale": -1.0}])
    def test_invalid(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ParameterValidationError):
            StudentProposal(**kwargs)
