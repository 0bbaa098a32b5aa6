"""
Tests for penalized (ridge) calibration.

Verifies cost handling, the effect of lambda on the weight ratios, and the
lambda search against a gap.
"""

import warnings

import numpy as np
import pytest


class TestInverseCosts:
    """Test the mapping from costs to the diagonal of C^-1."""

    def test_mapping(self):
        from surveycal.penalized import inverse_costs

        inverse = inverse_costs(np.array([2.0, 0.0, -1.0, np.inf, np.nan]), u_cost_penalized=2.0)

        np.testing.assert_allclose(inverse[[0, 2, 3, 4]], [0.25, 0.0, 0.0, 0.0])
        assert np.isinf(inverse[1])

    def test_invalid_multiplier(self):
        from surveycal.penalized import inverse_costs
        from surveycal.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError):
            inverse_costs(np.ones(3), u_cost_penalized=0.0)


class TestFixedLambda:
    """Test ridge calibration for a given lambda."""

    def test_tiny_lambda_matches_linear(self, design):
        from surveycal.newton import calib
        from surveycal.penalized import penalized_calib

        X, d, total = design
        exact = calib(X, d, total, method="linear")
        result = penalized_calib(X, d, total, costs=np.ones(3), lambda_=1e-8)

        np.testing.assert_allclose(result.g, exact.g, rtol=1e-5)
        assert result.method == "penalized"
        assert result.lambda_ == 1e-8

    def test_large_lambda_pulls_ratios_to_one(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        small = penalized_calib(X, d, total, costs=np.ones(3), lambda_=1e-2)
        large = penalized_calib(X, d, total, costs=np.ones(3), lambda_=1e8)

        assert large.weight_range < small.weight_range
        np.testing.assert_allclose(large.g, 1.0, atol=1e-3)

    def test_negative_cost_keeps_margin_exact(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        for lambda_ in [1e-1, 1e2, 1e5]:
            result = penalized_calib(X, d, total, costs=[1.0, 1.0, -1.0], lambda_=lambda_)

            np.testing.assert_allclose(X[:, 2] @ (d * result.g), total[2], rtol=1e-5)

    def test_zero_cost_drops_margin(self, design):
        from surveycal.newton import calib
        from surveycal.penalized import penalized_calib

        X, d, total = design
        result = penalized_calib(X, d, total, costs=[0.0, -1.0, -1.0], lambda_=1.0)
        reduced = calib(X[:, 1:], d, total[1:], method="linear")

        np.testing.assert_allclose(result.g, reduced.g, rtol=1e-6)

    def test_higher_cost_is_stricter(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        cheap = penalized_calib(X, d, total, costs=[1.0, 1.0, 1.0], lambda_=100.0)
        strict = penalized_calib(X, d, total, costs=[100.0, 1.0, 1.0], lambda_=100.0)

        cheap_error = abs(X[:, 0] @ (d * cheap.g) - total[0])
        strict_error = abs(X[:, 0] @ (d * strict.g) - total[0])
        assert strict_error < cheap_error

    def test_raking_distance_keeps_weights_positive(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        result = penalized_calib(X, d, total, costs=np.ones(3), method="raking", lambda_=10.0)

        assert np.all(result.g > 0)

    def test_logit_distance_respects_bounds(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        result = penalized_calib(
            X, d, total, costs=np.ones(3), method="logit", bounds=(0.5, 1.5), lambda_=1.0
        )

        assert np.all(result.g > 0.5)
        assert np.all(result.g < 1.5)

    def test_costs_length_mismatch(self, design):
        from surveycal.penalized import penalized_calib
        from surveycal.exceptions import ConfigurationError

        X, d, total = design

        with pytest.raises(ConfigurationError, match="Costs length"):
            penalized_calib(X, d, total, costs=[1.0, 1.0], lambda_=1.0)


class TestGapSearch:
    """Test the lambda search for a maximum ratio range."""

    def test_range_within_gap(self, design):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        result = penalized_calib(X, d, total, costs=np.ones(3), gap=0.1)

        assert result.weight_range <= 0.1
        assert result.lambda_ > 0

    def test_smaller_lambda_exceeds_gap(self, design):
        """The search returns (nearly) the smallest admissible lambda."""
        from surveycal.penalized import ridge_solve, inverse_costs, penalized_calib
        from surveycal.distances import Distance
        from surveycal.newton import CalibrationProblem

        X, d, total = design
        result = penalized_calib(X, d, total, costs=np.ones(3), gap=0.1)

        problem = CalibrationProblem.build(X, d, total)
        smaller = ridge_solve(
            problem, Distance.build("linear"), inverse_costs(np.ones(3)),
            result.lambda_ * 10 ** -0.05,
        )
        assert smaller.weight_range > 0.1

    def test_gap_with_exact_margin(self, design):
        """The default bracket reaches lambdas far above the data scale."""
        from surveycal.penalized import penalized_calib

        X, d, total = design
        result = penalized_calib(X, d, total, costs=[1.0, 1.0, -1.0], gap=0.1)

        assert result.weight_range <= 0.1
        np.testing.assert_allclose(X[:, 2] @ (d * result.g), total[2], rtol=1e-5)

    def test_requires_lambda_or_gap(self, design):
        from surveycal.penalized import penalized_calib
        from surveycal.exceptions import ConfigurationError

        X, d, total = design

        with pytest.raises(ConfigurationError, match="lambda_ or gap"):
            penalized_calib(X, d, total, costs=np.ones(3))

    def test_user_lambda_narrows_search(self, design):
        from surveycal.penalized import penalized_calib, lambda_scale
        from surveycal.newton import CalibrationProblem
        from surveycal.exceptions import RiskyConfigurationWarning

        X, d, total = design
        guess = lambda_scale(CalibrationProblem.build(X, d, total))

        with pytest.warns(RiskyConfigurationWarning):
            result = penalized_calib(X, d, total, costs=np.ones(3), gap=0.1, lambda_=guess)

        assert guess / 100 <= result.lambda_ <= guess * 100
        assert result.weight_range <= 0.1

    def test_exact_margins_exhaust_search(self, design):
        """With every margin exact, lambda cannot shrink the range."""
        from surveycal.penalized import penalized_calib
        from surveycal.exceptions import SearchExhausted

        X, d, total = design

        with pytest.raises(SearchExhausted, match="gap"):
            penalized_calib(X, d, total, costs=np.full(3, np.inf), gap=1e-3)

    def test_verbose_output(self, design, capsys):
        from surveycal.penalized import penalized_calib

        X, d, total = design
        penalized_calib(X, d, total, costs=np.ones(3), gap=0.1, verbose=True)

        out = capsys.readouterr().out
        assert "Searching ridge lambda" in out

    def test_invalid_gap(self, design):
        from surveycal.penalized import penalized_calib
        from surveycal.exceptions import ConfigurationError

        X, d, total = design

        with pytest.raises(ConfigurationError):
            penalized_calib(X, d, total, costs=np.ones(3), gap=-1.0)
