"""Tests for the validated calibration options."""

import pytest


class TestCalibrationOptions:
    """Test defaults and validation of the option set."""

    def test_defaults(self):
        from surveycal.options import CalibrationOptions, BoundsStrategy

        options = CalibrationOptions()

        assert options.max_iter == 2500
        assert options.calib_tolerance == 1e-6
        assert options.precision_bounds == 1e-4
        assert options.u_cost_penalized == 1.0
        assert options.lambda_ is None
        assert options.gap is None
        assert options.bounds_strategy is BoundsStrategy.AUTO

    def test_frozen(self):
        from pydantic import ValidationError
        from surveycal.options import CalibrationOptions

        options = CalibrationOptions()

        with pytest.raises(ValidationError):
            options.max_iter = 10

    @pytest.mark.parametrize("kwargs", [
        {"max_iter": 0},
        {"calib_tolerance": 0.0},
        {"precision_bounds": 1.5},
        {"u_cost_penalized": -1.0},
        {"lambda_": 0.0},
        {"gap": -0.1},
        {"gap": float("inf")},
    ])
    def test_invalid_values(self, kwargs):
        from surveycal.options import CalibrationOptions
        from surveycal.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="Invalid calibration options"):
            CalibrationOptions.build(**kwargs)

    def test_strategy_from_flags(self):
        from surveycal.options import CalibrationOptions, BoundsStrategy

        options = CalibrationOptions.build(force_simplex=True, force_bisection=True)

        assert options.bounds_strategy is BoundsStrategy.BISECTION
