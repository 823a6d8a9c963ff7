import numpy as np
import pytest

from ovsa.exceptions import ValidationError
from ovsa.modeling.ordinal import OrdinalFit, OrdinalProbitFitter


@pytest.fixture
def fitted(reference_data):
    return OrdinalProbitFitter().fit(reference_data, "X1 ~ Y + X2")


class TestOrdinalProbitFitter:
    def test_thresholds_increasing(self, fitted):
        assert isinstance(fitted, OrdinalFit)
        assert fitted.n_levels == 5
        assert fitted.levels == [1, 2, 3, 4, 5]
        assert len(fitted.thresholds) == 4
        assert np.all(np.diff(fitted.thresholds) > 0)

    def test_linear_predictor_per_row(self, fitted, reference_data):
        assert fitted.linear_predictor.shape == (len(reference_data),)
        assert np.isfinite(fitted.linear_predictor).all()

    def test_coefficients_exclude_thresholds(self, fitted):
        coefficients = fitted.coefficients()
        assert len(coefficients) == fitted.results.model.exog.shape[1]
        assert all(np.isfinite(v) for v in coefficients.values())

    def test_outcome_name(self):
        assert OrdinalProbitFitter.outcome_name("X1_mis_mar ~ Y + X2") == "X1_mis_mar"
        with pytest.raises(ValidationError):
            OrdinalProbitFitter.outcome_name("X1_mis_mar + Y")


class TestOrdinalValidation:
    def test_unordered_outcome(self, reference_data):
        data = reference_data.copy()
        data["X1"] = data["X1"].astype(int)
        with pytest.raises(ValidationError, match="ordered categorical"):
            OrdinalProbitFitter().fit(data, "X1 ~ Y + X2")

    def test_missing_outcome_column(self, reference_data):
        with pytest.raises(ValidationError, match="does not exist"):
            OrdinalProbitFitter().fit(reference_data, "X9 ~ Y + X2")

    def test_incomplete_outcome(self, reference_data):
        data = reference_data.copy()
        data.loc[data.index[:5], "X1"] = np.nan
        with pytest.raises(ValidationError, match="complete"):
            OrdinalProbitFitter().fit(data, "X1 ~ Y + X2")
