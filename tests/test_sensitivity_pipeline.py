import numpy as np
import pandas as pd
import pytest

from ovsa.config.settings import DEFAULT_SHIFT_TABLE, RelabelConfig
from ovsa.exceptions import InvalidThresholdsError, ValidationError
from ovsa.generators.missing_patterns import MissingnessInjector
from ovsa.modeling.imputation import ImputationEnsemble
from ovsa.modeling.sensitivity import (
    MNARSensitivityAnalysis,
    SensitivityResult,
    assign_levels,
    level_index,
)

FORMULA = "X1_mis_mar ~ Y + X2"


@pytest.fixture
def incomplete(small_reference_data):
    data = MissingnessInjector(seed=1).inject(small_reference_data, "Y", "X1", [2], 0.5, [4], 0.8)
    return data


@pytest.fixture
def analysis_frame(incomplete):
    return incomplete.drop(columns=["id", "X1"])


@pytest.fixture
def members(incomplete, analysis_frame):
    # Completed datasets filled from the true values, one of them perturbed
    rng = np.random.default_rng(5)
    missing = analysis_frame["X1_mis"].isna().to_numpy()
    out = []
    for perturb in (False, True):
        frame = analysis_frame.copy()
        values = incomplete["X1"].to_numpy().copy()
        if perturb:
            rows = np.flatnonzero(missing)
            values[rows] = rng.integers(1, 6, size=len(rows))
        frame["X1_mis"] = pd.Categorical(values, categories=[1, 2, 3, 4, 5], ordered=True)
        out.append(frame)
    return out


def run(analysis_frame, members, **kwargs):
    params = dict(formula=FORMULA, shift_table=DEFAULT_SHIFT_TABLE, ordinal_column="X1_mis", seed=3)
    params.update(kwargs)
    return MNARSensitivityAnalysis().run(analysis_frame, members, **params)


class TestMNARSensitivityAnalysis:
    def test_result_layout(self, analysis_frame, members):
        result = run(analysis_frame, members)

        assert isinstance(result, SensitivityResult)
        assert result.m == 2
        assert result.mar_column == "X1_mis_mar"
        assert result.missing_column == "X1_mis"
        assert result.scenario_columns == ["mnar1", "mnar2", "mnar3", "mnar4"]
        assert result.thresholds_old.shape == (4, 2)
        assert set(result.thresholds_new) == set(result.scenario_columns)
        assert len(result.fits) == 2

        frame = result.mnar_data[0]
        for column in ["X1_mis", "X1_mis_mar", "eta", "mnar1", "mnar4"]:
            assert column in frame.columns
        pd.testing.assert_series_equal(frame["X1_mis"], analysis_frame["X1_mis"])

    def test_observed_rows_unchanged(self, analysis_frame, members):
        result = run(analysis_frame, members)
        observed = analysis_frame["X1_mis"].notna().to_numpy()

        for frame in result.mnar_data:
            mar = level_index(frame["X1_mis_mar"])
            for column in result.scenario_columns:
                np.testing.assert_array_equal(level_index(frame[column])[observed], mar[observed])

    def test_shifted_thresholds(self, analysis_frame, members):
        result = run(analysis_frame, members)
        for l, column in enumerate(result.scenario_columns):
            shift = np.array(list(DEFAULT_SHIFT_TABLE.values())[l])
            np.testing.assert_allclose(
                result.thresholds_new[column].to_numpy(),
                result.thresholds_old.to_numpy() + shift[:, None],
            )

    def test_zero_shift_without_noise(self, analysis_frame, members):
        analysis = MNARSensitivityAnalysis(RelabelConfig(noise_sd=0.0))
        shifts = {"zero": [0.0] * 4, "up": [0.5] * 4}
        result = analysis.run(analysis_frame, members, FORMULA, shifts, "X1_mis", seed=3)
        missing = analysis_frame["X1_mis"].isna().to_numpy()

        for i, frame in enumerate(result.mnar_data):
            bounds = np.append(result.thresholds_old.iloc[:, i].to_numpy(), np.inf)
            expected = assign_levels(frame["eta"].to_numpy()[missing], bounds)
            mar = level_index(frame["X1_mis_mar"])

            relabelled = level_index(frame["mnar1"])
            np.testing.assert_array_equal(relabelled[missing], expected)
            np.testing.assert_array_equal(relabelled[~missing], mar[~missing])

    def test_reproducible(self, analysis_frame, members):
        first = run(analysis_frame, members, seed=9)
        second = run(analysis_frame, members, seed=9)
        for a, b in zip(first.mnar_data, second.mnar_data):
            pd.testing.assert_frame_equal(a, b)

    def test_ensemble_and_dict(self, analysis_frame, members):
        result = run(analysis_frame, members)
        assert isinstance(result.ensemble(), ImputationEnsemble)
        summary = result.to_dict()
        assert summary["m"] == 2
        assert summary["scenario_columns"] == result.scenario_columns

    def test_custom_suffix(self, analysis_frame, members):
        analysis = MNARSensitivityAnalysis(RelabelConfig(mar_suffix="_imp"))
        result = analysis.run(
            analysis_frame, members, "X1_mis_imp ~ Y + X2", DEFAULT_SHIFT_TABLE, "X1_mis", seed=1
        )
        assert result.mar_column == "X1_mis_imp"
        assert "X1_mis_imp" in result.mnar_data[0].columns


class TestSensitivityValidation:
    def test_level_count_mismatch(self, analysis_frame, members):
        shifts = {"a": [0.0] * 3}
        with pytest.raises(InvalidThresholdsError, match="imputation 1"):
            run(analysis_frame, members, shift_table=shifts, level_count=4)

    def test_unknown_ordinal_column(self, analysis_frame, members):
        with pytest.raises(ValidationError) as info:
            run(analysis_frame, members, ordinal_column="X9")
        assert info.value.field == "ordinal_column"

    def test_member_row_count(self, analysis_frame, members):
        short = [members[0], members[1].iloc[:-1]]
        with pytest.raises(ValidationError):
            run(analysis_frame, short)

    def test_shift_table_rows(self, analysis_frame, members):
        with pytest.raises(ValidationError) as info:
            run(analysis_frame, members, shift_table={"a": [0.0, 0.0]})
        assert info.value.field == "shift_table"
