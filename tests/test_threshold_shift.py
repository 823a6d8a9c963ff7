import numpy as np
import pandas as pd
import pytest

from ovsa.config.settings import RelabelConfig, UnresolvedPolicy
from ovsa.exceptions import InvalidThresholdsError, UnresolvedRowError, ValidationError
from ovsa.modeling.sensitivity import (
    ShiftTable,
    ThresholdShiftRelabeler,
    assign_levels,
    check_thresholds,
    level_index,
)

from conftest import ordinal

THRESHOLDS = [-1.0, 0.0, 1.0]
LINEAR_PREDICTOR = [0.0, 0.0, -2.0, 0.0, 0.0, 0.5, 0.0, 2.0]


def relabel(members, mask, shift_table=None, config=None, thresholds=None, predictors=None, **kwargs):
    shift_table = shift_table or {"delta_neutral": [0.0, 0.0, 0.0]}
    thresholds = thresholds or [THRESHOLDS, THRESHOLDS]
    predictors = predictors or [LINEAR_PREDICTOR, LINEAR_PREDICTOR]
    kwargs.setdefault("rng", 42)
    return ThresholdShiftRelabeler(config).relabel(
        members, mask, 4, thresholds, predictors, shift_table, mar_column="X1_mis_mar", **kwargs
    )


class TestAssignLevels:
    def test_smallest_containing_interval(self):
        bounds = np.array([-1.0, 0.0, 1.0, np.inf])
        scores = np.array([-2.0, -0.5, 0.5, 2.0, -1.0, 0.0])
        np.testing.assert_array_equal(assign_levels(scores, bounds), [1, 2, 3, 4, 1, 2])

    def test_non_monotone_bounds_applied_literally(self):
        bounds = np.array([0.5, -1.0, 2.0, np.inf])
        np.testing.assert_array_equal(assign_levels(np.array([-2.0, 1.0]), bounds), [1, 3])


class TestCheckThresholds:
    def test_valid(self):
        np.testing.assert_array_equal(check_thresholds([-1, 0, 1], 4, 0), THRESHOLDS)

    @pytest.mark.parametrize("thresholds", [[0.0, -1.0, 1.0], [0.0, 0.0, 1.0], [0.0, 1.0], [0.0, np.nan, 1.0]])
    def test_invalid(self, thresholds):
        with pytest.raises(InvalidThresholdsError, match="imputation 2"):
            check_thresholds(thresholds, 4, 1)


class TestLevelIndex:
    def test_categorical_codes(self):
        series = pd.Series(pd.Categorical(["low", "high", "mid"], categories=["low", "mid", "high"], ordered=True))
        np.testing.assert_array_equal(level_index(series), [1, 3, 2])

    def test_numeric(self):
        np.testing.assert_array_equal(level_index(pd.Series([1, 4, 2])), [1, 4, 2])

    def test_missing_rejected(self):
        with pytest.raises(ValidationError):
            level_index(pd.Series(pd.Categorical([1, None, 2], ordered=True)))


class TestThresholdShiftRelabeler:
    def test_deterministic_levels_without_noise(self, relabel_members):
        members, mask = relabel_members
        result = relabel(members, mask, noise_sd=0.0)

        column = result.members[0]["mnar1"]
        assert list(column.cat.categories) == [1, 2, 3, 4]
        assert column.cat.ordered
        assert list(column.to_numpy()[mask]) == [1, 3, 4]

    def test_observed_rows_keep_mar_level(self, relabel_members):
        members, mask = relabel_members
        result = relabel(members, mask, shift_table={"a": [0.0, 0.0, 0.0], "b": [1.0, 1.0, 1.0]})

        for original, relabelled in zip(members, result.members):
            for column in result.scenario_columns:
                np.testing.assert_array_equal(
                    level_index(relabelled[column])[~mask], level_index(original["X1_mis_mar"])[~mask]
                )
            pd.testing.assert_series_equal(relabelled["X1_mis_mar"], original["X1_mis_mar"])
            np.testing.assert_allclose(relabelled["eta"], LINEAR_PREDICTOR)

    def test_levels_within_range(self, relabel_members):
        members, mask = relabel_members
        result = relabel(members, mask, shift_table={"a": [0.3, -0.2, 0.1]})
        for frame in result.members:
            assert frame["mnar1"].isin([1, 2, 3, 4]).all()

    def test_extreme_shifts(self, relabel_members):
        members, mask = relabel_members
        result = relabel(members, mask, shift_table={"up": [10.0] * 3, "down": [-10.0] * 3})

        for frame in result.members:
            assert (frame["mnar1"].to_numpy()[mask] == 1).all()
            assert (frame["mnar2"].to_numpy()[mask] == 4).all()

    def test_threshold_tables(self, relabel_members):
        members, mask = relabel_members
        shifts = {"a": [0.5, 0.5, 0.5], "b": [-0.1, 0.0, 0.2]}
        result = relabel(members, mask, shift_table=shifts)

        assert result.scenario_columns == ["mnar1", "mnar2"]
        assert result.thresholds_old.shape == (3, 2)
        assert list(result.thresholds_old.index) == ["threshold1", "threshold2", "threshold3"]
        assert list(result.thresholds_old.columns) == ["imputation1", "imputation2"]
        np.testing.assert_allclose(
            result.thresholds_new["mnar2"]["imputation1"], np.array(THRESHOLDS) + shifts["b"]
        )
        assert result.total_unresolved == 0

    def test_reproducible_by_seed(self, relabel_members):
        members, mask = relabel_members
        first = relabel(members, mask, rng=7)
        second = relabel(members, mask, rng=7)
        for a, b in zip(first.members, second.members):
            pd.testing.assert_frame_equal(a, b)

    def test_parallel_matches_sequential(self, relabel_members):
        members, mask = relabel_members
        shifts = {"a": [0.0, 0.0, 0.0], "b": [0.4, 0.4, 0.4]}
        sequential = relabel(members, mask, shift_table=shifts, config=RelabelConfig(n_jobs=1), rng=11)
        parallel = relabel(members, mask, shift_table=shifts, config=RelabelConfig(n_jobs=2), rng=11)
        for a, b in zip(sequential.members, parallel.members):
            pd.testing.assert_frame_equal(a, b)

    def test_shared_noise(self, relabel_members):
        members, mask = relabel_members
        config = RelabelConfig(share_noise_across_scenarios=True)
        result = relabel(members, mask, shift_table={"a": [0.2] * 3, "b": [0.2] * 3}, config=config)
        for frame in result.members:
            pd.testing.assert_series_equal(frame["mnar1"], frame["mnar2"], check_names=False)

    def test_independent_noise_by_default(self):
        n = 200
        members = [
            pd.DataFrame({"Y": np.zeros(n, dtype=int), "X1_mis_mar": ordinal([2] * n, 4)})
            for _ in range(2)
        ]
        mask = np.ones(n, dtype=bool)
        shifts = {"a": [0.0] * 3, "b": [0.0] * 3}
        result = relabel(members, mask, shift_table=shifts, predictors=[[0.0] * n, [0.0] * n])

        for frame in result.members:
            assert not frame["mnar1"].equals(frame["mnar2"])
        assert not result.members[0]["mnar1"].equals(result.members[1]["mnar1"])

    def test_input_members_untouched(self, relabel_members):
        members, mask = relabel_members
        before = [m.copy() for m in members]
        relabel(members, mask)
        for original, copy in zip(members, before):
            pd.testing.assert_frame_equal(original, copy)


class TestUnresolvedRows:
    def test_backfill(self, relabel_members):
        members, mask = relabel_members
        predictors = [list(LINEAR_PREDICTOR), LINEAR_PREDICTOR]
        predictors[0][5] = np.nan
        result = relabel(members, mask, predictors=predictors)

        assert result.unresolved_counts.loc["imputation1", "mnar1"] == 1
        assert result.unresolved_counts.loc["imputation2", "mnar1"] == 0
        assert result.members[0]["mnar1"].notna().all()

    def test_raise_policy(self, relabel_members):
        members, mask = relabel_members
        predictors = [list(LINEAR_PREDICTOR), LINEAR_PREDICTOR]
        predictors[0][2] = np.nan
        config = RelabelConfig(unresolved_policy=UnresolvedPolicy.RAISE)

        with pytest.raises(UnresolvedRowError) as info:
            relabel(members, mask, predictors=predictors, config=config)
        assert info.value.member == 0
        assert info.value.n_rows == 1


class TestRelabelValidation:
    def test_shift_rows_must_match_thresholds(self, relabel_members):
        members, mask = relabel_members
        with pytest.raises(ValidationError) as info:
            relabel(members, mask, shift_table={"a": [0.0, 0.0]})
        assert info.value.field == "shift_table"

    def test_invalid_member_thresholds(self, relabel_members):
        members, mask = relabel_members
        with pytest.raises(InvalidThresholdsError, match="imputation 2"):
            relabel(members, mask, thresholds=[THRESHOLDS, [1.0, 0.0, -1.0]])

    def test_mask_length(self, relabel_members):
        members, mask = relabel_members
        with pytest.raises(ValidationError) as info:
            relabel(members, mask[:5])
        assert info.value.field == "missing_mask"

    def test_missing_mar_column(self, relabel_members):
        members, mask = relabel_members
        renamed = [m.rename(columns={"X1_mis_mar": "X1"}) for m in members]
        with pytest.raises(ValidationError) as info:
            relabel(renamed, mask)
        assert info.value.field == "mar_column"

    def test_mar_levels_out_of_range(self, relabel_members):
        members, mask = relabel_members
        numeric = [m.assign(X1_mis_mar=[0, 1, 2, 3, 3, 0, 5, 4]) for m in members]
        with pytest.raises(ValidationError, match="outside 1..4") as info:
            relabel(numeric, mask)
        assert info.value.field == "mar_column"

    def test_negative_noise(self, relabel_members):
        members, mask = relabel_members
        with pytest.raises(ValidationError):
            relabel(members, mask, noise_sd=-0.5)


class TestShiftTable:
    def test_from_mapping(self):
        table = ShiftTable({"a": [0.0, 0.5], "b": [1.0, 1.0], "c": [-1.0, 0.0]})
        assert table.n_thresholds == 2
        assert table.n_scenarios == 3
        assert table.names == ["a", "b", "c"]
        assert table.scenario_columns() == ["mnar1", "mnar2", "mnar3"]
        assert list(table.to_frame().index) == ["threshold1", "threshold2"]

    def test_from_array(self):
        table = ShiftTable(np.zeros((4, 2)))
        assert table.values.shape == (4, 2)
        assert ShiftTable.coerce(table) is table

    @pytest.mark.parametrize("bad", [
        {"a": [0.0, 1.0], "b": [0.0]},
        {"a": [0.0, np.nan]},
        {"a": ["x", "y"]},
        pd.DataFrame(index=[0, 1]),
    ])
    def test_invalid(self, bad):
        with pytest.raises(ValidationError):
            ShiftTable(bad)
