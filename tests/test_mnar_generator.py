import numpy as np
import pandas as pd
import pytest

from ovsa.config.settings import MissingnessConfig
from ovsa.exceptions import EmptyCandidatePoolWarning, ValidationError
from ovsa.generators.missing_patterns import MissingnessInjector, MissingnessSpec

from conftest import make_frame


def inject(data, seed=1, **kwargs):
    params = dict(
        outcome_column="Y",
        ordinal_column="X1",
        group_a_levels=[2],
        prob_a=0.5,
        group_b_levels=[4],
        prob_b=0.8,
    )
    params.update(kwargs)
    return MissingnessInjector(seed=seed).inject(data, **params)


class TestMissingnessInjector:
    def test_reference_scenario_counts(self, reference_data):
        y = reference_data["Y"].astype(int).to_numpy()
        x1 = reference_data["X1"].astype(int).to_numpy()
        pool_a = int(((y == 1) & (x1 == 2)).sum())
        pool_b = int(((y == 0) & (x1 == 4)).sum())

        result = inject(reference_data, id_column="id")

        expected = round(pool_a * 0.5) + round(pool_b * 0.8)
        assert result["X1_mis"].isna().sum() == expected

    def test_only_targeted_cells_removed(self, reference_data):
        result = inject(reference_data)
        removed = result[result["X1_mis"].isna()]

        group_a = (removed["Y"] == 1) & (removed["X1"] == 2)
        group_b = (removed["Y"] == 0) & (removed["X1"] == 4)
        assert (group_a | group_b).all()

    def test_original_column_untouched(self, reference_data):
        before = reference_data.copy()
        result = inject(reference_data)

        pd.testing.assert_frame_equal(reference_data, before)
        pd.testing.assert_series_equal(result["X1"], before["X1"])
        kept = result["X1_mis"].notna()
        assert (result.loc[kept, "X1_mis"] == result.loc[kept, "X1"]).all()
        assert result["X1_mis"].cat.ordered

    def test_round_half_to_even(self):
        y = [1] * 5 + [0] * 7
        x1 = [2] * 5 + [4] * 7
        result = inject(make_frame(y, x1), prob_a=0.5, prob_b=0.5)

        missing = result["X1_mis"].isna()
        assert missing[:5].sum() == 2   # round(2.5)
        assert missing[5:].sum() == 4   # round(3.5)

    def test_extreme_probabilities(self):
        y = [1] * 6 + [0] * 6
        x1 = [2] * 6 + [4] * 6
        result = inject(make_frame(y, x1), prob_a=1.0, prob_b=0.0)

        missing = result["X1_mis"].isna()
        assert missing[:6].all()
        assert not missing[6:].any()

    def test_empty_pool_warns(self):
        frame = make_frame([0, 0, 1, 1], [4, 4, 3, 3])
        with pytest.warns(EmptyCandidatePoolWarning, match="group A"):
            result = inject(frame, prob_b=1.0)

        assert result["X1_mis"].isna().sum() == 2

    def test_empty_pool_reported(self):
        injector = MissingnessInjector(seed=1)
        with pytest.warns(EmptyCandidatePoolWarning):
            injector.inject(make_frame([0, 0, 1, 1], [4, 4, 3, 3]), "Y", "X1", [2], 0.5, [4], 1.0)

        assert injector.report_.empty_pools == [("A", None)]
        assert injector.report_.to_dict()["empty_pools"] == ["A"]

    def test_report(self):
        y = [1] * 4 + [0] * 10
        x1 = [2] * 4 + [4] * 10
        injector = MissingnessInjector(seed=3)
        injector.inject(make_frame(y, x1), "Y", "X1", [2], 0.5, [4], 0.8)

        report = injector.report_
        assert [r.n_removed for r in report.removals] == [2, 8]
        assert report.total_removed == 10
        assert report.missing_rate == pytest.approx(10 / 14)
        assert "MNAR INJECTION REPORT" in report.summary()
        assert report.to_dict()["total_removed"] == 10

    def test_reproducible(self, reference_data):
        first = inject(reference_data, seed=99)
        second = inject(reference_data, seed=99)
        pd.testing.assert_frame_equal(first, second)

    def test_repeated_index_labels(self):
        # Labels 0..9 appear twice after the concat
        frame = pd.concat([make_frame([1] * 10, [2] * 10), make_frame([0] * 10, [1] * 10)])
        with pytest.warns(EmptyCandidatePoolWarning, match="group B"):
            result = inject(frame, prob_a=0.5, prob_b=0.5)

        removed = result[result["X1_mis"].isna()]
        assert len(removed) == 5
        assert (removed["Y"] == 1).all()
        assert (result["X1_mis"].iloc[10:] == 1).all()

    def test_categorical_outcome_labels(self):
        frame = make_frame([1, 1, 0, 0], [2, 2, 4, 4])
        frame["Y"] = pd.Categorical(["1", "1", "0", "0"])
        result = inject(frame, prob_a=1.0, prob_b=1.0)
        assert result["X1_mis"].isna().sum() == 4


class TestInjectorValidation:
    def test_probability_out_of_range(self, reference_data):
        with pytest.raises(ValidationError) as info:
            inject(reference_data, prob_a=1.5)
        assert info.value.field == "prob_a"

    def test_unknown_column(self, reference_data):
        with pytest.raises(ValidationError) as info:
            inject(reference_data, ordinal_column="X9")
        assert info.value.field == "ordinal_column"

    def test_unordered_ordinal(self, reference_data):
        data = reference_data.copy()
        data["X1"] = data["X1"].astype(int)
        with pytest.raises(ValidationError, match="ordered categorical"):
            inject(data)

    def test_non_binary_outcome(self):
        frame = make_frame([0, 1, 2], [1, 2, 3])
        with pytest.raises(ValidationError) as info:
            inject(frame)
        assert info.value.field == "outcome_column"

    def test_unknown_level(self, reference_data):
        with pytest.raises(ValidationError) as info:
            inject(reference_data, group_b_levels=[7])
        assert info.value.field == "group_b_levels"

    def test_duplicate_ids(self):
        frame = make_frame([0, 1, 1], [1, 2, 2])
        frame["id"] = [1, 1, 2]
        with pytest.raises(ValidationError) as info:
            inject(frame, id_column="id")
        assert info.value.field == "id_column"

    def test_input_not_modified_on_error(self, reference_data):
        before = reference_data.copy()
        with pytest.raises(ValidationError):
            inject(reference_data, prob_b=-0.1)
        pd.testing.assert_frame_equal(reference_data, before)


class TestStratifiedInjection:
    def test_per_stratum_counts(self, reference_data):
        table = {1: (0.2, 0.3), 2: (0.5, 0.4), 3: (0.4, 0.2), 4: (0.3, 0.3)}
        result = inject(reference_data, strata_column="X2", strata_probabilities=table)

        for stratum, (pa, pb) in table.items():
            part = reference_data[reference_data["X2"] == stratum]
            pool_a = int(((part["Y"] == 1) & (part["X1"] == 2)).sum())
            pool_b = int(((part["Y"] == 0) & (part["X1"] == 4)).sum())
            removed = result.loc[result["X2"] == stratum, "X1_mis"].isna().sum()
            assert removed == round(pool_a * pa) + round(pool_b * pb)

    def test_index_preserved(self, reference_data):
        table = {1: (0.5, 0.5), 2: (0.5, 0.5), 3: (0.5, 0.5), 4: (0.5, 0.5)}
        result = inject(reference_data, strata_column="X2", strata_probabilities=table)

        assert len(result) == len(reference_data)
        assert set(result.index) == set(reference_data.index)
        pd.testing.assert_series_equal(
            result.sort_index()["X1"], reference_data["X1"]
        )

    def test_data_frame_table(self, reference_data):
        table = pd.DataFrame({1: [0.2, 0.3], 2: [0.5, 0.4], 3: [0.4, 0.2], 4: [0.3, 0.3]})
        result = inject(reference_data, strata_column="X2", strata_probabilities=table)
        assert result["X1_mis"].isna().any()

    def test_missing_stratum_probabilities(self, reference_data):
        with pytest.raises(ValidationError) as info:
            inject(reference_data, strata_column="X2", strata_probabilities={1: (0.2, 0.3)})
        assert info.value.field == "strata_probabilities"

    def test_missing_stratum_values(self, reference_data):
        data = reference_data.copy()
        data["X2"] = data["X2"].astype(float)
        data.loc[data.index[0], "X2"] = np.nan
        table = {1: (0.5, 0.5), 2: (0.5, 0.5), 3: (0.5, 0.5), 4: (0.5, 0.5)}

        with pytest.raises(ValidationError) as info:
            inject(data, strata_column="X2", strata_probabilities=table)
        assert info.value.field == "strata_column"


class TestMissingnessSpec:
    def test_frozen(self):
        spec = MissingnessSpec.build([2], 0.5, [4], 0.8)
        with pytest.raises(Exception):
            spec.prob_a = 0.1

    def test_scalar_levels(self):
        spec = MissingnessSpec.build(2, 0.5, 4, 0.8)
        assert spec.group_a_levels == (2,)

    def test_generate_uses_config(self, reference_data):
        injector = MissingnessInjector(MissingnessConfig(prob_a=1.0, prob_b=0.0), seed=2)
        data, report = injector.generate(reference_data)

        pool_a = int(((reference_data["Y"] == 1) & (reference_data["X1"] == 2)).sum())
        assert data["X1_mis"].isna().sum() == pool_a
        assert report.total_removed == pool_a
