import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from ovsa.exceptions import ValidationError
from ovsa.modeling.evaluation import ProportionComparator, plot_proportions

from conftest import ordinal

SHIFTS = {"a": [0.5, 0.5], "b": [-0.5, -0.5]}


def member(mar, mnar1, mnar2):
    return pd.DataFrame({
        "X1_mis": ordinal([1, np.nan, np.nan, np.nan], 3),
        "X1_mis_mar": ordinal(mar, 3),
        "mnar1": ordinal(mnar1, 3),
        "mnar2": ordinal(mnar2, 3),
    })


@pytest.fixture
def relabelled():
    return [
        member([1, 1, 2, 3], [1, 1, 1, 1], [1, 3, 3, 3]),
        member([1, 2, 2, 2], [1, 1, 1, 2], [1, 3, 3, 3]),
    ]


def compare(members, **kwargs):
    return ProportionComparator().compare(members, "X1_mis_mar", "X1_mis", SHIFTS, **kwargs)


class TestProportionComparator:
    def test_averaged_over_imputations(self, relabelled):
        table = compare(relabelled)

        assert list(table.columns) == ["mar", "mnar1", "mnar2"]
        assert table.index.name == "level"
        assert list(table.index) == [1, 2, 3]
        np.testing.assert_allclose(table["mar"], [100 / 6, 400 / 6, 100 / 6])
        np.testing.assert_allclose(table["mnar1"], [500 / 6, 100 / 6, 0.0])
        np.testing.assert_allclose(table["mnar2"], [0.0, 0.0, 100.0])

    def test_columns_sum_to_hundred(self, relabelled):
        table = compare(relabelled)
        np.testing.assert_allclose(table.sum(axis=0), 100.0)

    def test_observed_rows_ignored(self, relabelled):
        altered = [frame.copy() for frame in relabelled]
        for frame in altered:
            frame.loc[0, ["X1_mis_mar", "mnar1", "mnar2"]] = 3
        pd.testing.assert_frame_equal(compare(altered), compare(relabelled))

    def test_idempotent(self, relabelled):
        pd.testing.assert_frame_equal(compare(relabelled), compare(relabelled))

    def test_level_labels_from_original_categories(self):
        labels = ["low", "mid", "high"]
        frame = member([1, 2, 3, 3], [1, 1, 2, 2], [3, 3, 3, 3])
        frame["X1_mis"] = pd.Categorical(
            ["low", None, None, None], categories=labels, ordered=True
        )
        table = compare([frame, frame.copy()])
        assert list(table.index) == labels

    def test_no_missing_rows(self, relabelled):
        complete = [frame.assign(X1_mis=frame["X1_mis_mar"]) for frame in relabelled]
        with pytest.raises(ValidationError, match="no originally missing rows"):
            compare(complete)

    def test_absent_column(self, relabelled):
        with pytest.raises(ValidationError, match="mnar2"):
            compare([frame.drop(columns=["mnar2"]) for frame in relabelled])


class TestPlotProportions:
    def test_returns_figure(self, relabelled):
        table = compare(relabelled)
        fig = plot_proportions(table, title="Imputed levels")

        assert isinstance(fig, Figure)
        ax = fig.axes[0]
        assert ax.get_title() == "Imputed levels"
        assert len(ax.get_lines()) == 3
