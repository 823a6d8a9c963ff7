import logging
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd

# Plotting
import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from ovsa.exceptions import ValidationError
from ovsa.modeling.imputation.ensemble import ImputationEnsemble
from ovsa.modeling.sensitivity.threshold_shift import ShiftTable, level_index

logger = logging.getLogger(__name__)


# PROPORTION COMPARATOR

class ProportionComparator:
    def __init__(self, scenario_prefix: str = "mnar", figsize: Tuple[int, int] = (10, 6)):
        self.scenario_prefix = scenario_prefix
        self.figsize = figsize

    def compare(
        self,
        relabeled_ensemble: Any,
        mar_column_name: str,
        originally_missing_column_name: str,
        shift_table: Any
    ) -> pd.DataFrame:
        ensemble = ImputationEnsemble.coerce(relabeled_ensemble)
        shifts = ShiftTable.coerce(shift_table)
        scenarios = shifts.scenario_columns(self.scenario_prefix)
        columns = [mar_column_name] + scenarios

        first = ensemble[0]
        for name in columns + [originally_missing_column_name]:
            if name not in first.columns:
                raise ValidationError("columns", f"column {name!r} does not exist in the relabelled data")

        level_count, labels = self._levels(first, scenarios[0], originally_missing_column_name)

        tables = []
        for i, member in enumerate(ensemble):
            missing = member[originally_missing_column_name].isna().to_numpy()
            n_missing = int(missing.sum())
            if n_missing == 0:
                raise ValidationError(
                    originally_missing_column_name,
                    f"no originally missing rows in imputation {i + 1}",
                )

            shares = np.empty((level_count, len(columns)))
            for j, column in enumerate(columns):
                levels = level_index(member[column])[missing]
                counts = np.bincount(levels - 1, minlength=level_count)[:level_count]
                shares[:, j] = counts / n_missing * 100
            tables.append(shares)

        mean = np.mean(tables, axis=0)
        result = pd.DataFrame(mean, index=pd.Index(labels, name="level"), columns=["mar"] + scenarios)
        logger.debug(f"Proportions over {ensemble.m} imputations:\n{result.round(2)}")
        return result

    @staticmethod
    def _levels(frame: pd.DataFrame, scenario_column: str, original_column: str) -> Tuple[int, List[Any]]:
        scenario = frame[scenario_column]
        if isinstance(scenario.dtype, pd.CategoricalDtype):
            level_count = len(scenario.cat.categories)
        else:
            level_count = int(pd.to_numeric(scenario).max())

        original = frame[original_column]
        if isinstance(original.dtype, pd.CategoricalDtype) and len(original.cat.categories) == level_count:
            return level_count, list(original.cat.categories)
        return level_count, list(range(1, level_count + 1))

    # PLOTTING

    def plot_proportions(
        self,
        table: pd.DataFrame,
        title: str = "Distribution of imputed levels",
        ax: Optional[plt.Axes] = None
    ) -> Figure:
        if ax is None:
            fig, ax = plt.subplots(figsize=self.figsize)
        else:
            fig = ax.figure

        x = np.arange(len(table.index))
        for column in table.columns:
            style = "k-" if column == "mar" else "--"
            ax.plot(x, table[column].to_numpy(), style, lw=2, marker="o", label=column)

        ax.set_xticks(x)
        ax.set_xticklabels([str(level) for level in table.index])
        ax.set_xlabel("Level", fontsize=12)
        ax.set_ylabel("Percentage of originally missing rows", fontsize=12)
        ax.set_title(title, fontsize=14)
        ax.legend(loc="upper right", fontsize=10)
        ax.grid(True, alpha=0.3)

        plt.tight_layout()
        return fig


def plot_proportions(table: pd.DataFrame, ax: Optional[plt.Axes] = None, **kwargs) -> Figure:
    return ProportionComparator().plot_proportions(table, ax=ax, **kwargs)


__all__ = [
    "ProportionComparator",
    "plot_proportions",
]
