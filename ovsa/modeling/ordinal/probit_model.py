import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np
import pandas as pd

# statsmodels imports
from statsmodels.miscmodels.ordinal_model import OrderedModel

from ovsa.exceptions import InvalidThresholdsError, ValidationError

logger = logging.getLogger(__name__)


# DATACLASSES

@dataclass
class OrdinalFit:
    thresholds: np.ndarray         # K-1 cut-points on the latent scale
    linear_predictor: np.ndarray   # x'beta per row, thresholds excluded
    levels: List[Any]
    results: Any

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    def coefficients(self) -> Dict[str, float]:
        params = self.results.params
        k_exog = self.results.model.exog.shape[1]
        return {str(name): float(value) for name, value in params.iloc[:k_exog].items()}


# ORDINAL PROBIT FITTER

class OrdinalProbitFitter:
    """Cumulative-link ordinal regression with a probit link.

    Wraps statsmodels ``OrderedModel``. The fitted latent variable is
    ``y* = x'beta + e`` with ``e ~ N(0, 1)``; category k is observed when
    ``threshold[k-1] < y* <= threshold[k]``.
    """

    def __init__(
        self,
        distr: str = "probit",
        method: str = "bfgs",
        maxiter: int = 500
    ):
        self.distr = distr
        self.method = method
        self.maxiter = maxiter

    @staticmethod
    def outcome_name(formula: str) -> str:
        if "~" not in formula:
            raise ValidationError("formula", f"{formula!r} has no '~'")
        return formula.split("~", 1)[0].strip()

    def fit(self, data: pd.DataFrame, formula: str) -> OrdinalFit:
        outcome = self.outcome_name(formula)
        if outcome not in data.columns:
            raise ValidationError("formula", f"outcome {outcome!r} does not exist in the dataset")

        series = data[outcome]
        if not isinstance(series.dtype, pd.CategoricalDtype) or not series.cat.ordered:
            raise ValidationError("formula", f"outcome {outcome!r} must be an ordered categorical")
        if series.isna().any():
            raise ValidationError("formula", f"outcome {outcome!r} must be complete")

        model = OrderedModel.from_formula(formula, data, distr=self.distr)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            results = model.fit(method=self.method, disp=False, maxiter=self.maxiter)

        if not results.mle_retvals.get("converged", True):
            logger.warning(f"Ordinal {self.distr} model '{formula}' did not converge")

        params = np.asarray(results.params)
        exog = np.asarray(results.model.exog)
        if exog.shape[0] != len(data):
            raise ValidationError(
                "data", f"{len(data) - exog.shape[0]} rows dropped while building '{formula}'"
            )

        thresholds = np.asarray(results.model.transform_threshold_params(params))[1:-1]
        linear_predictor = exog @ params[:exog.shape[1]]

        levels = list(series.cat.categories)
        if len(thresholds) != len(levels) - 1:
            raise InvalidThresholdsError(
                f"expected {len(levels) - 1} thresholds for {len(levels)} levels, got {len(thresholds)}"
            )

        return OrdinalFit(
            thresholds=thresholds,
            linear_predictor=linear_predictor,
            levels=levels,
            results=results,
        )


__all__ = [
    "OrdinalFit",
    "OrdinalProbitFitter",
]
