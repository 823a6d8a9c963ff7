import logging
import re
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

# statsmodels imports
import statsmodels.api as sm
import statsmodels.formula.api as smf

from ovsa.config.settings import PoolingConfig
from ovsa.exceptions import ValidationError
from ovsa.generators.missing_patterns.mnar_generator import binary_outcome
from ovsa.modeling.imputation.ensemble import ImputationEnsemble
from ovsa.modeling.sensitivity.threshold_shift import ShiftTable

logger = logging.getLogger(__name__)


# CONSTANTS

LAMBDA_FLOOR = 1e-4

POOLED_COLUMNS = [
    "estimate", "std_error", "statistic", "df", "p_value",
    "conf_low", "conf_high", "riv", "lambda", "fmi",
]


# RUBIN'S RULES

def pool_estimates(
    estimates: Union[pd.DataFrame, np.ndarray, Sequence[Sequence[float]]],
    variances: Union[pd.DataFrame, np.ndarray, Sequence[Sequence[float]]],
    dfcom: Optional[float] = None,
    alpha: float = 0.05,
    terms: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """Combine per-imputation estimates with Rubin's rules.

    ``estimates`` and ``variances`` hold one row per imputation and one
    column per term. Degrees of freedom follow Barnard and Rubin (1999)
    with the complete-data degrees of freedom ``dfcom``; ``None`` means a
    large-sample analysis.
    """
    if isinstance(estimates, pd.DataFrame):
        terms = list(estimates.columns) if terms is None else list(terms)
    Q = np.atleast_2d(np.asarray(estimates, dtype=float))
    U = np.atleast_2d(np.asarray(variances, dtype=float))

    if Q.shape != U.shape:
        raise ValidationError("variances", f"shape {U.shape} does not match estimates {Q.shape}")
    m = Q.shape[0]
    if m < 2:
        raise ValidationError("estimates", "at least two imputations are needed for pooling")
    if (U < 0).any():
        raise ValidationError("variances", "must be non-negative")
    if terms is None:
        terms = [f"term{j + 1}" for j in range(Q.shape[1])]

    qbar = Q.mean(axis=0)
    ubar = U.mean(axis=0)
    b = Q.var(axis=0, ddof=1)
    t = ubar + (1 + 1 / m) * b

    with np.errstate(divide="ignore", invalid="ignore"):
        riv = (1 + 1 / m) * b / ubar
        lam = np.maximum((1 + 1 / m) * b / t, LAMBDA_FLOOR)

    dfold = (m - 1) / lam ** 2
    if dfcom is None or np.isinf(dfcom):
        df = dfold
    else:
        dfobs = (dfcom + 1) / (dfcom + 3) * dfcom * (1 - lam)
        df = dfold * dfobs / (dfold + dfobs)

    fmi = (riv + 2 / (df + 3)) / (riv + 1)
    std_error = np.sqrt(t)
    with np.errstate(divide="ignore", invalid="ignore"):
        statistic = qbar / std_error
    p_value = 2 * stats.t.sf(np.abs(statistic), df)
    crit = stats.t.ppf(1 - alpha / 2, df)

    return pd.DataFrame(
        {
            "estimate": qbar,
            "std_error": std_error,
            "statistic": statistic,
            "df": df,
            "p_value": p_value,
            "conf_low": qbar - crit * std_error,
            "conf_high": qbar + crit * std_error,
            "riv": riv,
            "lambda": lam,
            "fmi": fmi,
        },
        index=pd.Index(terms, name="term"),
    )[POOLED_COLUMNS]


# POOLED RESULT

@dataclass
class PooledResult:
    table: pd.DataFrame
    m: int
    formula: str
    dfcom: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula,
            "m": self.m,
            "dfcom": self.dfcom,
            "terms": self.table.reset_index().to_dict(orient="records"),
        }

    def summary(self) -> str:
        lines = [
            f"Pooled estimates ({self.m} imputations): {self.formula}",
            self.table[["estimate", "std_error", "statistic", "df", "p_value",
                        "conf_low", "conf_high"]].round(4).to_string(),
        ]
        return "\n".join(lines)


# RUBIN POOLER

class RubinPooler:
    def __init__(self, config: Optional[PoolingConfig] = None):
        self.config = config or PoolingConfig()

    # MODEL FITTING

    @staticmethod
    def _split(formula: str) -> List[str]:
        if "~" not in formula:
            raise ValidationError("formula", f"{formula!r} has no '~'")
        lhs, rhs = formula.split("~", 1)
        return [lhs.strip(), rhs.strip()]

    def fit(self, data: pd.DataFrame, formula: str) -> Any:
        outcome, _ = self._split(formula)
        if outcome not in data.columns:
            raise ValidationError("formula", f"outcome {outcome!r} does not exist in the dataset")

        # Binary outcomes stored as labels are refitted as 0/1
        frame = data.copy()
        frame[outcome] = binary_outcome(frame[outcome], name="formula")

        model = smf.glm(formula, data=frame, family=sm.families.Binomial())
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            return model.fit()

    def pool(self, fits: Sequence[Any], formula: str = "") -> PooledResult:
        fits = list(fits)
        if len(fits) < 2:
            raise ValidationError("fits", "at least two fitted models are needed for pooling")

        terms = list(fits[0].params.index)
        for i, fit in enumerate(fits[1:], start=2):
            if list(fit.params.index) != terms:
                raise ValidationError("fits", f"model {i} has different terms than model 1")

        estimates = pd.DataFrame([np.asarray(f.params) for f in fits], columns=terms)
        variances = pd.DataFrame([np.diag(np.asarray(f.cov_params())) for f in fits], columns=terms)
        dfcom = float(fits[0].df_resid)

        table = pool_estimates(estimates, variances, dfcom=dfcom, alpha=self.config.alpha)
        return PooledResult(table=table, m=len(fits), formula=formula, dfcom=dfcom)

    def fit_pool(self, datasets: Any, formula: str) -> PooledResult:
        ensemble = ImputationEnsemble.coerce(datasets)
        logger.info(f"Fitting '{formula}' on {ensemble.m} imputations")
        fits = [self.fit(member, formula) for member in ensemble]
        return self.pool(fits, formula=formula)

    @staticmethod
    def replace_term(formula: str, term: str, replacement: str) -> str:
        lhs, rhs = RubinPooler._split(formula)
        pattern = rf"(?<![\w.]){re.escape(term)}(?![\w.])"
        if not re.search(pattern, rhs):
            raise ValidationError("ordinal_term", f"{term!r} does not appear in '{formula}'")
        return f"{lhs} ~ {re.sub(pattern, replacement, rhs)}"

    def fit_pool_scenarios(
        self,
        datasets: Any,
        formula: str,
        ordinal_term: str,
        scenario_columns: Sequence[str]
    ) -> Dict[str, PooledResult]:
        ensemble = ImputationEnsemble.coerce(datasets)
        results = {}
        for column in scenario_columns:
            scenario_formula = self.replace_term(formula, ordinal_term, column)
            results[column] = self.fit_pool(ensemble, scenario_formula)
        return results

    # EITHER/OR ANALYSIS

    def analyze(
        self,
        datasets: Any,
        formula: Optional[str] = None,
        shift_table: Any = None,
        base_formula: Optional[str] = None,
        ordinal_term: Optional[str] = None,
        scenario_prefix: str = "mnar"
    ) -> Union[PooledResult, Dict[str, PooledResult]]:
        """MAR analysis when ``formula`` is given, MNAR analysis when ``shift_table`` is.

        The MNAR analysis refits ``base_formula`` (default: the configured
        analysis formula) once per scenario column, with ``ordinal_term``
        replaced by that column.
        """
        if formula is not None and shift_table is not None:
            raise ValidationError(
                "formula", "provide either formula for a MAR analysis or shift_table for a MNAR analysis, not both"
            )
        if formula is None and shift_table is None:
            raise ValidationError(
                "formula", "provide formula for a MAR analysis or shift_table for a MNAR analysis"
            )

        if formula is not None:
            return self.fit_pool(datasets, formula)

        base = base_formula or self.config.formula
        if ordinal_term is None:
            _, rhs = self._split(base)
            found = re.findall(r"\b(\w+_mar)\b", rhs)
            if not found:
                raise ValidationError("ordinal_term", f"cannot infer the ordinal term of '{base}'")
            ordinal_term = found[0]

        scenarios = ShiftTable.coerce(shift_table).scenario_columns(scenario_prefix)
        return self.fit_pool_scenarios(datasets, base, ordinal_term, scenarios)


__all__ = [
    "LAMBDA_FLOOR",
    "POOLED_COLUMNS",
    "pool_estimates",
    "PooledResult",
    "RubinPooler",
]
