import logging
import warnings
from typing import Callable, Dict

import numpy as np
import pandas as pd
from numpy.random import Generator

# sklearn imports
from sklearn.linear_model import LogisticRegression

# statsmodels imports
import statsmodels.api as sm
from statsmodels.miscmodels.ordinal_model import OrderedModel

from ovsa.config.settings import ImputationMethod
from ovsa.generators.base import sample_categories

logger = logging.getLogger(__name__)


# CONSTANTS

# Weak ridge penalty keeps bootstrap fits finite under separation
LOGISTIC_C = 1e4
LOGISTIC_MAX_ITER = 1000


# DESIGN MATRIX

def design_matrix(frame: pd.DataFrame) -> pd.DataFrame:
    # Categorical and string predictors are dummy coded against their first level
    encoded = pd.get_dummies(frame, drop_first=True, dtype=float)
    return encoded.astype(float)


def drop_constant_columns(X: pd.DataFrame) -> pd.DataFrame:
    if X.empty:
        return X
    keep = X.columns[X.nunique(dropna=False) > 1]
    return X[keep]


def default_method(series: pd.Series) -> ImputationMethod:
    if series.dtype == bool:
        return ImputationMethod.LOGREG
    if isinstance(series.dtype, pd.CategoricalDtype):
        n_levels = len(series.cat.categories)
        if n_levels <= 2:
            return ImputationMethod.LOGREG
        if series.cat.ordered:
            return ImputationMethod.POLR
        return ImputationMethod.POLYREG
    if pd.api.types.is_numeric_dtype(series):
        return ImputationMethod.PMM
    n_levels = series.dropna().nunique()
    return ImputationMethod.LOGREG if n_levels <= 2 else ImputationMethod.POLYREG


# CONDITIONAL DRAWS
# Every draw takes (rng, X_obs, y_obs, X_mis) and returns one value per
# row of X_mis on the scale of y_obs.

def _bootstrap(rng: Generator, n: int) -> np.ndarray:
    return rng.integers(0, n, size=n)


def _draw_from_probabilities(rng: Generator, probabilities: np.ndarray, classes: np.ndarray) -> np.ndarray:
    return np.asarray(classes, dtype=object)[sample_categories(rng, probabilities)]


def draw_sample(rng: Generator, X_obs: pd.DataFrame, y_obs: pd.Series, X_mis: pd.DataFrame) -> np.ndarray:
    values = y_obs.to_numpy()
    return values[rng.integers(0, len(values), size=len(X_mis))]


def draw_logistic(rng: Generator, X_obs: pd.DataFrame, y_obs: pd.Series, X_mis: pd.DataFrame) -> np.ndarray:
    # Bootstrap logistic (binary) or multinomial (nominal) regression
    idx = _bootstrap(rng, len(y_obs))
    y_boot = y_obs.to_numpy(dtype=object)[idx]
    classes = pd.unique(y_boot)
    if len(classes) < 2:
        return np.full(len(X_mis), classes[0], dtype=object)

    X_boot = drop_constant_columns(X_obs.iloc[idx].reset_index(drop=True))
    if X_boot.shape[1] == 0:
        return draw_sample(rng, X_obs, pd.Series(y_boot), X_mis)

    # Labels are fitted by their string form and mapped back afterwards
    labels = {str(c): c for c in classes}
    model = LogisticRegression(C=LOGISTIC_C, max_iter=LOGISTIC_MAX_ITER)
    model.fit(X_boot.to_numpy(), np.array([str(v) for v in y_boot]))

    probabilities = model.predict_proba(X_mis[X_boot.columns].to_numpy())
    fitted_classes = np.array([labels[c] for c in model.classes_], dtype=object)
    return _draw_from_probabilities(rng, probabilities, fitted_classes)


def draw_polr(rng: Generator, X_obs: pd.DataFrame, y_obs: pd.Series, X_mis: pd.DataFrame) -> np.ndarray:
    # Bootstrap proportional odds model
    idx = _bootstrap(rng, len(y_obs))
    categories = list(y_obs.cat.categories) if isinstance(y_obs.dtype, pd.CategoricalDtype) else sorted(pd.unique(y_obs))
    y_boot = pd.Series(
        pd.Categorical(y_obs.to_numpy(dtype=object)[idx], categories=categories, ordered=True)
    ).cat.remove_unused_categories()

    present = list(y_boot.cat.categories)
    if len(present) < 2:
        return np.full(len(X_mis), present[0], dtype=object)
    if len(present) == 2:
        return draw_logistic(rng, X_obs, y_obs, X_mis)

    X_boot = drop_constant_columns(X_obs.iloc[idx].reset_index(drop=True))
    if X_boot.shape[1] == 0:
        return draw_sample(rng, X_obs, y_obs, X_mis)

    try:
        model = OrderedModel(y_boot, X_boot, distr="logit")
    except ValueError as exc:
        # Implicit constant among the bootstrap dummies
        logger.debug(f"Proportional odds model rejected, using multinomial draw: {exc}")
        return draw_logistic(rng, X_obs, y_obs, X_mis)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        results = model.fit(method="bfgs", disp=False, maxiter=200)

    probabilities = np.asarray(results.model.predict(results.params, exog=X_mis[X_boot.columns].to_numpy()))
    return _draw_from_probabilities(rng, probabilities, np.array(present, dtype=object))


def draw_pmm(
    rng: Generator,
    X_obs: pd.DataFrame,
    y_obs: pd.Series,
    X_mis: pd.DataFrame,
    donors: int = 5
) -> np.ndarray:
    # Bayesian linear regression draw followed by predictive mean matching
    y = y_obs.to_numpy(dtype=float)
    columns = drop_constant_columns(X_obs).columns
    X = sm.add_constant(X_obs[columns].to_numpy(), has_constant="add")
    X_new = sm.add_constant(X_mis[columns].to_numpy(), has_constant="add")

    results = sm.OLS(y, X).fit()
    beta_hat = np.asarray(results.params)

    df_resid = max(results.df_resid, 1.0)
    sigma_star = np.sqrt(results.ssr / rng.chisquare(df_resid))
    cov = np.asarray(results.normalized_cov_params)
    chol = np.linalg.cholesky(cov + np.eye(len(beta_hat)) * 1e-10)
    beta_star = beta_hat + sigma_star * chol @ rng.standard_normal(len(beta_hat))

    yhat_obs = X @ beta_hat
    yhat_mis = X_new @ beta_star

    n_donors = min(donors, len(y))
    values = np.empty(len(yhat_mis))
    for i, target in enumerate(yhat_mis):
        nearest = np.argsort(np.abs(yhat_obs - target), kind="stable")[:n_donors]
        values[i] = y[rng.choice(nearest)]
    return values


CONDITIONAL_DRAWS: Dict[ImputationMethod, Callable[..., np.ndarray]] = {
    ImputationMethod.LOGREG: draw_logistic,
    ImputationMethod.POLYREG: draw_logistic,
    ImputationMethod.POLR: draw_polr,
    ImputationMethod.PMM: draw_pmm,
    ImputationMethod.SAMPLE: draw_sample,
}


__all__ = [
    "LOGISTIC_C",
    "LOGISTIC_MAX_ITER",
    "design_matrix",
    "drop_constant_columns",
    "default_method",
    "draw_sample",
    "draw_logistic",
    "draw_polr",
    "draw_pmm",
    "CONDITIONAL_DRAWS",
]
