import string
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from numpy.random import Generator
from scipy.special import expit

from ovsa.config.settings import DatasetType, SimulationConfig
from ovsa.generators.base import (
    BaseDataGenerator,
    SeedLike,
    poly_contrasts,
    sample_categories,
    softmax_rows,
    treatment_dummies,
)


# REFERENCE DESIGNS

# simda: X1 weights per non-reference level of X2 and Y coefficients on
# (Intercept, X1.L, X1.Q, X1.C, X1^4, X22, X23, X24)
REFERENCE_X1_WEIGHTS = (2.0, 1.0, 1.0, 1.0, 2.5)
REFERENCE_Y_COEFFICIENTS = (-1.5, 1.0, -2.0, 1.5, 2.0, 2.0, 1.0, 2.0)

# simda2: x1 weights and y coefficients on (Intercept, x1.L, x1.Q, x22, x23, x24)
HIERARCHICAL_X1_WEIGHTS = (2.0, 1.0, 2.5)
HIERARCHICAL_Y_COEFFICIENTS = (-1.0, 1.0, -2.0, 2.0, 1.0, 2.0)


# SHARED DRAWS

def draw_ordinal(
    rng: Generator,
    x2_codes: np.ndarray,
    n_x2: int,
    weights: np.ndarray
) -> np.ndarray:
    # X1 | X2 ~ Categorical(softmax(dummies(X2) @ weights)); 0-based codes
    linpred = treatment_dummies(x2_codes, n_x2) @ weights
    return sample_categories(rng, softmax_rows(linpred))


def outcome_linear_predictor(
    x1_codes: np.ndarray,
    n_x1: int,
    x2_codes: np.ndarray,
    n_x2: int,
    coefficients: np.ndarray
) -> np.ndarray:
    design = np.column_stack([
        np.ones(len(x1_codes)),
        poly_contrasts(n_x1)[x1_codes],
        treatment_dummies(x2_codes, n_x2),
    ])
    if design.shape[1] != len(coefficients):
        raise ValueError(
            f"Expected {design.shape[1]} outcome coefficients, got {len(coefficients)}"
        )
    return design @ coefficients


def _ordered(codes: np.ndarray, n_levels: int) -> pd.Categorical:
    return pd.Categorical(codes + 1, categories=list(range(1, n_levels + 1)), ordered=True)


def _binary(values: np.ndarray) -> pd.Categorical:
    return pd.Categorical(values.astype(int), categories=[0, 1])


# NON-HIERARCHICAL GENERATOR (simulate_bin_nonhier)

class NonHierarchicalGenerator(BaseDataGenerator):
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        seed: SeedLike = None
    ) -> None:
        super().__init__(config, seed)
        self.set_schema({"id": int, "X2": pd.Categorical, "X1": pd.Categorical, "Y": pd.Categorical})

    def generate(self) -> pd.DataFrame:
        n = self.config.n_samples
        n_x1 = self.config.levels_x1
        n_x2 = self.config.levels_x2

        # Step 1: X2 with alphabet letters
        x2_codes = self.rng.integers(0, n_x2, size=n)

        # Step 2: weight matrix, every row runs from 1 to 2
        weights = np.tile(np.linspace(1, 2, n_x1), (n_x2 - 1, 1))

        # Step 3: X1 via softmax
        x1_codes = draw_ordinal(self.rng, x2_codes, n_x2, weights)

        # Step 4: binary response, intercept -1.5 and unit slopes
        n_coef = 1 + (n_x1 - 1) + (n_x2 - 1)
        coefficients = np.ones(n_coef)
        coefficients[0] = -1.5
        lp = outcome_linear_predictor(x1_codes, n_x1, x2_codes, n_x2, coefficients)
        y = self.rng.binomial(1, expit(lp))

        df = pd.DataFrame({
            "id": np.arange(1, n + 1),
            "X2": pd.Categorical.from_codes(x2_codes, categories=list(string.ascii_lowercase[:n_x2])),
            "X1": _ordered(x1_codes, n_x1),
            "Y": _binary(y),
        })

        self._generated_data = df
        return df


# REFERENCE DATASET GENERATOR (simda)

class ReferenceDatasetGenerator(BaseDataGenerator):
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        seed: SeedLike = None,
        x1_weights: Sequence[float] = REFERENCE_X1_WEIGHTS,
        coefficients: Sequence[float] = REFERENCE_Y_COEFFICIENTS
    ) -> None:
        super().__init__(config, seed)
        self.x1_weights = np.asarray(x1_weights, dtype=float)
        self.coefficients = np.asarray(coefficients, dtype=float)
        if len(self.x1_weights) != self.config.levels_x1:
            raise ValueError(
                f"x1_weights has {len(self.x1_weights)} entries for "
                f"{self.config.levels_x1} levels of X1"
            )
        self.set_schema({"id": int, "X2": pd.Categorical, "X1": pd.Categorical, "Y": pd.Categorical})

    def generate(self) -> pd.DataFrame:
        n = self.config.n_samples
        n_x1 = self.config.levels_x1
        n_x2 = self.config.levels_x2

        x2_codes = self.rng.integers(0, n_x2, size=n)
        weights = np.tile(self.x1_weights, (n_x2 - 1, 1))
        x1_codes = draw_ordinal(self.rng, x2_codes, n_x2, weights)

        lp = outcome_linear_predictor(x1_codes, n_x1, x2_codes, n_x2, self.coefficients)
        y = self.rng.binomial(1, expit(lp))

        df = pd.DataFrame({
            "id": np.arange(1, n + 1),
            "X2": pd.Categorical(x2_codes + 1, categories=list(range(1, n_x2 + 1))),
            "X1": _ordered(x1_codes, n_x1),
            "Y": _binary(y),
        })

        self._generated_data = df
        return df


# HIERARCHICAL GENERATOR (simda2)

class HierarchicalGenerator(BaseDataGenerator):
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        seed: SeedLike = None,
        x1_weights: Sequence[float] = HIERARCHICAL_X1_WEIGHTS,
        coefficients: Sequence[float] = HIERARCHICAL_Y_COEFFICIENTS
    ) -> None:
        config = config or SimulationConfig(
            dataset=DatasetType.HIERARCHICAL, levels_x1=3, random_seed=100
        )
        super().__init__(config, seed)
        self.x1_weights = np.asarray(x1_weights, dtype=float)
        self.coefficients = np.asarray(coefficients, dtype=float)
        if len(self.x1_weights) != self.config.levels_x1:
            raise ValueError(
                f"x1_weights has {len(self.x1_weights)} entries for "
                f"{self.config.levels_x1} levels of x1"
            )
        self.set_schema({"id": int, "y": pd.Categorical, "x1": pd.Categorical, "x2": pd.Categorical})

    def generate(self) -> pd.DataFrame:
        n_clus = self.config.n_clusters
        n_obs = self.config.obs_per_cluster
        n = n_clus * n_obs
        n_x1 = self.config.levels_x1
        n_x2 = self.config.levels_x2

        x2_codes = self.rng.integers(0, n_x2, size=n)
        weights = np.tile(self.x1_weights, (n_x2 - 1, 1))
        x1_codes = draw_ordinal(self.rng, x2_codes, n_x2, weights)

        # Cluster random intercepts
        clus = np.repeat(np.arange(1, n_clus + 1), n_obs)
        u = self.rng.normal(0.0, self.config.cluster_sd, size=n_clus)

        lp = outcome_linear_predictor(x1_codes, n_x1, x2_codes, n_x2, self.coefficients)
        y = self.rng.binomial(1, expit(lp + u[clus - 1]))

        df = pd.DataFrame({
            "id": np.arange(1, n + 1),
            "y": _binary(y),
            "x1": _ordered(x1_codes, n_x1),
            "x2": pd.Categorical(x2_codes + 1, categories=list(range(1, n_x2 + 1))),
            "clus": clus,
        })

        self._generated_data = df
        return df


# FACTORY

GENERATORS: Dict[DatasetType, Any] = {
    DatasetType.NON_HIERARCHICAL: NonHierarchicalGenerator,
    DatasetType.REFERENCE: ReferenceDatasetGenerator,
    DatasetType.HIERARCHICAL: HierarchicalGenerator,
}


def get_generator(config: SimulationConfig, seed: SeedLike = None) -> BaseDataGenerator:
    return GENERATORS[config.dataset](config, seed)


__all__ = [
    "REFERENCE_X1_WEIGHTS",
    "REFERENCE_Y_COEFFICIENTS",
    "HIERARCHICAL_X1_WEIGHTS",
    "HIERARCHICAL_Y_COEFFICIENTS",
    "draw_ordinal",
    "outcome_linear_predictor",
    "NonHierarchicalGenerator",
    "ReferenceDatasetGenerator",
    "HierarchicalGenerator",
    "GENERATORS",
    "get_generator",
]
