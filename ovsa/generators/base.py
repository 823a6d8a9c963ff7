from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from numpy.random import Generator, SeedSequence

from ovsa.config.settings import SimulationConfig


SeedLike = Union[int, SeedSequence, Generator, None]


# ABSTRACT BASE CLASS

class BaseDataGenerator(ABC):
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        seed: SeedLike = None
    ) -> None:
        self.config = config or SimulationConfig()
        self.seed = seed if seed is not None else self.config.random_seed
        self.rng: Generator = self._create_rng()
        self._schema: Optional[Dict[str, type]] = None
        self._generated_data: Optional[pd.DataFrame] = None

    def _create_rng(self) -> Generator:
        return as_generator(self.seed)

    @abstractmethod
    def generate(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError("Subclasses must implement generate()")

    def set_schema(self, schema: Dict[str, type]) -> None:
        self._schema = schema

    def validate_output(self, data: pd.DataFrame) -> Tuple[bool, List[str]]:
        errors: List[str] = []

        if data is None or data.empty:
            errors.append("Generated data is empty or None")
            return False, errors

        if self._schema:
            for col, expected_type in self._schema.items():
                if col not in data.columns:
                    errors.append(f"Missing required column: {col}")
                    continue

                actual_dtype = data[col].dtype
                if expected_type == int:
                    if not np.issubdtype(actual_dtype, np.integer):
                        errors.append(f"Column {col}: expected int, got {actual_dtype}")
                elif expected_type == pd.Categorical:
                    if not isinstance(actual_dtype, pd.CategoricalDtype):
                        errors.append(f"Column {col}: expected category, got {actual_dtype}")

        expected_rows = self.config.total_rows
        if len(data) != expected_rows:
            errors.append(
                f"Row count mismatch: expected {expected_rows}, got {len(data)}"
            )

        if 'id' in data.columns:
            duplicates = data['id'].duplicated().sum()
            if duplicates > 0:
                errors.append(f"Found {duplicates} duplicate id values")

        return len(errors) == 0, errors

    def generate_and_validate(self) -> Tuple[pd.DataFrame, bool, List[str]]:
        data = self.generate()
        is_valid, errors = self.validate_output(data)
        self._generated_data = data
        return data, is_valid, errors

    def get_summary_statistics(self, data: Optional[pd.DataFrame] = None) -> Dict[str, Any]:
        if data is None:
            data = self._generated_data

        if data is None:
            return {"error": "No data available"}

        stats = {
            "n_rows": len(data),
            "n_columns": len(data.columns),
            "columns": list(data.columns),
            "dtypes": data.dtypes.astype(str).to_dict(),
            "missing_counts": {col: int(n) for col, n in data.isnull().sum().items()},
            "categorical_summary": {},
        }

        cat_cols = data.select_dtypes(include=['object', 'category']).columns
        for col in cat_cols:
            value_counts = data[col].value_counts(normalize=True, sort=False)
            stats["categorical_summary"][col] = {
                str(level): float(share) for level, share in value_counts.items()
            }

        return stats


# UTILITY FUNCTIONS

def as_generator(seed: SeedLike) -> Generator:
    if isinstance(seed, Generator):
        return seed
    return np.random.default_rng(seed)


def poly_contrasts(n_levels: int) -> np.ndarray:
    # Orthonormal polynomial contrasts for an ordered factor (linear, quadratic, ...)
    x = np.arange(1, n_levels + 1, dtype=float)
    powers = np.vander(x - x.mean(), n_levels, increasing=True)
    q, r = np.linalg.qr(powers)
    raw = q * np.diag(r)
    raw = raw / np.linalg.norm(raw, axis=0)
    return raw[:, 1:]


def treatment_dummies(codes: np.ndarray, n_levels: int) -> np.ndarray:
    # Dummy coding with the first level as reference
    return (codes[:, None] == np.arange(1, n_levels)[None, :]).astype(float)


def softmax_rows(linpred: np.ndarray) -> np.ndarray:
    shifted = np.exp(linpred - linpred.max(axis=1, keepdims=True))
    return shifted / shifted.sum(axis=1, keepdims=True)


def sample_categories(rng: Generator, probabilities: np.ndarray) -> np.ndarray:
    # One categorical draw per row; returns 0-based category codes
    cumulative = probabilities.cumsum(axis=1)
    u = rng.random(len(probabilities))[:, None]
    codes = (u > cumulative).sum(axis=1)
    return np.minimum(codes, probabilities.shape[1] - 1)


__all__ = [
    "BaseDataGenerator",
    "SeedLike",
    "as_generator",
    "poly_contrasts",
    "treatment_dummies",
    "softmax_rows",
    "sample_categories",
]
