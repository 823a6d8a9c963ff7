from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.random import Generator

from ovsa.config.settings import ImputationConfig, ImputationEngine, ImputationMethod
from ovsa.exceptions import ValidationError
from ovsa.generators.base import SeedLike, as_generator
from ovsa.modeling.imputation.conditional import (
    CONDITIONAL_DRAWS,
    default_method,
    design_matrix,
)

MethodSpec = Union[Sequence[Union[str, ImputationMethod]], Mapping[str, Union[str, ImputationMethod]], None]


# ABSTRACT BASE CLASS

class BaseImputer(ABC):
    def __init__(
        self,
        config: Optional[ImputationConfig] = None,
        seed: SeedLike = None
    ) -> None:
        self.config = config or ImputationConfig()
        self.seed = seed

    @abstractmethod
    def impute(self, data: pd.DataFrame, methods: MethodSpec = None, rng: SeedLike = None) -> Any:
        raise NotImplementedError("Subclasses must implement impute()")

    def _generator(self, rng: SeedLike) -> Generator:
        return as_generator(rng if rng is not None else self.seed)

    # INPUT RESOLUTION

    def _resolve_columns(self, data: pd.DataFrame, exclude: Sequence[str] = ()) -> List[str]:
        if not isinstance(data, pd.DataFrame):
            raise ValidationError("data", "must be a pandas DataFrame")
        if not data.index.is_unique:
            raise ValidationError("data", "index must be unique")

        columns = list(self.config.columns) if self.config.columns else [
            c for c in data.columns if c not in exclude
        ]
        missing = [c for c in columns if c not in data.columns]
        if missing:
            raise ValidationError("columns", f"{missing} do not exist in the dataset")
        return columns

    def _resolve_methods(
        self,
        data: pd.DataFrame,
        columns: List[str],
        methods: MethodSpec = None
    ) -> Dict[str, ImputationMethod]:
        given = methods if methods is not None else self.config.methods

        if given is None:
            requested: Dict[str, Any] = {}
        elif isinstance(given, Mapping):
            requested = dict(given)
        else:
            given = list(given)
            if len(given) != len(columns):
                raise ValidationError(
                    "methods", f"expected {len(columns)} methods, got {len(given)}"
                )
            requested = dict(zip(columns, given))

        unknown = [c for c in requested if c not in columns]
        if unknown:
            raise ValidationError("methods", f"{unknown} are not imputed columns")

        resolved = {}
        for column in columns:
            if column in requested:
                raw = requested[column]
                try:
                    method = raw if isinstance(raw, ImputationMethod) else ImputationMethod(raw)
                except ValueError:
                    raise ValidationError(
                        "methods", f"unknown method {raw!r} for {column!r}"
                    ) from None
            elif data[column].isna().any():
                method = default_method(data[column])
            else:
                method = ImputationMethod.NONE

            # Complete columns are never imputed
            if not data[column].isna().any():
                method = ImputationMethod.NONE
            elif method != ImputationMethod.NONE and data[column].notna().sum() == 0:
                raise ValidationError("data", f"column {column!r} has no observed values")
            resolved[column] = method
        return resolved

    # CHAIN MECHANICS

    def _initialize(
        self,
        work: pd.DataFrame,
        masks: Dict[str, np.ndarray],
        rng: Generator
    ) -> None:
        # Start every chain from random draws of the observed values
        for column, mask in masks.items():
            observed = work.loc[~mask, column].to_numpy()
            draws = observed[rng.integers(0, len(observed), size=int(mask.sum()))]
            work.loc[work.index[mask], column] = draws

    def _extra_design(self, work: pd.DataFrame) -> Optional[pd.DataFrame]:
        return None

    def _sweep(
        self,
        work: pd.DataFrame,
        masks: Dict[str, np.ndarray],
        methods: Dict[str, ImputationMethod],
        rng: Generator
    ) -> None:
        skipped = [c for c, m in methods.items() if m == ImputationMethod.NONE and work[c].isna().any()]
        extra = self._extra_design(work)

        for column, mask in masks.items():
            predictors = work.drop(columns=[column] + skipped)
            X = design_matrix(predictors)
            if extra is not None:
                X = pd.concat([X, extra], axis=1)

            y_obs = work.loc[~mask, column]
            draw = CONDITIONAL_DRAWS[methods[column]]
            kwargs = {"donors": self.config.pmm_donors} if methods[column] == ImputationMethod.PMM else {}
            values = draw(rng, X.loc[~mask], y_obs, X.loc[mask], **kwargs)
            work.loc[work.index[mask], column] = values

    @staticmethod
    def _imputed_mean(work: pd.DataFrame, column: str, mask: np.ndarray) -> float:
        values = work.loc[mask, column]
        if isinstance(values.dtype, pd.CategoricalDtype):
            return float(values.cat.codes.mean() + 1)
        return float(pd.to_numeric(values, errors="coerce").mean())


# FACTORY

def get_imputer(config: Optional[ImputationConfig] = None, seed: SeedLike = None) -> BaseImputer:
    from ovsa.modeling.imputation.chained import ChainedEquationsImputer
    from ovsa.modeling.imputation.multilevel import MultilevelImputer

    config = config or ImputationConfig()
    if config.engine == ImputationEngine.MULTILEVEL:
        return MultilevelImputer(config, seed)
    return ChainedEquationsImputer(config, seed)


__all__ = [
    "MethodSpec",
    "BaseImputer",
    "get_imputer",
]
