import logging
from typing import List, Optional

import pandas as pd

from ovsa.config.settings import ImputationConfig, ImputationEngine, ImputationMethod
from ovsa.exceptions import ValidationError
from ovsa.generators.base import SeedLike
from ovsa.modeling.imputation.chained import ChainedEquationsImputer
from ovsa.modeling.imputation.base import MethodSpec

logger = logging.getLogger(__name__)


# MULTILEVEL IMPUTER

class MultilevelImputer(ChainedEquationsImputer):
    """Single-chain imputation with cluster indicators in every conditional model."""

    def __init__(
        self,
        config: Optional[ImputationConfig] = None,
        seed: SeedLike = None
    ) -> None:
        config = config or ImputationConfig(engine=ImputationEngine.MULTILEVEL, cluster_column="clus")
        super().__init__(config, seed)
        self._cluster_design: Optional[pd.DataFrame] = None

    def _extra_design(self, work: pd.DataFrame) -> Optional[pd.DataFrame]:
        return self._cluster_design

    def impute(
        self,
        data: pd.DataFrame,
        methods: MethodSpec = None,
        rng: SeedLike = None
    ) -> List[pd.DataFrame]:
        cluster = self.config.cluster_column
        if not cluster or cluster not in getattr(data, "columns", []):
            raise ValidationError("cluster_column", f"column {cluster!r} does not exist in the dataset")
        if data[cluster].isna().any():
            raise ValidationError("cluster_column", f"{cluster!r} must not contain missing values")

        columns = [c for c in self._resolve_columns(data, exclude=(cluster,)) if c != cluster]
        resolved = self._resolve_methods(data, columns, methods)
        masks = {
            column: data[column].isna().to_numpy()
            for column, method in resolved.items()
            if method != ImputationMethod.NONE
        }

        self._cluster_design = pd.get_dummies(
            data[cluster].astype("category"), prefix="cluster", drop_first=True, dtype=float
        )

        m = self.config.n_imputations
        logger.info(
            f"Multilevel imputation: {self.config.n_burn} burn-in sweeps, "
            f"{m} imputations every {self.config.n_between} sweeps, "
            f"{data[cluster].nunique()} clusters"
        )

        rng = self._generator(rng)
        work = data[columns].copy()
        self._initialize(work, masks, rng)

        for _ in range(self.config.n_burn):
            self._sweep(work, masks, resolved, rng)

        completed = []
        for i in range(m):
            for _ in range(self.config.n_between):
                self._sweep(work, masks, resolved, rng)

            frame = data.copy()
            for column, mask in masks.items():
                frame.loc[mask, column] = work.loc[mask, column].to_numpy()
            completed.append(frame)
            logger.debug(f"Stored imputation {i + 1}/{m}")

        return completed


__all__ = [
    "MultilevelImputer",
]
