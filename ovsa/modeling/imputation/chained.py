import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from numpy.random import Generator

from ovsa.config.settings import ImputationConfig, ImputationMethod
from ovsa.generators.base import SeedLike
from ovsa.modeling.imputation.base import BaseImputer, MethodSpec
from ovsa.modeling.imputation.ensemble import ImputationHandle

logger = logging.getLogger(__name__)


# CHAINED EQUATIONS IMPUTER

class ChainedEquationsImputer(BaseImputer):
    """Multiple imputation by chained equations.

    Runs ``n_imputations`` independent chains of ``max_iter`` sweeps. Each
    sweep visits the incomplete columns in order and redraws their missing
    entries from a conditional model given every other column. Chains use
    child streams spawned from one seed, so a seed fixes the whole result.
    """

    def __init__(
        self,
        config: Optional[ImputationConfig] = None,
        seed: SeedLike = None
    ) -> None:
        super().__init__(config, seed)
        self.handle_: Optional[ImputationHandle] = None

    def impute(
        self,
        data: pd.DataFrame,
        methods: MethodSpec = None,
        rng: SeedLike = None
    ) -> ImputationHandle:
        columns = self._resolve_columns(data)
        resolved = self._resolve_methods(data, columns, methods)
        masks = {
            column: data[column].isna().to_numpy()
            for column, method in resolved.items()
            if method != ImputationMethod.NONE
        }

        m = self.config.n_imputations
        logger.info(
            f"Chained equations: {m} chains x {self.config.max_iter} iterations, "
            f"imputing {list(masks)}"
        )

        imputed = {
            column: pd.DataFrame(index=data.index[mask], columns=range(m), dtype=object)
            for column, mask in masks.items()
        }
        chain_means = {column: np.empty((self.config.max_iter, m)) for column in masks}

        streams = self._generator(rng).spawn(m)
        for chain, stream in enumerate(streams):
            work = self._run_chain(data[columns].copy(), masks, resolved, stream, chain, chain_means)
            for column, mask in masks.items():
                imputed[column][chain] = work.loc[mask, column].to_numpy()
            logger.debug(f"Chain {chain + 1}/{m} complete")

        self.handle_ = ImputationHandle(
            data=data.copy(),
            imputed=imputed,
            m=m,
            methods={column: method.value for column, method in resolved.items()},
            chain_means=chain_means,
        )
        return self.handle_

    def _run_chain(
        self,
        work: pd.DataFrame,
        masks: Dict[str, np.ndarray],
        methods: Dict[str, ImputationMethod],
        rng: Generator,
        chain: int,
        chain_means: Dict[str, np.ndarray]
    ) -> pd.DataFrame:
        self._initialize(work, masks, rng)
        for iteration in range(self.config.max_iter):
            self._sweep(work, masks, methods, rng)
            for column, mask in masks.items():
                chain_means[column][iteration, chain] = self._imputed_mean(work, column, mask)
        return work

    def complete_all(self) -> List[pd.DataFrame]:
        if self.handle_ is None:
            raise RuntimeError("impute() must be called first")
        return self.handle_.complete_all()


__all__ = [
    "ChainedEquationsImputer",
]
