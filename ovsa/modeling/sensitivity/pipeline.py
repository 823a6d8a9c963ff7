import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ovsa.config.settings import RelabelConfig
from ovsa.exceptions import InvalidThresholdsError, ValidationError
from ovsa.generators.base import SeedLike
from ovsa.modeling.imputation.ensemble import ImputationEnsemble
from ovsa.modeling.ordinal.probit_model import OrdinalFit, OrdinalProbitFitter
from ovsa.modeling.sensitivity.threshold_shift import ShiftTable, ThresholdShiftRelabeler

logger = logging.getLogger(__name__)


# RESULT

@dataclass
class SensitivityResult:
    mnar_data: List[pd.DataFrame]
    thresholds_old: pd.DataFrame
    thresholds_new: Dict[str, pd.DataFrame]
    unresolved_counts: pd.DataFrame
    fits: List[OrdinalFit]
    missing_column: str = ""
    mar_column: str = ""
    scenario_columns: List[str] = field(default_factory=list)
    shift_table: Optional[ShiftTable] = None

    @property
    def m(self) -> int:
        return len(self.mnar_data)

    def ensemble(self) -> ImputationEnsemble:
        return ImputationEnsemble(self.mnar_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "m": self.m,
            "missing_column": self.missing_column,
            "mar_column": self.mar_column,
            "scenario_columns": list(self.scenario_columns),
            "thresholds_old": self.thresholds_old.to_dict(),
            "thresholds_new": {k: v.to_dict() for k, v in self.thresholds_new.items()},
            "unresolved_counts": self.unresolved_counts.to_dict(),
        }


# MNAR SENSITIVITY ANALYSIS

class MNARSensitivityAnalysis:
    def __init__(
        self,
        config: Optional[RelabelConfig] = None,
        fitter: Optional[OrdinalProbitFitter] = None
    ):
        self.config = config or RelabelConfig()
        self.fitter = fitter or OrdinalProbitFitter()
        self.relabeler = ThresholdShiftRelabeler(self.config)

    def prepare_members(self, data: pd.DataFrame, ensemble: ImputationEnsemble) -> List[pd.DataFrame]:
        """Rename imputed columns to ``<column>_mar`` and re-attach the incomplete originals."""
        incomplete = [c for c in data.columns if data[c].isna().any()]
        suffix = self.config.mar_suffix

        members = []
        for i, member in enumerate(ensemble):
            if len(member) != len(data):
                raise ValidationError(
                    "imputations", f"imputation {i + 1} has {len(member)} rows, data has {len(data)}"
                )
            absent = [c for c in incomplete if c not in member.columns]
            if absent:
                raise ValidationError("imputations", f"imputation {i + 1} lacks columns {absent}")

            frame = member.rename(columns={c: f"{c}{suffix}" for c in incomplete})
            for column in incomplete:
                # Positional copy keeps the categorical dtype
                frame[column] = data[column].array
            members.append(frame)
        return members

    def run(
        self,
        data: pd.DataFrame,
        imputations: Any,
        formula: str,
        shift_table: Any,
        ordinal_column: str,
        level_count: Optional[int] = None,
        seed: SeedLike = None
    ) -> SensitivityResult:
        if not isinstance(data, pd.DataFrame):
            raise ValidationError("data", "must be a pandas DataFrame")
        if ordinal_column not in data.columns:
            raise ValidationError("ordinal_column", f"column {ordinal_column!r} does not exist in the dataset")

        ensemble = ImputationEnsemble.coerce(imputations)
        shifts = ShiftTable.coerce(shift_table)

        if level_count is None:
            series = data[ordinal_column]
            if isinstance(series.dtype, pd.CategoricalDtype):
                level_count = len(series.cat.categories)
            else:
                level_count = int(series.dropna().nunique())

        logger.info(f"Second step: {ensemble.m} imputations, {level_count} levels of '{ordinal_column}'")

        # Step 1: MAR members with incomplete originals re-attached
        members = self.prepare_members(data, ensemble)
        mar_column = f"{ordinal_column}{self.config.mar_suffix}"

        # Step 2: ordinal probit fit per member
        fits = []
        for i, member in enumerate(members):
            fit = self.fitter.fit(member, formula)
            if fit.n_levels != level_count:
                raise InvalidThresholdsError(
                    f"model has {fit.n_levels} levels, expected {level_count}", member=i
                )
            fits.append(fit)
            logger.debug(f"Imputation {i + 1}: thresholds {np.round(fit.thresholds, 3).tolist()}")

        # Step 3: relabel under every scenario
        missing_mask = data[ordinal_column].isna().to_numpy()
        relabelled = self.relabeler.relabel(
            members,
            missing_mask,
            level_count,
            [fit.thresholds for fit in fits],
            [fit.linear_predictor for fit in fits],
            shifts,
            mar_column=mar_column,
            rng=seed,
        )

        if relabelled.total_unresolved:
            logger.warning(f"{relabelled.total_unresolved} unresolved rows were back-filled")

        return SensitivityResult(
            mnar_data=relabelled.members,
            thresholds_old=relabelled.thresholds_old,
            thresholds_new=relabelled.thresholds_new,
            unresolved_counts=relabelled.unresolved_counts,
            fits=fits,
            missing_column=ordinal_column,
            mar_column=mar_column,
            scenario_columns=relabelled.scenario_columns,
            shift_table=shifts,
        )


__all__ = [
    "SensitivityResult",
    "MNARSensitivityAnalysis",
]
