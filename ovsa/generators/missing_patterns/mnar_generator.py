import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from numpy.random import Generator

from ovsa.config.settings import MissingnessConfig, SimulationConfig
from ovsa.exceptions import EmptyCandidatePoolWarning, ValidationError
from ovsa.generators.base import BaseDataGenerator, SeedLike, as_generator

logger = logging.getLogger(__name__)

StrataProbabilities = Union[Mapping[Any, Sequence[float]], pd.DataFrame]


# MISSINGNESS SPEC

@dataclass(frozen=True)
class MissingnessSpec:
    group_a_levels: Tuple[Any, ...]
    prob_a: float
    group_b_levels: Tuple[Any, ...]
    prob_b: float
    strata_probabilities: Optional[Tuple[Tuple[Any, float, float], ...]] = None

    @classmethod
    def build(
        cls,
        group_a_levels: Sequence[Any],
        prob_a: float,
        group_b_levels: Sequence[Any],
        prob_b: float,
        strata_probabilities: Optional[StrataProbabilities] = None
    ) -> "MissingnessSpec":
        _check_probability("prob_a", prob_a)
        _check_probability("prob_b", prob_b)

        table = None
        if strata_probabilities is not None:
            table = tuple(
                (stratum, _check_probability(f"strata_probabilities[{stratum!r}]", pa),
                 _check_probability(f"strata_probabilities[{stratum!r}]", pb))
                for stratum, (pa, pb) in _iter_strata(strata_probabilities)
            )

        return cls(
            group_a_levels=tuple(_as_levels(group_a_levels)),
            prob_a=float(prob_a),
            group_b_levels=tuple(_as_levels(group_b_levels)),
            prob_b=float(prob_b),
            strata_probabilities=table,
        )

    def probabilities_for(self, stratum: Any) -> Tuple[float, float]:
        if self.strata_probabilities is None:
            return self.prob_a, self.prob_b
        for key, pa, pb in self.strata_probabilities:
            if key == stratum:
                return pa, pb
        for key, pa, pb in self.strata_probabilities:
            if str(key) == str(stratum):
                return pa, pb
        raise ValidationError(
            "strata_probabilities", f"no probabilities given for stratum {stratum!r}"
        )


# INJECTION REPORT

@dataclass
class GroupRemoval:
    group: str
    stratum: Optional[Any]
    pool_size: int
    probability: float
    n_removed: int

    @property
    def empty_pool(self) -> bool:
        return self.pool_size == 0


@dataclass
class InjectionReport:
    source_column: str
    missing_column: str
    n_rows: int
    removals: List[GroupRemoval] = field(default_factory=list)
    preexisting_missing: int = 0

    @property
    def total_removed(self) -> int:
        return sum(r.n_removed for r in self.removals)

    @property
    def total_missing(self) -> int:
        return self.total_removed + self.preexisting_missing

    @property
    def missing_rate(self) -> float:
        return self.total_missing / self.n_rows if self.n_rows > 0 else 0.0

    @property
    def empty_pools(self) -> List[Tuple[str, Optional[Any]]]:
        return [(r.group, r.stratum) for r in self.removals if r.empty_pool]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_column": self.source_column,
            "missing_column": self.missing_column,
            "n_rows": self.n_rows,
            "total_removed": self.total_removed,
            "preexisting_missing": self.preexisting_missing,
            "missing_rate": self.missing_rate,
            "empty_pools": [
                group if stratum is None else f"{group} [stratum {stratum}]"
                for group, stratum in self.empty_pools
            ],
            "removals": [
                {
                    "group": r.group,
                    "stratum": None if r.stratum is None else str(r.stratum),
                    "pool_size": r.pool_size,
                    "probability": r.probability,
                    "n_removed": r.n_removed,
                }
                for r in self.removals
            ],
        }

    def summary(self) -> str:
        lines = [
            "=" * 60,
            "MNAR INJECTION REPORT",
            "=" * 60,
            f"  Column: {self.source_column} -> {self.missing_column}",
            f"  Rows: {self.n_rows:,}",
            f"  Missing introduced: {self.total_removed:,}",
            f"  Missing rate: {self.missing_rate*100:.2f}%",
            "",
            "By group:",
        ]
        for r in self.removals:
            where = f" [stratum {r.stratum}]" if r.stratum is not None else ""
            lines.append(
                f"  {r.group}{where}: {r.n_removed}/{r.pool_size} (p={r.probability:.2f})"
            )
        return "\n".join(lines)


# VALIDATION HELPERS

def _check_probability(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ValidationError(name, f"must be numeric, got {value!r}")
    if not 0 <= value <= 1:
        raise ValidationError(name, f"({value}) must be between 0 and 1")
    return float(value)


def _as_levels(levels: Any) -> List[Any]:
    if isinstance(levels, (str, bytes)) or not isinstance(levels, (Sequence, set, frozenset, np.ndarray, pd.Index)):
        return [levels]
    return list(levels)


def _iter_strata(strata_probabilities: StrataProbabilities):
    if isinstance(strata_probabilities, pd.DataFrame):
        # One column per stratum, rows hold the (group A, group B) probabilities
        if len(strata_probabilities) != 2:
            raise ValidationError(
                "strata_probabilities", "data frame must have exactly two rows (A, B)"
            )
        for stratum in strata_probabilities.columns:
            column = strata_probabilities[stratum]
            yield stratum, (column.iloc[0], column.iloc[1])
        return

    if not isinstance(strata_probabilities, Mapping):
        raise ValidationError(
            "strata_probabilities", "must be a mapping or a data frame"
        )
    for stratum, pair in strata_probabilities.items():
        pair = list(pair)
        if len(pair) != 2:
            raise ValidationError(
                f"strata_probabilities[{stratum!r}]", "must hold two probabilities"
            )
        yield stratum, (pair[0], pair[1])


def binary_outcome(series: pd.Series, name: str = "outcome_column") -> np.ndarray:
    if series.isna().any():
        raise ValidationError(name, "must not contain missing values")

    if series.dtype == bool:
        return series.to_numpy().astype(int)

    values = np.empty(len(series), dtype=int)
    raw = series.to_numpy(dtype=object)
    for i, value in enumerate(raw):
        if isinstance(value, (bool, np.bool_)):
            values[i] = int(value)
        elif isinstance(value, (int, float, np.integer, np.floating)) and value in (0, 1):
            values[i] = int(value)
        elif isinstance(value, str) and value.strip() in ("0", "1"):
            values[i] = int(value.strip())
        else:
            raise ValidationError(name, f"must contain only 0 or 1, found {value!r}")
    return values


# MISSINGNESS INJECTOR

class MissingnessInjector(BaseDataGenerator):
    def __init__(
        self,
        config: Optional[MissingnessConfig] = None,
        seed: SeedLike = None
    ) -> None:
        super().__init__(SimulationConfig(), seed)
        self.missingness = config or MissingnessConfig()
        self.report_: Optional[InjectionReport] = None

    def inject(
        self,
        data: pd.DataFrame,
        outcome_column: str,
        ordinal_column: str,
        group_a_levels: Sequence[Any],
        prob_a: float,
        group_b_levels: Sequence[Any],
        prob_b: float,
        id_column: Optional[str] = None,
        strata_column: Optional[str] = None,
        strata_probabilities: Optional[StrataProbabilities] = None,
        rng: SeedLike = None
    ) -> pd.DataFrame:
        # All checks run before the input is copied or touched
        if not isinstance(data, pd.DataFrame):
            raise ValidationError("data", "must be a pandas DataFrame")

        for name, column in (("outcome_column", outcome_column), ("ordinal_column", ordinal_column)):
            if column not in data.columns:
                raise ValidationError(name, f"column {column!r} does not exist in the dataset")

        outcome = binary_outcome(data[outcome_column])

        ordinal = data[ordinal_column]
        if not isinstance(ordinal.dtype, pd.CategoricalDtype) or not ordinal.cat.ordered:
            raise ValidationError("ordinal_column", f"{ordinal_column!r} must be an ordered categorical")
        valid_levels = list(ordinal.cat.categories)

        spec = MissingnessSpec.build(
            group_a_levels, prob_a, group_b_levels, prob_b, strata_probabilities
        )
        for name, group in (("group_a_levels", spec.group_a_levels), ("group_b_levels", spec.group_b_levels)):
            unknown = [level for level in group if level not in valid_levels]
            if unknown:
                raise ValidationError(name, f"{unknown} are not levels of {ordinal_column!r}")

        if id_column is not None:
            if id_column not in data.columns:
                raise ValidationError("id_column", f"column {id_column!r} does not exist in the dataset")
            if data[id_column].duplicated().any():
                raise ValidationError("id_column", f"{id_column!r} must identify rows uniquely")

        if strata_column is not None:
            if strata_column not in data.columns:
                raise ValidationError("strata_column", f"column {strata_column!r} does not exist in the dataset")
            if strata_probabilities is None:
                raise ValidationError("strata_probabilities", "required when strata_column is given")
            if data[strata_column].isna().any():
                raise ValidationError("strata_column", f"{strata_column!r} must not contain missing values")
            strata = pd.unique(data[strata_column])
            for stratum in strata:
                spec.probabilities_for(stratum)
        elif strata_probabilities is not None:
            raise ValidationError("strata_column", "required when strata_probabilities is given")

        missing_column = f"{ordinal_column}{self.missingness.missing_suffix}"
        generator = as_generator(rng) if rng is not None else self.rng

        preexisting = int(ordinal.isna().sum())
        if preexisting:
            logger.warning(
                f"'{ordinal_column}' contains {preexisting} missing values; they are preserved"
            )

        report = InjectionReport(
            source_column=ordinal_column,
            missing_column=missing_column,
            n_rows=len(data),
            preexisting_missing=preexisting,
        )

        result = data.copy()
        result[missing_column] = result[ordinal_column].copy()
        outcome_series = pd.Series(outcome, index=result.index)

        if strata_column is None:
            self._remove_in_partition(
                result, outcome_series, missing_column, spec,
                spec.prob_a, spec.prob_b, None, generator, report
            )
        else:
            # Every stratum draws from its own child stream
            streams = generator.spawn(len(strata))
            parts = []
            for stratum, stream in zip(strata, streams):
                mask = (data[strata_column] == stratum).to_numpy()
                part = result.loc[mask].copy()
                pa, pb = spec.probabilities_for(stratum)
                self._remove_in_partition(
                    part, outcome_series.loc[mask], missing_column, spec,
                    pa, pb, stratum, stream, report
                )
                parts.append(part)
            result = pd.concat(parts)

        logger.info(
            f"Injected {report.total_removed} missing values into '{missing_column}' "
            f"({report.missing_rate*100:.1f}% missing)"
        )

        self.report_ = report
        return result

    def _remove_in_partition(
        self,
        part: pd.DataFrame,
        outcome: pd.Series,
        missing_column: str,
        spec: MissingnessSpec,
        prob_a: float,
        prob_b: float,
        stratum: Optional[Any],
        rng: Generator,
        report: InjectionReport
    ) -> None:
        # Rows are addressed by position; index labels may repeat
        position = part.columns.get_loc(missing_column)

        # Group B candidates are taken from the column after group A's removals
        for group, target, levels, prob in (
            ("A", 1, spec.group_a_levels, prob_a),
            ("B", 0, spec.group_b_levels, prob_b),
        ):
            current = part[missing_column]
            candidates = np.flatnonzero(
                (outcome.to_numpy() == target) & current.isin(levels).to_numpy()
            )
            pool_size = len(candidates)

            if pool_size == 0:
                where = f" in stratum {stratum!r}" if stratum is not None else ""
                message = f"No individuals meet the criteria for group {group}{where}."
                logger.warning(message)
                warnings.warn(message, EmptyCandidatePoolWarning, stacklevel=3)
                n_remove = 0
            else:
                # round() is half-to-even; clamp to the pool
                n_remove = min(int(round(pool_size * prob)), pool_size)
                if n_remove > 0:
                    chosen = rng.choice(np.arange(pool_size), size=n_remove, replace=False)
                    part.iloc[candidates[chosen], position] = np.nan

            report.removals.append(GroupRemoval(
                group=group,
                stratum=stratum,
                pool_size=pool_size,
                probability=prob,
                n_removed=n_remove,
            ))

    def inject_from_config(
        self,
        data: pd.DataFrame,
        rng: SeedLike = None
    ) -> pd.DataFrame:
        cfg = self.missingness
        return self.inject(
            data,
            outcome_column=cfg.outcome_column,
            ordinal_column=cfg.ordinal_column,
            group_a_levels=cfg.group_a_levels,
            prob_a=cfg.prob_a,
            group_b_levels=cfg.group_b_levels,
            prob_b=cfg.prob_b,
            id_column=cfg.id_column if cfg.id_column in data.columns else None,
            strata_column=cfg.strata_column,
            strata_probabilities=cfg.strata_probabilities,
            rng=rng,
        )

    def get_missing_statistics(self, df: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
        stats = {}
        for col in df.columns:
            missing_count = df[col].isna().sum()
            total_count = len(df)
            missing_rate = missing_count / total_count if total_count > 0 else 0
            stats[col] = {
                "missing_count": int(missing_count),
                "total_count": int(total_count),
                "missing_rate": float(missing_rate),
                "missing_pct": f"{missing_rate * 100:.2f}%",
            }
        return stats

    # MAIN GENERATE METHOD (required by BaseDataGenerator)

    def generate(
        self,
        df: pd.DataFrame,
        rng: SeedLike = None
    ) -> Tuple[pd.DataFrame, InjectionReport]:
        result = self.inject_from_config(df, rng=rng)
        return result, self.report_


# MODULE EXPORTS

__all__ = [
    "MissingnessSpec",
    "GroupRemoval",
    "InjectionReport",
    "MissingnessInjector",
    "binary_outcome",
]
