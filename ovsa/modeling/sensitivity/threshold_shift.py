import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy.random import Generator

from ovsa.config.settings import RelabelConfig, UnresolvedPolicy
from ovsa.exceptions import InvalidThresholdsError, UnresolvedRowError, ValidationError
from ovsa.generators.base import SeedLike, as_generator
from ovsa.modeling.imputation.ensemble import ImputationEnsemble

logger = logging.getLogger(__name__)


# SHIFT TABLE

class ShiftTable:
    """Threshold shifts: one row per threshold (K-1), one column per scenario."""

    def __init__(self, table: Union[pd.DataFrame, Mapping[str, Sequence[float]], np.ndarray, Sequence[Sequence[float]]]):
        if isinstance(table, ShiftTable):
            frame = table.to_frame()
        elif isinstance(table, pd.DataFrame):
            frame = table.copy()
        elif isinstance(table, Mapping):
            lengths = {len(v) for v in table.values()}
            if len(lengths) > 1:
                raise ValidationError("shift_table", "all scenario columns must have the same length")
            frame = pd.DataFrame({k: list(v) for k, v in table.items()})
        else:
            values = np.asarray(table, dtype=float)
            if values.ndim == 1:
                values = values[:, None]
            frame = pd.DataFrame(values, columns=[f"delta{i + 1}" for i in range(values.shape[1])])

        if frame.shape[1] == 0:
            raise ValidationError("shift_table", "at least one scenario is required")

        try:
            values = frame.to_numpy(dtype=float)
        except (TypeError, ValueError):
            raise ValidationError("shift_table", "shifts must be numeric") from None
        if not np.isfinite(values).all():
            raise ValidationError("shift_table", "shifts must be finite")

        self.values = values
        self.names = [str(c) for c in frame.columns]

    @classmethod
    def coerce(cls, table: Any) -> "ShiftTable":
        return table if isinstance(table, ShiftTable) else cls(table)

    @property
    def n_thresholds(self) -> int:
        return self.values.shape[0]

    @property
    def n_scenarios(self) -> int:
        return self.values.shape[1]

    def scenario_columns(self, prefix: str = "mnar") -> List[str]:
        return [f"{prefix}{i + 1}" for i in range(self.n_scenarios)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.values,
            columns=self.names,
            index=[f"threshold{k + 1}" for k in range(self.n_thresholds)],
        )

    def __repr__(self) -> str:
        return f"ShiftTable({self.n_thresholds} thresholds x {self.n_scenarios} scenarios)"


# RESULTS

@dataclass
class MemberRelabel:
    frame: pd.DataFrame
    thresholds_new: np.ndarray       # (K-1, L)
    unresolved: np.ndarray           # (L,)


@dataclass
class RelabelResult:
    members: List[pd.DataFrame]
    thresholds_old: pd.DataFrame
    thresholds_new: Dict[str, pd.DataFrame]
    unresolved_counts: pd.DataFrame
    scenario_columns: List[str] = field(default_factory=list)

    @property
    def total_unresolved(self) -> int:
        return int(self.unresolved_counts.to_numpy().sum())


# HELPERS

def level_index(series: pd.Series) -> np.ndarray:
    # 1-based level index of a completed ordinal column
    if isinstance(series.dtype, pd.CategoricalDtype):
        codes = series.cat.codes.to_numpy()
        if (codes < 0).any():
            raise ValidationError(series.name or "column", "completed column contains missing values")
        return codes.astype(int) + 1
    values = pd.to_numeric(series, errors="coerce")
    if values.isna().any():
        raise ValidationError(series.name or "column", "completed column must hold level indices")
    return values.to_numpy().astype(int)


def check_thresholds(thresholds: Any, level_count: int, member: int) -> np.ndarray:
    values = np.asarray(thresholds, dtype=float).ravel()
    if len(values) != level_count - 1:
        raise InvalidThresholdsError(
            f"expected {level_count - 1} thresholds, got {len(values)}", member=member
        )
    if not np.isfinite(values).all():
        raise InvalidThresholdsError("thresholds must be finite", member=member)
    if len(values) > 1 and not (np.diff(values) > 0).all():
        raise InvalidThresholdsError(
            f"thresholds must be strictly increasing, got {values.tolist()}", member=member
        )
    return values


def assign_levels(score: np.ndarray, bounds: np.ndarray) -> np.ndarray:
    """Smallest 1-based k with ``score <= bounds[k-1]``; 0 when none applies.

    ``bounds`` ends with +inf so every finite score resolves. The rule is
    applied as is even when shifted thresholds are not monotone.
    """
    le = score[:, None] <= bounds[None, :]
    return np.where(le.any(axis=1), le.argmax(axis=1) + 1, 0)


# MEMBER WORKER

def _relabel_member(
    frame: pd.DataFrame,
    missing: np.ndarray,
    mar_column: str,
    level_count: int,
    thresholds: np.ndarray,
    linear_predictor: np.ndarray,
    shifts: np.ndarray,
    scenario_columns: List[str],
    streams: List[Generator],
    noise_mean: float,
    noise_sd: float,
    share_noise: bool,
    policy: UnresolvedPolicy,
    member: int
) -> MemberRelabel:
    n = len(frame)
    observed_levels = level_index(frame[mar_column])
    categories = list(range(1, level_count + 1))

    out = frame.copy()
    out["eta"] = linear_predictor

    shared_noise = streams[0].normal(noise_mean, noise_sd, size=n) if share_noise else None
    thresholds_new = np.empty((level_count - 1, len(scenario_columns)))
    unresolved = np.zeros(len(scenario_columns), dtype=int)

    for l, column in enumerate(scenario_columns):
        rng = streams[l]
        shifted = thresholds + shifts[:, l]
        thresholds_new[:, l] = shifted

        noise = shared_noise if share_noise else rng.normal(noise_mean, noise_sd, size=n)
        score = linear_predictor + noise

        values = observed_levels.copy()
        bounds = np.append(shifted, np.inf)
        finite = np.isfinite(score)
        targets = missing & finite
        values[targets] = assign_levels(score[targets], bounds)

        pending = missing & ~finite
        n_pending = int(pending.sum())
        if n_pending:
            if policy == UnresolvedPolicy.RAISE:
                raise UnresolvedRowError(
                    f"{n_pending} rows have a non-finite latent score",
                    member=member, scenario=column, n_rows=n_pending,
                )
            resolved = values[~pending]
            if len(resolved) == 0:
                raise UnresolvedRowError(
                    "no resolved values to back-fill from",
                    member=member, scenario=column, n_rows=n_pending,
                )
            values[pending] = resolved[rng.integers(0, len(resolved), size=n_pending)]
            logger.warning(
                f"Imputation {member + 1}, {column}: back-filled {n_pending} unresolved rows"
            )
            unresolved[l] = n_pending

        out[column] = pd.Categorical(values, categories=categories, ordered=True)

    return MemberRelabel(frame=out, thresholds_new=thresholds_new, unresolved=unresolved)


# THRESHOLD SHIFT RELABELER

class ThresholdShiftRelabeler:
    """Re-draws missing ordinal cells under shifted latent thresholds.

    For every completed dataset and every scenario, the cut-points of the
    fitted ordinal probit model are moved by the scenario's shifts, a noisy
    latent score is drawn for each row, and originally missing rows take
    the category whose shifted interval contains the score. Observed rows
    keep their MAR-completed level.
    """

    def __init__(self, config: Optional[RelabelConfig] = None):
        self.config = config or RelabelConfig()

    def spawn_streams(self, rng: SeedLike, n_members: int, n_scenarios: int) -> List[List[Generator]]:
        # Fixed per-member, per-scenario streams; independent of n_jobs
        root = as_generator(rng)
        return [member.spawn(n_scenarios) for member in root.spawn(n_members)]

    def relabel(
        self,
        ensemble: Union[ImputationEnsemble, Sequence[pd.DataFrame], Any],
        missing_mask: Union[np.ndarray, pd.Series, Sequence[bool]],
        level_count: int,
        thresholds_per_member: Sequence[Sequence[float]],
        linear_predictor_per_member: Sequence[Sequence[float]],
        shift_table: Union[ShiftTable, pd.DataFrame, Mapping[str, Sequence[float]]],
        mar_column: str,
        noise_mean: Optional[float] = None,
        noise_sd: Optional[float] = None,
        rng: SeedLike = None
    ) -> RelabelResult:
        ensemble = ImputationEnsemble.coerce(ensemble)
        shifts = ShiftTable.coerce(shift_table)
        noise_mean = self.config.noise_mean if noise_mean is None else noise_mean
        noise_sd = self.config.noise_sd if noise_sd is None else noise_sd

        # VALIDATION

        if level_count < 2:
            raise ValidationError("level_count", "must be at least 2")
        if shifts.n_thresholds != level_count - 1:
            raise ValidationError(
                "shift_table", f"must have {level_count - 1} rows, got {shifts.n_thresholds}"
            )
        if noise_sd < 0:
            raise ValidationError("noise_sd", "must be non-negative")

        m = ensemble.m
        if len(thresholds_per_member) != m or len(linear_predictor_per_member) != m:
            raise ValidationError(
                "thresholds_per_member", f"expected one entry per imputation ({m})"
            )

        mask = np.asarray(missing_mask, dtype=bool)
        n = ensemble.n_rows
        if mask.shape != (n,):
            raise ValidationError("missing_mask", f"length {mask.shape[0]} does not match {n} rows")

        thresholds = [check_thresholds(t, level_count, i) for i, t in enumerate(thresholds_per_member)]
        predictors = []
        for i, lp in enumerate(linear_predictor_per_member):
            lp = np.asarray(lp, dtype=float).ravel()
            if len(lp) != n:
                raise ValidationError(
                    "linear_predictor_per_member", f"imputation {i + 1} has {len(lp)} values for {n} rows"
                )
            predictors.append(lp)

        for i, member in enumerate(ensemble):
            if mar_column not in member.columns:
                raise ValidationError("mar_column", f"{mar_column!r} missing from imputation {i + 1}")
            levels = level_index(member[mar_column])
            if ((levels < 1) | (levels > level_count)).any():
                raise ValidationError(
                    "mar_column", f"imputation {i + 1} has levels outside 1..{level_count}"
                )

        # RELABEL

        columns = shifts.scenario_columns(self.config.scenario_prefix)
        streams = self.spawn_streams(rng, m, shifts.n_scenarios)

        logger.info(
            f"Relabelling {int(mask.sum())} missing rows in {m} imputations "
            f"under {shifts.n_scenarios} scenarios"
        )

        jobs = (
            delayed(_relabel_member)(
                member, mask, mar_column, level_count, thresholds[i], predictors[i],
                shifts.values, columns, streams[i], noise_mean, noise_sd,
                self.config.share_noise_across_scenarios, self.config.unresolved_policy, i,
            )
            for i, member in enumerate(ensemble)
        )
        if self.config.n_jobs == 1:
            results = [fn(*args, **kwargs) for fn, args, kwargs in jobs]
        else:
            results = Parallel(n_jobs=self.config.n_jobs)(jobs)

        return self._collect(results, thresholds, shifts, columns)

    @staticmethod
    def _collect(
        results: List[MemberRelabel],
        thresholds: List[np.ndarray],
        shifts: ShiftTable,
        columns: List[str]
    ) -> RelabelResult:
        members = [r.frame for r in results]
        threshold_index = [f"threshold{k + 1}" for k in range(shifts.n_thresholds)]
        member_columns = [f"imputation{i + 1}" for i in range(len(results))]

        thresholds_old = pd.DataFrame(
            np.column_stack(thresholds), index=threshold_index, columns=member_columns
        )
        thresholds_new = {
            column: pd.DataFrame(
                np.column_stack([r.thresholds_new[:, l] for r in results]),
                index=threshold_index,
                columns=member_columns,
            )
            for l, column in enumerate(columns)
        }
        unresolved = pd.DataFrame(
            np.vstack([r.unresolved for r in results]),
            index=member_columns,
            columns=columns,
        )
        return RelabelResult(
            members=members,
            thresholds_old=thresholds_old,
            thresholds_new=thresholds_new,
            unresolved_counts=unresolved,
            scenario_columns=columns,
        )


__all__ = [
    "ShiftTable",
    "MemberRelabel",
    "RelabelResult",
    "level_index",
    "check_thresholds",
    "assign_levels",
    "ThresholdShiftRelabeler",
]
