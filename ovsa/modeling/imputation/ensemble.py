from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence, Union

import numpy as np
import pandas as pd

from ovsa.exceptions import ValidationError


# IMPUTATION HANDLE (index-addressable result of the chained-equations engine)

@dataclass
class ImputationHandle:
    # imputed[column]: rows are the missing positions, columns 0..m-1 the chain draws
    data: pd.DataFrame
    imputed: Dict[str, pd.DataFrame]
    m: int
    methods: Dict[str, str] = field(default_factory=dict)
    chain_means: Dict[str, np.ndarray] = field(default_factory=dict)

    def complete(self, i: int) -> pd.DataFrame:
        if not 0 <= i < self.m:
            raise IndexError(f"imputation index {i} out of range for m={self.m}")

        completed = self.data.copy()
        for column, draws in self.imputed.items():
            values = draws[i].to_numpy()
            if pd.api.types.is_numeric_dtype(completed[column].dtype):
                values = values.astype(completed[column].dtype)
            completed.loc[draws.index, column] = values
        return completed

    def complete_all(self) -> List[pd.DataFrame]:
        return [self.complete(i) for i in range(self.m)]


# IMPUTATION ENSEMBLE

class ImputationEnsemble:
    def __init__(self, members: Sequence[pd.DataFrame]):
        members = list(members)
        if not members:
            raise ValidationError("imputations", "at least one completed dataset is required")

        for i, member in enumerate(members):
            if not isinstance(member, pd.DataFrame):
                raise ValidationError("imputations", f"member {i + 1} is not a DataFrame")

        n_rows = {len(member) for member in members}
        if len(n_rows) > 1:
            raise ValidationError("imputations", "all completed datasets must have the same number of rows")

        self._members = members

    @classmethod
    def from_handle(cls, handle: ImputationHandle) -> "ImputationEnsemble":
        return cls([handle.complete(i) for i in range(handle.m)])

    @classmethod
    def from_frames(cls, frames: Sequence[pd.DataFrame]) -> "ImputationEnsemble":
        return cls(frames)

    @classmethod
    def coerce(cls, imputations: Union["ImputationEnsemble", ImputationHandle, Sequence[pd.DataFrame], Any]) -> "ImputationEnsemble":
        if isinstance(imputations, ImputationEnsemble):
            return imputations
        if isinstance(imputations, ImputationHandle):
            return cls.from_handle(imputations)
        if isinstance(imputations, pd.DataFrame):
            raise ValidationError("imputations", "expected several completed datasets, got a single DataFrame")
        # Any object exposing m and complete(i) is treated as a handle
        if hasattr(imputations, "complete") and hasattr(imputations, "m"):
            return cls([imputations.complete(i) for i in range(imputations.m)])
        if isinstance(imputations, (list, tuple)):
            return cls.from_frames(imputations)
        raise ValidationError(
            "imputations", f"unsupported imputation container {type(imputations).__name__}"
        )

    @property
    def m(self) -> int:
        return len(self._members)

    @property
    def n_rows(self) -> int:
        return len(self._members[0])

    def __len__(self) -> int:
        return len(self._members)

    def __getitem__(self, i: int) -> pd.DataFrame:
        return self._members[i]

    def __iter__(self) -> Iterator[pd.DataFrame]:
        return iter(self._members)

    def to_list(self) -> List[pd.DataFrame]:
        return list(self._members)


__all__ = [
    "ImputationHandle",
    "ImputationEnsemble",
]
