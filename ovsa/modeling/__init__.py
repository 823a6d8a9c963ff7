from .imputation import (
    ImputationHandle,
    ImputationEnsemble,
    BaseImputer,
    ChainedEquationsImputer,
    MultilevelImputer,
    get_imputer,
)

from .ordinal import (
    OrdinalFit,
    OrdinalProbitFitter,
)

from .sensitivity import (
    ShiftTable,
    RelabelResult,
    ThresholdShiftRelabeler,
    SensitivityResult,
    MNARSensitivityAnalysis,
)

from .evaluation import (
    ProportionComparator,
    plot_proportions,
)

from .pooling import (
    pool_estimates,
    PooledResult,
    RubinPooler,
)

__all__ = [
    # Imputation
    "ImputationHandle",
    "ImputationEnsemble",
    "BaseImputer",
    "ChainedEquationsImputer",
    "MultilevelImputer",
    "get_imputer",
    # Ordinal regression
    "OrdinalFit",
    "OrdinalProbitFitter",
    # Sensitivity
    "ShiftTable",
    "RelabelResult",
    "ThresholdShiftRelabeler",
    "SensitivityResult",
    "MNARSensitivityAnalysis",
    # Evaluation
    "ProportionComparator",
    "plot_proportions",
    # Pooling
    "pool_estimates",
    "PooledResult",
    "RubinPooler",
]
