from .ensemble import (
    ImputationHandle,
    ImputationEnsemble,
)

from .conditional import (
    design_matrix,
    default_method,
    draw_sample,
    draw_logistic,
    draw_polr,
    draw_pmm,
    CONDITIONAL_DRAWS,
)

from .base import (
    BaseImputer,
    get_imputer,
)

from .chained import ChainedEquationsImputer
from .multilevel import MultilevelImputer

__all__ = [
    # Containers
    "ImputationHandle",
    "ImputationEnsemble",
    # Conditional models
    "design_matrix",
    "default_method",
    "draw_sample",
    "draw_logistic",
    "draw_polr",
    "draw_pmm",
    "CONDITIONAL_DRAWS",
    # Imputers
    "BaseImputer",
    "ChainedEquationsImputer",
    "MultilevelImputer",
    "get_imputer",
]
