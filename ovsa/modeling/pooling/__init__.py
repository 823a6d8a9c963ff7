from .rubin import (
    LAMBDA_FLOOR,
    POOLED_COLUMNS,
    pool_estimates,
    PooledResult,
    RubinPooler,
)

__all__ = [
    "LAMBDA_FLOOR",
    "POOLED_COLUMNS",
    "pool_estimates",
    "PooledResult",
    "RubinPooler",
]
