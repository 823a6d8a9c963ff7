from .probit_model import (
    OrdinalFit,
    OrdinalProbitFitter,
)

__all__ = [
    "OrdinalFit",
    "OrdinalProbitFitter",
]
