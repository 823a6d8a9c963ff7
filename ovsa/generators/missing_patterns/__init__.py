from .mnar_generator import (
    MissingnessSpec,
    GroupRemoval,
    InjectionReport,
    MissingnessInjector,
    binary_outcome,
)

__all__ = [
    "MissingnessSpec",
    "GroupRemoval",
    "InjectionReport",
    "MissingnessInjector",
    "binary_outcome",
]
