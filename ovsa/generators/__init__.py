from .base import (
    # Base classes
    BaseDataGenerator,
    SeedLike,
    # Utility functions
    as_generator,
    poly_contrasts,
    treatment_dummies,
    softmax_rows,
    sample_categories,
)

from .simulation import (
    NonHierarchicalGenerator,
    ReferenceDatasetGenerator,
    HierarchicalGenerator,
    REFERENCE_X1_WEIGHTS,
    REFERENCE_Y_COEFFICIENTS,
    HIERARCHICAL_X1_WEIGHTS,
    HIERARCHICAL_Y_COEFFICIENTS,
    GENERATORS,
    get_generator,
)

from .missing_patterns import (
    MissingnessSpec,
    GroupRemoval,
    InjectionReport,
    MissingnessInjector,
)

__all__ = [
    # Base
    "BaseDataGenerator",
    "SeedLike",
    "as_generator",
    "poly_contrasts",
    "treatment_dummies",
    "softmax_rows",
    "sample_categories",
    # Simulation
    "NonHierarchicalGenerator",
    "ReferenceDatasetGenerator",
    "HierarchicalGenerator",
    "REFERENCE_X1_WEIGHTS",
    "REFERENCE_Y_COEFFICIENTS",
    "HIERARCHICAL_X1_WEIGHTS",
    "HIERARCHICAL_Y_COEFFICIENTS",
    "GENERATORS",
    "get_generator",
    # Missing patterns
    "MissingnessSpec",
    "GroupRemoval",
    "InjectionReport",
    "MissingnessInjector",
]
