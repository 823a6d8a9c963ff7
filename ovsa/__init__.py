from .exceptions import (
    ValidationError,
    InvalidThresholdsError,
    UnresolvedRowError,
    EmptyCandidatePoolWarning,
)

from .config import (
    SensitivityConfig,
    get_default_config,
    get_small_sample_config,
    get_hierarchical_config,
)

from .generators import (
    MissingnessInjector,
    InjectionReport,
    get_generator,
)

from .modeling import (
    ImputationEnsemble,
    get_imputer,
    OrdinalProbitFitter,
    ShiftTable,
    ThresholdShiftRelabeler,
    MNARSensitivityAnalysis,
    ProportionComparator,
    plot_proportions,
    pool_estimates,
    RubinPooler,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ValidationError",
    "InvalidThresholdsError",
    "UnresolvedRowError",
    "EmptyCandidatePoolWarning",
    # Configuration
    "SensitivityConfig",
    "get_default_config",
    "get_small_sample_config",
    "get_hierarchical_config",
    # Data
    "MissingnessInjector",
    "InjectionReport",
    "get_generator",
    # Analysis
    "ImputationEnsemble",
    "get_imputer",
    "OrdinalProbitFitter",
    "ShiftTable",
    "ThresholdShiftRelabeler",
    "MNARSensitivityAnalysis",
    "ProportionComparator",
    "plot_proportions",
    "pool_estimates",
    "RubinPooler",
]
