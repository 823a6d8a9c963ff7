from .settings import (
    # Enums
    OutputFormat,
    ImputationEngine,
    ImputationMethod,
    UnresolvedPolicy,
    DatasetType,
    # Constants
    DEFAULT_SHIFT_TABLE,
    # Dataclasses
    SimulationConfig,
    MissingnessConfig,
    ImputationConfig,
    RelabelConfig,
    PoolingConfig,
    SensitivityConfig,
    # Factory functions
    get_default_config,
    get_small_sample_config,
    get_hierarchical_config,
)

__all__ = [
    # Enums
    "OutputFormat",
    "ImputationEngine",
    "ImputationMethod",
    "UnresolvedPolicy",
    "DatasetType",
    # Constants
    "DEFAULT_SHIFT_TABLE",
    # Dataclasses
    "SimulationConfig",
    "MissingnessConfig",
    "ImputationConfig",
    "RelabelConfig",
    "PoolingConfig",
    "SensitivityConfig",
    # Factory functions
    "get_default_config",
    "get_small_sample_config",
    "get_hierarchical_config",
]
