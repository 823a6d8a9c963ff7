from .threshold_shift import (
    ShiftTable,
    MemberRelabel,
    RelabelResult,
    ThresholdShiftRelabeler,
    level_index,
    check_thresholds,
    assign_levels,
)

from .pipeline import (
    SensitivityResult,
    MNARSensitivityAnalysis,
)

__all__ = [
    # Relabelling
    "ShiftTable",
    "MemberRelabel",
    "RelabelResult",
    "ThresholdShiftRelabeler",
    "level_index",
    "check_thresholds",
    "assign_levels",
    # Second step
    "SensitivityResult",
    "MNARSensitivityAnalysis",
]
