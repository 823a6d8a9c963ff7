from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ENUMS FOR CATEGORICAL VALUES

class OutputFormat(Enum):
    CSV = "csv"
    PARQUET = "parquet"
    BOTH = "both"


class ImputationEngine(Enum):
    MICE = "mice"              # Multiple imputation by chained equations
    MULTILEVEL = "multilevel"  # Single-chain imputation with cluster effects (jomo-style)


class ImputationMethod(Enum):
    LOGREG = "logreg"      # Binary: bootstrap logistic regression
    POLR = "polr"          # Ordered: bootstrap proportional odds model
    POLYREG = "polyreg"    # Nominal: bootstrap multinomial logistic regression
    PMM = "pmm"            # Numeric: predictive mean matching
    SAMPLE = "sample"      # Random draw from observed values
    NONE = ""              # Column is not imputed


class UnresolvedPolicy(Enum):
    BACKFILL = "backfill"  # Draw from resolved values of the same column
    RAISE = "raise"


class DatasetType(Enum):
    NON_HIERARCHICAL = "non_hierarchical"  # simulate_bin_nonhier
    REFERENCE = "reference"                # simda design
    HIERARCHICAL = "hierarchical"          # simda2 design


# DEFAULT SHIFT TABLE (one column per MNAR scenario, K-1 rows)

DEFAULT_SHIFT_TABLE: Dict[str, List[float]] = {
    "delta1": [0.0, 0.0, 0.0, 0.0],
    "delta2": [0.0, -1.0, 2.0, 0.0],
    "delta3": [0.0, 0.5, 0.0, 0.5],
    "delta4": [-1.0, 0.5, 0.0, 1.0],
}


# DATACLASSES

@dataclass
class SimulationConfig:
    dataset: DatasetType = DatasetType.REFERENCE
    n_samples: int = 1000
    levels_x1: int = 5
    levels_x2: int = 4
    random_seed: int = 123

    # Hierarchical design
    n_clusters: int = 10
    obs_per_cluster: int = 200
    cluster_sd: float = 0.45

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        errors = []

        if self.n_samples <= 0:
            errors.append("n_samples must be positive")

        if self.levels_x1 < 2:
            errors.append("levels_x1 must be at least 2")

        if not 2 <= self.levels_x2 <= 26:
            errors.append("levels_x2 must be between 2 and 26")

        if self.n_clusters < 1 or self.obs_per_cluster < 1:
            errors.append("n_clusters and obs_per_cluster must be positive")

        if self.cluster_sd < 0:
            errors.append("cluster_sd must be non-negative")

        if errors:
            raise ValueError(f"SimulationConfig validation errors: {errors}")

    @property
    def total_rows(self) -> int:
        if self.dataset == DatasetType.HIERARCHICAL:
            return self.n_clusters * self.obs_per_cluster
        return self.n_samples


@dataclass
class MissingnessConfig:
    outcome_column: str = "Y"
    ordinal_column: str = "X1"
    id_column: Optional[str] = "id"
    group_a_levels: List[Any] = field(default_factory=lambda: [2])
    prob_a: float = 0.5
    group_b_levels: List[Any] = field(default_factory=lambda: [4])
    prob_b: float = 0.8

    # Stratified variant: stratum -> (prob_a, prob_b)
    strata_column: Optional[str] = None
    strata_probabilities: Optional[Dict[Any, Tuple[float, float]]] = None

    missing_suffix: str = "_mis"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        errors = []

        for name, prob in (("prob_a", self.prob_a), ("prob_b", self.prob_b)):
            if not 0 <= prob <= 1:
                errors.append(f"{name} must be between 0 and 1")

        if self.strata_probabilities is not None:
            if self.strata_column is None:
                errors.append("strata_probabilities requires strata_column")
            for stratum, pair in self.strata_probabilities.items():
                if len(pair) != 2 or not all(0 <= p <= 1 for p in pair):
                    errors.append(
                        f"strata_probabilities[{stratum!r}] must be two probabilities in [0, 1]"
                    )

        if not self.missing_suffix:
            errors.append("missing_suffix must not be empty")

        if errors:
            raise ValueError(f"MissingnessConfig validation errors: {errors}")

    @property
    def missing_column(self) -> str:
        return f"{self.ordinal_column}{self.missing_suffix}"


@dataclass
class ImputationConfig:
    engine: ImputationEngine = ImputationEngine.MICE
    n_imputations: int = 10
    max_iter: int = 5
    columns: Optional[List[str]] = None
    methods: Optional[Dict[str, ImputationMethod]] = None

    # Multilevel engine
    cluster_column: Optional[str] = None
    n_burn: int = 10
    n_between: int = 10

    # Predictive mean matching donors
    pmm_donors: int = 5

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        errors = []

        if self.n_imputations < 1:
            errors.append("n_imputations must be at least 1")

        if self.max_iter < 1:
            errors.append("max_iter must be at least 1")

        if self.n_burn < 0 or self.n_between < 1:
            errors.append("n_burn must be non-negative and n_between positive")

        if self.pmm_donors < 1:
            errors.append("pmm_donors must be positive")

        if self.engine == ImputationEngine.MULTILEVEL and not self.cluster_column:
            errors.append("multilevel engine requires cluster_column")

        if errors:
            raise ValueError(f"ImputationConfig validation errors: {errors}")


@dataclass
class RelabelConfig:
    noise_mean: float = 0.0
    noise_sd: float = 1.0
    share_noise_across_scenarios: bool = False
    unresolved_policy: UnresolvedPolicy = UnresolvedPolicy.BACKFILL
    n_jobs: int = 1
    mar_suffix: str = "_mar"
    scenario_prefix: str = "mnar"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        errors = []

        if self.noise_sd < 0:
            errors.append("noise_sd must be non-negative")

        if self.n_jobs == 0:
            errors.append("n_jobs must be non-zero")

        if not self.mar_suffix:
            errors.append("mar_suffix must not be empty")

        if errors:
            raise ValueError(f"RelabelConfig validation errors: {errors}")


@dataclass
class PoolingConfig:
    alpha: float = 0.05
    # Final analysis model, fitted per imputation as a binomial GLM
    formula: str = "Y ~ C(X1_mis_mar, Poly) + X2"
    ordinal_formula: str = "X1_mis_mar ~ Y + X2"

    def __post_init__(self):
        if not 0 < self.alpha < 1:
            raise ValueError("alpha must be between 0 and 1")


# MASTER CONFIG

@dataclass
class SensitivityConfig:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    missingness: MissingnessConfig = field(default_factory=MissingnessConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    relabel: RelabelConfig = field(default_factory=RelabelConfig)
    pooling: PoolingConfig = field(default_factory=PoolingConfig)
    shift_table: Dict[str, List[float]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SHIFT_TABLE.items()}
    )

    # Output settings
    output_dir: str = "./output"
    output_format: OutputFormat = OutputFormat.CSV
    verbose: bool = True

    def __post_init__(self):
        lengths = {len(v) for v in self.shift_table.values()}
        if len(lengths) > 1:
            raise ValueError("all shift_table columns must have the same length")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "SensitivityConfig":
        simulation = dict(config_dict.get("simulation", {}))
        if "dataset" in simulation:
            simulation["dataset"] = DatasetType(simulation["dataset"])

        imputation = dict(config_dict.get("imputation", {}))
        if "engine" in imputation:
            imputation["engine"] = ImputationEngine(imputation["engine"])
        if imputation.get("methods"):
            imputation["methods"] = {
                col: ImputationMethod(method)
                for col, method in imputation["methods"].items()
            }

        relabel = dict(config_dict.get("relabel", {}))
        if "unresolved_policy" in relabel:
            relabel["unresolved_policy"] = UnresolvedPolicy(relabel["unresolved_policy"])

        return cls(
            simulation=SimulationConfig(**simulation),
            missingness=MissingnessConfig(**config_dict.get("missingness", {})),
            imputation=ImputationConfig(**imputation),
            relabel=RelabelConfig(**relabel),
            pooling=PoolingConfig(**config_dict.get("pooling", {})),
            shift_table=config_dict.get(
                "shift_table", {k: list(v) for k, v in DEFAULT_SHIFT_TABLE.items()}
            ),
            output_dir=config_dict.get("output_dir", "./output"),
            output_format=OutputFormat(config_dict.get("output_format", "csv")),
            verbose=config_dict.get("verbose", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        def _plain(value: Any) -> Any:
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, dict):
                return {k: _plain(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [_plain(v) for v in value]
            return value

        return _plain(asdict(self))


# DEFAULT CONFIGURATIONS

def get_default_config() -> SensitivityConfig:
    return SensitivityConfig()


def get_small_sample_config() -> SensitivityConfig:
    return SensitivityConfig(
        simulation=SimulationConfig(n_samples=300),
        imputation=ImputationConfig(n_imputations=3, max_iter=2),
    )


def get_hierarchical_config() -> SensitivityConfig:
    return SensitivityConfig(
        simulation=SimulationConfig(
            dataset=DatasetType.HIERARCHICAL,
            levels_x1=3,
            n_clusters=10,
            obs_per_cluster=200,
            random_seed=100,
        ),
        missingness=MissingnessConfig(
            outcome_column="y",
            ordinal_column="x1",
            id_column="id",
            group_a_levels=[1],
            group_b_levels=[3],
            strata_column="x2",
            strata_probabilities={
                1: (0.2, 0.3),
                2: (0.5, 0.4),
                3: (0.4, 0.2),
                4: (0.3, 0.3),
            },
        ),
        imputation=ImputationConfig(
            engine=ImputationEngine.MULTILEVEL,
            n_imputations=5,
            cluster_column="clus",
            n_burn=10,
            n_between=10,
        ),
        pooling=PoolingConfig(
            formula="y ~ C(x1_mis_mar, Poly) + x2",
            ordinal_formula="x1_mis_mar ~ y + x2",
        ),
        shift_table={
            "delta1": [0.0, 0.0],
            "delta2": [-0.5, 0.5],
            "delta3": [0.5, -0.5],
        },
    )


# MODULE EXPORTS

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
