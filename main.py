#!/usr/bin/env python3
import argparse
import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ovsa.config.settings import (
    SensitivityConfig,
    ImputationEngine,
    OutputFormat,
    get_default_config,
    get_small_sample_config,
    get_hierarchical_config,
)
from ovsa.generators import MissingnessInjector, InjectionReport, get_generator
from ovsa.modeling import (
    ImputationEnsemble,
    MNARSensitivityAnalysis,
    PooledResult,
    ProportionComparator,
    RubinPooler,
    SensitivityResult,
    get_imputer,
)


# LOGGING SETUP

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger("ovsa")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S"
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


# PIPELINE CONFIGURATION

PRESETS = {
    "default": get_default_config,
    "small": get_small_sample_config,
    "hierarchical": get_hierarchical_config,
}


@dataclass
class PipelineConfig:
    # Core settings
    preset: str = "default"
    n_samples: Optional[int] = None
    seed: int = 123
    output_dir: str = "./output"
    output_format: str = "csv"

    # Imputation and relabelling overrides
    n_imputations: Optional[int] = None
    engine: Optional[str] = None
    noise_sd: Optional[float] = None
    n_jobs: int = 1

    # Export settings
    export_summary: bool = True
    export_metadata: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def build(self) -> SensitivityConfig:
        if self.preset not in PRESETS:
            raise ValueError(f"Unknown preset {self.preset!r}; choose from {sorted(PRESETS)}")

        config = PRESETS[self.preset]()
        config.simulation.random_seed = self.seed
        if self.n_samples is not None:
            config.simulation.n_samples = self.n_samples
        if self.n_imputations is not None:
            config.imputation.n_imputations = self.n_imputations
        if self.engine is not None:
            config.imputation.engine = ImputationEngine(self.engine)
            if config.imputation.engine == ImputationEngine.MULTILEVEL and not config.imputation.cluster_column:
                config.imputation.cluster_column = "clus"
        if self.noise_sd is not None:
            config.relabel.noise_sd = self.noise_sd
        config.relabel.n_jobs = self.n_jobs
        config.output_dir = self.output_dir
        config.output_format = OutputFormat(self.output_format)

        config.simulation.validate()
        config.imputation.validate()
        config.relabel.validate()
        return config


# PIPELINE RESULT

@dataclass
class PipelineResult:
    data: pd.DataFrame
    injection_report: InjectionReport
    imputations: List[pd.DataFrame]
    sensitivity: SensitivityResult
    proportions: pd.DataFrame
    mar_pooled: PooledResult
    mnar_pooled: Dict[str, PooledResult] = field(default_factory=dict)

    # Metadata
    generation_time: float = 0.0
    summary: Optional[Dict[str, Any]] = None

    def get_all_dataframes(self) -> Dict[str, pd.DataFrame]:
        pooled = [self.mar_pooled.table.assign(model="mar")]
        pooled += [result.table.assign(model=name) for name, result in self.mnar_pooled.items()]

        new_thresholds = [
            frame.assign(scenario=name).reset_index().rename(columns={"index": "threshold"})
            for name, frame in self.sensitivity.thresholds_new.items()
        ]

        return {
            "data": self.data,
            "proportions": self.proportions.reset_index(),
            "pooled_estimates": pd.concat(pooled).reset_index(),
            "thresholds_old": self.sensitivity.thresholds_old.reset_index().rename(columns={"index": "threshold"}),
            "thresholds_new": pd.concat(new_thresholds, ignore_index=True),
            "unresolved_counts": self.sensitivity.unresolved_counts.reset_index().rename(columns={"index": "imputation"}),
        }


# SENSITIVITY PIPELINE

class SensitivityPipeline:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.settings = self.config.build()
        self.logger = logger or setup_logging()

        # One child stream per stage
        streams = np.random.SeedSequence(self.config.seed).spawn(4)
        self._seeds = dict(zip(["simulate", "inject", "impute", "relabel"], streams))

    # PIPELINE STAGES

    def _simulate(self) -> pd.DataFrame:
        self.logger.info("Stage 1/6: Simulating dataset...")
        start = time.time()

        generator = get_generator(self.settings.simulation, seed=self._seeds["simulate"])
        df, is_valid, errors = generator.generate_and_validate()
        if not is_valid:
            raise ValueError(f"Simulated data failed validation: {errors}")
        self._data_stats = generator.get_summary_statistics(df)

        elapsed = time.time() - start
        self.logger.info(f"  Generated {len(df):,} records in {elapsed:.2f}s")
        return df

    def _inject(self, df: pd.DataFrame) -> pd.DataFrame:
        self.logger.info("Stage 2/6: Injecting MNAR missingness...")
        start = time.time()

        injector = MissingnessInjector(self.settings.missingness, seed=self._seeds["inject"])
        data, report = injector.generate(df)
        self._report = report
        self._missing_stats = injector.get_missing_statistics(data)

        elapsed = time.time() - start
        self.logger.info(
            f"  Removed {report.total_removed} values in {elapsed:.2f}s "
            f"(missing rate: {report.missing_rate*100:.1f}%)"
        )
        return data

    def _analysis_frame(self, data: pd.DataFrame) -> pd.DataFrame:
        # The complete ordinal column and the id never enter the imputation model
        miss = self.settings.missingness
        drop = [c for c in (miss.ordinal_column, miss.id_column) if c and c in data.columns]
        return data.drop(columns=drop)

    def _impute(self, analysis: pd.DataFrame) -> List[pd.DataFrame]:
        imp = self.settings.imputation
        self.logger.info(f"Stage 3/6: Imputing ({imp.engine.value}, m={imp.n_imputations})...")
        start = time.time()

        imputer = get_imputer(imp, seed=self._seeds["impute"])
        result = imputer.impute(analysis)
        members = ImputationEnsemble.coerce(result).to_list()

        elapsed = time.time() - start
        self.logger.info(f"  Produced {len(members)} completed datasets in {elapsed:.2f}s")
        return members

    def _relabel(self, analysis: pd.DataFrame, members: List[pd.DataFrame]) -> SensitivityResult:
        self.logger.info("Stage 4/6: Relabelling under shifted thresholds...")
        start = time.time()

        analysis_step = MNARSensitivityAnalysis(self.settings.relabel)
        result = analysis_step.run(
            analysis,
            members,
            formula=self.settings.pooling.ordinal_formula,
            shift_table=self.settings.shift_table,
            ordinal_column=self.settings.missingness.missing_column,
            seed=self._seeds["relabel"],
        )

        elapsed = time.time() - start
        self.logger.info(
            f"  Relabelled {len(result.scenario_columns)} scenarios in {elapsed:.2f}s "
            f"({int(result.unresolved_counts.to_numpy().sum())} rows back-filled)"
        )
        return result

    def _compare(self, result: SensitivityResult) -> pd.DataFrame:
        self.logger.info("Stage 5/6: Comparing level proportions...")

        comparator = ProportionComparator(self.settings.relabel.scenario_prefix)
        return comparator.compare(
            result.mnar_data, result.mar_column, result.missing_column, self.settings.shift_table
        )

    def _pool(self, result: SensitivityResult):
        self.logger.info("Stage 6/6: Pooling final models with Rubin's rules...")
        start = time.time()

        pooler = RubinPooler(self.settings.pooling)
        mar = pooler.analyze(result.mnar_data, formula=self.settings.pooling.formula)
        mnar = pooler.analyze(
            result.mnar_data,
            shift_table=self.settings.shift_table,
            ordinal_term=result.mar_column,
            scenario_prefix=self.settings.relabel.scenario_prefix,
        )

        elapsed = time.time() - start
        self.logger.info(f"  Pooled {1 + len(mnar)} models in {elapsed:.2f}s")
        return mar, mnar

    # MAIN RUN METHOD

    def run(self) -> PipelineResult:
        sim = self.settings.simulation
        self.logger.info("=" * 60)
        self.logger.info("Ordinal Variable MNAR Sensitivity Analysis")
        self.logger.info("=" * 60)
        self.logger.info(f"Dataset: {sim.dataset.value} ({sim.total_rows:,} rows)")
        self.logger.info(f"Seed: {self.config.seed}")
        self.logger.info(f"Scenarios: {len(self.settings.shift_table)}")
        self.logger.info("=" * 60)

        start_time = time.time()

        df = self._simulate()
        data = self._inject(df)
        analysis = self._analysis_frame(data)
        members = self._impute(analysis)
        sensitivity = self._relabel(analysis, members)
        proportions = self._compare(sensitivity)
        mar, mnar = self._pool(sensitivity)

        total_time = time.time() - start_time

        self.logger.info("=" * 60)
        self.logger.info(f"Pipeline completed in {total_time:.2f}s")
        self.logger.info("=" * 60)

        result = PipelineResult(
            data=data,
            injection_report=self._report,
            imputations=members,
            sensitivity=sensitivity,
            proportions=proportions,
            mar_pooled=mar,
            mnar_pooled=mnar,
            generation_time=total_time,
        )
        result.summary = self._generate_summary(result)
        return result

    # SUMMARY AND EXPORT

    def _generate_summary(self, result: PipelineResult) -> Dict[str, Any]:
        ordinal_term = result.sensitivity.mar_column
        effects = {}
        for name, pooled in [("mar", result.mar_pooled)] + list(result.mnar_pooled.items()):
            term = ordinal_term if name == "mar" else name
            effects[name] = {
                t: float(pooled.table.loc[t, "estimate"])
                for t in pooled.table.index if re.search(rf"\b{term}\b", t)
            }

        return {
            "generation_info": {
                "dataset": self.settings.simulation.dataset.value,
                "n_rows": len(result.data),
                "seed": self.config.seed,
                "timestamp": datetime.now().isoformat(),
            },
            "simulated_data": self._data_stats,
            "missingness": result.injection_report.to_dict(),
            "missing_by_column": self._missing_stats,
            "imputation": {
                "engine": self.settings.imputation.engine.value,
                "m": len(result.imputations),
            },
            "shift_table": self.settings.shift_table,
            "proportions": {
                column: {str(level): float(v) for level, v in values.items()}
                for column, values in result.proportions.round(4).items()
            },
            "unresolved_rows": int(result.sensitivity.unresolved_counts.to_numpy().sum()),
            "ordinal_effects": effects,
        }

    def export(
        self,
        result: PipelineResult,
        output_dir: Optional[str] = None,
        output_format: Optional[str] = None
    ) -> Dict[str, str]:
        output_dir = output_dir or self.config.output_dir
        output_format = output_format or self.config.output_format

        # Create output directory
        Path(output_dir).mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Exporting results to {output_dir} ({output_format} format)...")

        exported_files = {}
        for name, df in result.get_all_dataframes().items():
            if output_format in ["parquet", "both"]:
                filepath = os.path.join(output_dir, f"{name}.parquet")
                df.to_parquet(filepath, index=False, compression='snappy')
                exported_files[f"{name}_parquet"] = filepath
                self.logger.info(f"  Exported {name}.parquet ({len(df):,} rows)")

            if output_format in ["csv", "both"]:
                filepath = os.path.join(output_dir, f"{name}.csv")
                df.to_csv(filepath, index=False)
                exported_files[f"{name}_csv"] = filepath
                self.logger.info(f"  Exported {name}.csv ({len(df):,} rows)")

        # Export summary
        if self.config.export_summary and result.summary:
            summary_path = os.path.join(output_dir, "summary.json")
            with open(summary_path, 'w', encoding='utf-8') as f:
                json.dump(result.summary, f, indent=2, ensure_ascii=False, default=str)
            exported_files["summary"] = summary_path
            self.logger.info("  Exported summary.json")

        # Export metadata
        if self.config.export_metadata:
            metadata = {
                "pipeline": self.config.to_dict(),
                "settings": self.settings.to_dict(),
                "generation_time": result.generation_time,
            }
            metadata_path = os.path.join(output_dir, "metadata.json")
            with open(metadata_path, 'w', encoding='utf-8') as f:
                json.dump(metadata, f, indent=2, default=str)
            exported_files["metadata"] = metadata_path
            self.logger.info("  Exported metadata.json")

        self.logger.info(f"Export completed: {len(exported_files)} files")

        return exported_files

    def print_summary(self, result: PipelineResult) -> None:
        if result.summary is None:
            return

        s = result.summary
        print("\n" + "=" * 60)
        print("MNAR SENSITIVITY ANALYSIS SUMMARY")
        print("=" * 60)

        print(f"\nGeneration Info:")
        print(f"  Dataset: {s['generation_info']['dataset']}")
        print(f"  Rows: {s['generation_info']['n_rows']:,}")
        print(f"  Seed: {s['generation_info']['seed']}")
        print(f"  Run time: {result.generation_time:.2f}s")

        print(f"\nMissingness:")
        print(f"  Missing values: {s['missingness']['total_removed']:,}")
        print(f"  Missing rate: {s['missingness']['missing_rate']*100:.1f}%")

        print(f"\nImputation: {s['imputation']['engine']} (m={s['imputation']['m']})")

        print(f"\nLevel proportions among missing rows (%):")
        print(result.proportions.round(2).to_string())

        print(f"\nPooled MAR model:")
        print(result.mar_pooled.summary())
        for name, pooled in result.mnar_pooled.items():
            print(f"\nPooled {name} model:")
            print(pooled.summary())

        if s["unresolved_rows"]:
            print(f"\nBack-filled rows: {s['unresolved_rows']}")

        print("\n" + "=" * 60)


# CLI INTERFACE

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ordinal Variable MNAR Sensitivity Analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --samples 1000
  python main.py --config small --format both
  python main.py --config hierarchical --imputations 5 --seed 100
  python main.py --noise-sd 0.5 --n-jobs 4 --no-export
        """
    )

    # Core arguments
    parser.add_argument(
        "--samples", "-n",
        type=int,
        default=None,
        help="Number of rows to simulate (default: from preset)"
    )
    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=123,
        help="Random seed for reproducibility (default: 123)"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default="./output",
        help="Output directory (default: ./output)"
    )
    parser.add_argument(
        "--format", "-f",
        type=str,
        choices=["csv", "parquet", "both"],
        default="csv",
        help="Output format (default: csv)"
    )

    # Config presets
    parser.add_argument(
        "--config", "-c",
        type=str,
        choices=["default", "small", "hierarchical"],
        default="default",
        help="Use preset configuration"
    )

    # Analysis settings
    parser.add_argument(
        "--imputations", "-m",
        type=int,
        default=None,
        help="Number of imputations (default: from preset)"
    )
    parser.add_argument(
        "--engine",
        type=str,
        choices=["mice", "multilevel"],
        default=None,
        help="Imputation engine (default: from preset)"
    )
    parser.add_argument(
        "--noise-sd",
        type=float,
        default=None,
        help="Standard deviation of the latent noise (default: 1)"
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=1,
        help="Parallel jobs for relabelling (default: 1)"
    )
    parser.add_argument(
        "--no-export",
        action="store_true",
        help="Skip file export (run only)"
    )

    # Logging
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (optional)"
    )

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)

    # Setup logging
    logger = setup_logging(args.log_level, args.log_file)

    # Create pipeline config
    config = PipelineConfig(
        preset=args.config,
        n_samples=args.samples,
        seed=args.seed,
        output_dir=args.output,
        output_format=args.format,
        n_imputations=args.imputations,
        engine=args.engine,
        noise_sd=args.noise_sd,
        n_jobs=args.n_jobs,
    )

    # Create and run pipeline
    pipeline = SensitivityPipeline(config=config, logger=logger)
    result = pipeline.run()

    # Print summary
    pipeline.print_summary(result)

    # Export if not disabled
    if not args.no_export:
        pipeline.export(result)

    logger.info("Done!")


# MODULE EXPORTS

__all__ = [
    "PipelineConfig",
    "PipelineResult",
    "SensitivityPipeline",
    "setup_logging",
    "parse_args",
    "main",
]


if __name__ == "__main__":
    main()
