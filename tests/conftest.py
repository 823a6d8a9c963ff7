import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from ovsa.config.settings import SimulationConfig
from ovsa.generators.simulation import ReferenceDatasetGenerator


def ordinal(values, n_levels=5):
    return pd.Categorical(values, categories=list(range(1, n_levels + 1)), ordered=True)


def make_frame(y, x1, n_levels=5):
    return pd.DataFrame({
        "id": np.arange(1, len(y) + 1),
        "Y": np.asarray(y, dtype=int),
        "X1": ordinal(x1, n_levels),
    })


@pytest.fixture
def reference_data():
    return ReferenceDatasetGenerator(SimulationConfig(n_samples=1000), seed=123).generate()


@pytest.fixture
def small_reference_data():
    return ReferenceDatasetGenerator(SimulationConfig(n_samples=300), seed=7).generate()


@pytest.fixture
def relabel_members():
    # Two completed datasets over 8 rows; rows 2, 5 and 7 were originally missing
    mar = [1, 2, 3, 4, 2, 1, 3, 4]
    members = []
    for shift in (0, 1):
        levels = [min(v + shift, 4) for v in mar]
        members.append(pd.DataFrame({
            "Y": [0, 1, 0, 1, 1, 0, 1, 0],
            "X1_mis_mar": ordinal(levels, 4),
        }))
    mask = np.array([False, False, True, False, False, True, False, True])
    return members, mask
