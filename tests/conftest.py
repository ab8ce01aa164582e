"""Shared fixtures for latent_structure tests."""

import numpy as np
import pandas as pd
import pytest

from latent_structure.backends import FittingBackend
from latent_structure.schemas import FitFailure, FitSuccess


ITEMS = ["q1", "q2", "q3", "q4", "q5"]


def make_two_class_data(n_obs: int = 300, missing_rate: float = 0.0, seed: int = 0) -> pd.DataFrame:
    """Binary indicators coded 1/2 from two well-separated classes."""
    rng = np.random.default_rng(seed)
    membership = rng.random(n_obs) < 0.5
    p_yes = np.where(membership[:, None], 0.85, 0.15)
    values = np.where(rng.random((n_obs, len(ITEMS))) < p_yes, 2.0, 1.0)
    if missing_rate:
        values[rng.random(values.shape) < missing_rate] = np.nan
    return pd.DataFrame(values, columns=ITEMS)


@pytest.fixture
def two_class_data():
    return make_two_class_data()


@pytest.fixture
def two_class_data_missing():
    return make_two_class_data(missing_rate=0.1, seed=1)


class ScriptedBackend(FittingBackend):
    """
    Backend returning preset outcomes per class count.

    ``script`` maps K to either a (aic, bic, iterations) tuple or an error
    message string. Every fit call is recorded.
    """

    def __init__(self, script):
        self.script = script
        self.calls = []

    def fit(self, spec, data):
        self.calls.append(spec)
        entry = self.script[spec.class_count]
        if isinstance(entry, str):
            return FitFailure(class_count=spec.class_count, message=entry)
        aic, bic, iterations = entry
        return FitSuccess(
            class_count=spec.class_count,
            aic=aic,
            bic=bic,
            iterations=iterations,
            max_iterations=spec.max_iterations,
            model=f"model-K{spec.class_count}",
        )


@pytest.fixture
def scripted_backend():
    return ScriptedBackend
