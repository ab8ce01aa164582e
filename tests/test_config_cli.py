"""Tests for settings, parameter validation and the command-line entry point."""

import numpy as np
import pandas as pd
import pytest
from pydantic import ValidationError

from latent_structure.config import Settings
from latent_structure.data import Formula
from latent_structure.main import impute_for_sweep, main
from latent_structure.schemas import SweepParams

from conftest import make_two_class_data


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.class_counts == [2, 3, 4, 5, 6]
        assert settings.restarts == 10
        assert settings.max_iterations == 1000

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LATENT_MAX_CLASSES", "4")
        monkeypatch.setenv("LATENT_SEED", "123")
        settings = Settings(_env_file=None)
        assert settings.class_counts == [2, 3, 4]
        assert settings.seed == 123


class TestSweepParams:

    def test_class_counts(self):
        assert SweepParams(min_classes=3, max_classes=5).class_counts == [3, 4, 5]

    @pytest.mark.parametrize("kwargs", [
        {"min_classes": 1},
        {"min_classes": 4, "max_classes": 3},
        {"restarts": 0},
        {"tolerance": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            SweepParams(**kwargs)


class TestCLI:

    @pytest.fixture
    def csv_path(self, tmp_path):
        path = tmp_path / "clinical.csv"
        make_two_class_data(n_obs=120, missing_rate=0.05).to_csv(path, index=False)
        return path

    def test_runs_sweep_and_prints_summary(self, csv_path, tmp_path, capsys):
        export = tmp_path / "results.zip"
        code = main([str(csv_path), "--formula", "cbind(q1, q2, q3, q4, q5) ~ 1",
                     "--min-classes", "2", "--max-classes", "3", "--restarts", "2",
                     "--max-iter", "200", "--tol", "1e-6", "--export", str(export)])

        out = capsys.readouterr().out
        assert code == 0
        assert "class_count" in out
        assert export.exists()

    def test_imputation_before_sweep(self, csv_path, capsys):
        code = main([str(csv_path), "--min-classes", "2", "--max-classes", "2",
                     "--restarts", "1", "--max-iter", "100", "--impute-rank", "2"])
        assert code == 0

    def test_invalid_parameters_exit_code(self, csv_path, capsys):
        code = main([str(csv_path), "--min-classes", "1"])
        assert code == 2
        assert "Invalid sweep parameters" in capsys.readouterr().err

    def test_unknown_variable_exit_code(self, csv_path, capsys):
        code = main([str(csv_path), "--formula", "cbind(q1, nope) ~ 1",
                     "--min-classes", "2", "--max-classes", "2"])
        assert code == 2
        assert "unknown variables" in capsys.readouterr().err

    def test_missing_file_exit_code(self, tmp_path, capsys):
        code = main([str(tmp_path / "absent.csv"), "--min-classes", "2", "--max-classes", "2"])
        assert code == 2
        assert "Error" in capsys.readouterr().err


def test_impute_for_sweep_keeps_manifest_levels():
    frame = pd.DataFrame({
        "severity": [1.0, 5.0, 1.0, 5.0, np.nan, 1.0, np.nan, 5.0],
        "fever": [1.0, 2.0, 1.0, 2.0, 2.0, np.nan, 1.0, 2.0],
    })
    completed = impute_for_sweep(frame, Formula(manifest=("severity", "fever")), rank=1)

    assert completed.isna().sum().sum() == 0
    assert set(completed["severity"]) <= {1.0, 5.0}
    assert set(completed["fever"]) <= {1.0, 2.0}
