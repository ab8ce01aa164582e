"""Tests for the class-count sweep."""

import numpy as np
import pandas as pd
import pytest

from latent_structure import LCABackend, PreconditionError, SweepParams, run_sweep, run_sweep_from_params
from latent_structure.sweep import validate_class_counts

from conftest import ITEMS, make_two_class_data


class TestPreconditions:
    """Malformed inputs fail before any fit is attempted."""

    @pytest.mark.parametrize("counts", [[], [3, 2], [1, 2], [2, 2], [2, 2.5], [True, 3]])
    def test_malformed_class_counts(self, two_class_data, scripted_backend, counts):
        backend = scripted_backend({})
        with pytest.raises(PreconditionError):
            run_sweep(two_class_data, ITEMS, counts, 5, 100, 1e-6, backend=backend)
        assert backend.calls == []

    def test_validate_class_counts_accepts_range(self):
        assert validate_class_counts(range(2, 7)) == [2, 3, 4, 5, 6]

    def test_unknown_variable(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (1.0, 2.0, 5)})
        with pytest.raises(PreconditionError, match="unknown variables"):
            run_sweep(two_class_data, "cbind(q1, nope) ~ 1", [2], 5, 100, 1e-6, backend=backend)
        assert backend.calls == []

    def test_empty_dataset(self, scripted_backend):
        backend = scripted_backend({2: (1.0, 2.0, 5)})
        empty = pd.DataFrame(columns=ITEMS)
        with pytest.raises(PreconditionError, match="empty"):
            run_sweep(empty, ITEMS, [2], 5, 100, 1e-6, backend=backend)

    def test_manifest_without_observed_values(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (1.0, 2.0, 5)})
        data = two_class_data.assign(q5=np.nan)
        with pytest.raises(PreconditionError, match="no observed values"):
            run_sweep(data, ITEMS, [2, 3], 2, 100, 1e-6, backend=backend)
        assert backend.calls == []

    @pytest.mark.parametrize("restarts,max_iterations,tolerance", [
        (0, 100, 1e-6),
        (5, 0, 1e-6),
        (5, 100, 0.0),
    ])
    def test_bad_fit_settings(self, two_class_data, scripted_backend, restarts, max_iterations, tolerance):
        backend = scripted_backend({2: (1.0, 2.0, 5)})
        with pytest.raises(PreconditionError):
            run_sweep(two_class_data, ITEMS, [2], restarts, max_iterations, tolerance, backend=backend)
        assert backend.calls == []


class TestSweepWithScriptedBackend:
    """Sweep bookkeeping, independent of any real fitter."""

    def test_one_row_per_class_count_in_order(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (10.0, 12.0, 5), 3: (9.0, 13.0, 5), 5: (8.0, 15.0, 5)})
        summary, models = run_sweep(two_class_data, ITEMS, [2, 3, 5], 4, 100, 1e-6, backend=backend)

        assert summary.class_counts == [2, 3, 5]
        assert [spec.class_count for spec in backend.calls] == [2, 3, 5]
        assert sorted(models) == [2, 3, 5]

    def test_parameters_forwarded_unchanged(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (10.0, 12.0, 5)})
        run_sweep(two_class_data, "cbind(q1, q2, q3) ~ 1", [2], 7, 250, 1e-8, backend=backend)

        spec = backend.calls[0]
        assert spec.restarts == 7
        assert spec.max_iterations == 250
        assert spec.tolerance == 1e-8
        assert spec.formula.manifest == ("q1", "q2", "q3")

    def test_convergence_uses_strict_iteration_bound(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (10.0, 12.0, 99), 3: (9.0, 13.0, 100)})
        summary, _ = run_sweep(two_class_data, ITEMS, [2, 3], 4, 100, 1e-6, backend=backend)

        assert summary[0].converged is True
        assert summary[0].annotation is None
        assert summary[1].converged is False
        assert "iteration cap" in summary[1].annotation
        # A non-converged fit still reports its criteria
        assert summary[1].aic == 9.0

    def test_failed_candidate_scenario(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (100.2, 110.5, 12), 3: "numerical failure"})
        summary, models = run_sweep(two_class_data, ITEMS, [2, 3], 10, 1000, 1e-10, backend=backend)

        first, second = summary
        assert (first.class_count, first.aic, first.bic, first.converged) == (2, 100.2, 110.5, True)
        assert second.class_count == 3
        assert second.aic is None and second.bic is None and second.converged is None
        assert "numerical failure" in second.annotation
        assert list(models) == [2]

        frame = summary.to_frame()
        assert list(frame.columns) == ["class_count", "aic", "bic", "converged", "annotation"]
        assert frame.loc[1, "aic"] != frame.loc[1, "aic"]  # NaN
        assert pd.isna(frame.loc[1, "converged"])
        assert bool(frame.loc[0, "converged"]) is True

    def test_failure_does_not_stop_later_candidates(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: "boom", 3: "boom", 4: (1.0, 2.0, 3)})
        summary, models = run_sweep(two_class_data, ITEMS, [2, 3, 4], 4, 100, 1e-6, backend=backend)

        assert len(summary) == 3
        assert [r.failed for r in summary] == [True, True, False]
        assert list(models) == [4]

    def test_reporter_called_for_successes_only(self, two_class_data, scripted_backend):
        backend = scripted_backend({2: (1.0, 2.0, 3), 3: "boom", 4: (1.0, 2.0, 3)})
        seen = []

        def reporter(k, model, data):
            seen.append((k, model, data is two_class_data))

        run_sweep(two_class_data, ITEMS, [2, 3, 4], 4, 100, 1e-6, backend=backend, reporter=reporter)
        assert seen == [(2, "model-K2", True), (4, "model-K4", True)]

    def test_reporter_failure_is_not_fatal(self, two_class_data, scripted_backend, caplog):
        backend = scripted_backend({2: (1.0, 2.0, 3), 3: (0.5, 2.5, 3)})

        def reporter(k, model, data):
            raise RuntimeError("renderer broke")

        summary, models = run_sweep(two_class_data, ITEMS, [2, 3], 4, 100, 1e-6,
                                    backend=backend, reporter=reporter)
        assert len(summary) == 2
        assert sorted(models) == [2, 3]
        assert all(r.converged for r in summary)
        assert "Reporter failed" in caplog.text


class TestSweepWithLCABackend:
    """End-to-end sweeps with the bundled EM backend."""

    def test_sweep_fits_every_class_count(self, two_class_data_missing):
        with LCABackend(seed=3) as backend:
            summary, models = run_sweep(two_class_data_missing, ITEMS, [2, 3], 3, 500, 1e-6, backend=backend)

        assert summary.class_counts == [2, 3]
        assert sorted(models) == [2, 3]
        for result in summary:
            assert result.aic == models[result.class_count].aic
            assert result.bic == models[result.class_count].bic

    def test_identical_seeds_give_identical_summaries(self, two_class_data):
        frames = []
        for _ in range(2):
            with LCABackend(seed=11) as backend:
                summary, _ = run_sweep(two_class_data, ITEMS, [2, 3], 3, 200, 1e-6, backend=backend)
            frames.append(summary.to_frame())
        pd.testing.assert_frame_equal(frames[0], frames[1])

    def test_too_many_classes_becomes_failed_row(self):
        tiny = make_two_class_data(n_obs=3)
        with LCABackend(seed=0) as backend:
            summary, models = run_sweep(tiny, ITEMS, [2, 3, 4], 2, 50, 1e-6, backend=backend)

        assert len(summary) == 3
        assert summary[2].failed
        assert summary[2].converged is None
        assert "FitError" in summary[2].annotation
        assert 4 not in models
        assert {2, 3} <= set(models)

    def test_dataset_is_not_modified(self, two_class_data_missing):
        before = two_class_data_missing.copy()
        run_sweep(two_class_data_missing, ITEMS, [2], 2, 50, 1e-6, backend=LCABackend(seed=0).open())
        pd.testing.assert_frame_equal(before, two_class_data_missing)

    def test_default_backend_is_opened_for_the_sweep(self, two_class_data):
        summary, models = run_sweep(two_class_data, ITEMS, [2], 2, 100, 1e-6)
        assert len(summary) == 1
        assert 2 in models

    def test_run_sweep_from_params(self, two_class_data):
        params = SweepParams(min_classes=2, max_classes=3, restarts=2, max_iterations=100, tolerance=1e-6, seed=5)
        summary, models = run_sweep_from_params(two_class_data, ITEMS, params)
        assert summary.class_counts == [2, 3]
