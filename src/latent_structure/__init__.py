"""
Latent Structure
================

Model selection sweeps for Latent Class Analysis on small categorical
datasets, plus low-rank imputation of missing values.

The central operation fits one latent class model per candidate number
of classes, with several random restarts each, and gathers AIC, BIC and
convergence into a summary table. A candidate that fails to fit becomes
a row with missing criteria; it never aborts the sweep.

Quick Start
-----------
```python
from latent_structure import load_dataset, run_sweep, LCABackend
from latent_structure.reporting import render_table, rank_candidates

data = load_dataset("clinical.csv")

with LCABackend(seed=42) as backend:
    summary, models = run_sweep(
        data, "cbind(a, b, c, d) ~ 1", class_counts=range(2, 7),
        restarts=10, max_iterations=1000, tolerance=1e-10,
        backend=backend,
    )

print(summary.to_frame())
print(rank_candidates(summary, "bic", models))
print(render_table(models[3]))
```

Package Structure
-----------------
- `config`: Settings and logging setup
- `data`: Loading, formulas and response encoding
- `models`: LCA fitting (EM) and low-rank imputation
- `backends`: Fitting backend lifecycle and result-or-error outcomes
- `sweep`: The class-count sweep
- `reporting`: Profile tables, ranking and export
"""

__version__ = "0.1.0"

from .config import Settings, get_settings, configure_logging
from .exceptions import (
    LatentStructureError,
    PreconditionError,
    FitError,
    BackendStateError,
)
from .data import Formula, load_dataset
from .schemas import (
    CandidateSpec,
    FitSuccess,
    FitFailure,
    FitResult,
    SweepSummary,
    SweepParams,
)
from .backends import FittingBackend, LCABackend
from .sweep import run_sweep, run_sweep_from_params, validate_class_counts

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "configure_logging",
    "LatentStructureError",
    "PreconditionError",
    "FitError",
    "BackendStateError",
    "Formula",
    "load_dataset",
    "CandidateSpec",
    "FitSuccess",
    "FitFailure",
    "FitResult",
    "SweepSummary",
    "SweepParams",
    "FittingBackend",
    "LCABackend",
    "run_sweep",
    "run_sweep_from_params",
    "validate_class_counts",
]
