"""
Model fitting functions for latent structure analysis.

- LCA (lca.py): Latent Class Analysis via EM with random restarts
- Low-rank imputation (lowrank.py): NMF-based completion of missing values
"""

from .lca import (
    LCAModel,
    fit_lca,
    predict_posterior,
    interpret_covariate_effects,
)

from .lowrank import (
    ImputationResult,
    impute_low_rank,
    missing_summary,
)

__all__ = [
    'LCAModel',
    'fit_lca',
    'predict_posterior',
    'interpret_covariate_effects',
    'ImputationResult',
    'impute_low_rank',
    'missing_summary',
]
