"""
Model selection sweep over the number of latent classes.

For each candidate class count K, in ascending order, the sweep asks a
fitting backend for one model (with several random restarts inside the
backend) and records AIC, BIC and convergence in a summary row. A failed
candidate becomes a row with missing criteria and the sweep moves on;
only malformed inputs stop it, and they do so before any fitting starts.

The sweep does not choose a winner. Lower AIC and BIC are better, the
two often disagree, and neither is guaranteed to be monotonic in K;
check ``converged`` before trusting a candidate.

Reproducibility comes from seeding the backend once before the sweep.
Candidates run sequentially and share the backend's random stream, so
the draws used for K=3 depend on how many K=2 consumed.
"""

import logging
from numbers import Integral
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .backends import FittingBackend, LCABackend
from .config import get_settings
from .data import Formula, validate_formula
from .exceptions import PreconditionError
from .schemas import CandidateSpec, FitFailure, FitResult, FitSuccess, SweepSummary


logger = logging.getLogger(__name__)

# reporter(class_count, model, data); side effect only
Reporter = Callable[[int, object, pd.DataFrame], None]

ModelsByClassCount = Dict[int, object]


def validate_class_counts(class_counts: Sequence[int]) -> List[int]:
    """
    Check that class counts are a non-empty, strictly increasing run of integers >= 2.

    Raises:
        PreconditionError: describing the first violation found
    """
    counts = list(class_counts)
    if not counts:
        raise PreconditionError("class_counts must not be empty")
    for k in counts:
        if isinstance(k, bool) or not isinstance(k, Integral):
            raise PreconditionError(f"class_counts must be integers, got {k!r}")
        if k < 2:
            raise PreconditionError(f"class_counts must all be >= 2, got {k}")
    for previous, current in zip(counts, counts[1:]):
        if current <= previous:
            raise PreconditionError(f"class_counts must be strictly increasing, got {previous} then {current}")
    return [int(k) for k in counts]


def _validate_fit_settings(restarts: int, max_iterations: int, tolerance: float) -> None:
    if isinstance(restarts, bool) or not isinstance(restarts, Integral) or restarts < 1:
        raise PreconditionError(f"restarts must be a positive integer, got {restarts!r}")
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, Integral) or max_iterations < 1:
        raise PreconditionError(f"max_iterations must be a positive integer, got {max_iterations!r}")
    if not tolerance > 0:
        raise PreconditionError(f"tolerance must be positive, got {tolerance!r}")


def run_sweep(data: pd.DataFrame,
              formula: Union[Formula, str, Sequence[str]],
              class_counts: Sequence[int],
              restarts: Optional[int] = None,
              max_iterations: Optional[int] = None,
              tolerance: Optional[float] = None,
              *,
              backend: Optional[FittingBackend] = None,
              reporter: Optional[Reporter] = None) -> Tuple[SweepSummary, ModelsByClassCount]:
    """
    Fit one latent class model per class count and collect fit statistics.

    Args:
        data: Read-only dataset holding every variable in ``formula``
        formula: Formula, poLCA-style formula string, or manifest names
        class_counts: Non-empty, strictly increasing class counts, each >= 2
        restarts: Random restarts per candidate (settings default if None)
        max_iterations: EM iteration cap per restart (settings default if None)
        tolerance: Convergence tolerance (settings default if None)
        backend: Opened fitting backend. When None, an ``LCABackend``
                 seeded from settings is opened for this sweep and closed after.
        reporter: Optional callable run after each successful fit; its
                  failures are logged and ignored.

    Returns:
        Tuple of (summary, models) where summary has exactly one row per
        requested class count, in order, and models maps each successfully
        fitted class count to its model.

    Raises:
        PreconditionError: on malformed inputs, before any fit is attempted
    """
    settings = get_settings()
    restarts = settings.restarts if restarts is None else restarts
    max_iterations = settings.max_iterations if max_iterations is None else max_iterations
    tolerance = settings.tolerance if tolerance is None else tolerance

    formula = Formula.coerce(formula)
    counts = validate_class_counts(class_counts)
    _validate_fit_settings(restarts, max_iterations, tolerance)
    validate_formula(data, formula)

    if backend is None:
        with LCABackend(seed=settings.seed) as owned:
            return _sweep(data, formula, counts, restarts, max_iterations, tolerance, owned, reporter)
    return _sweep(data, formula, counts, restarts, max_iterations, tolerance, backend, reporter)


def _sweep(data, formula, counts, restarts, max_iterations, tolerance,
           backend, reporter) -> Tuple[SweepSummary, ModelsByClassCount]:
    summary = SweepSummary()
    models: ModelsByClassCount = {}

    logger.info(f"Sweeping {formula} over K={counts} ({restarts} restarts, max {max_iterations} iterations)")

    for k in counts:
        spec = CandidateSpec(
            formula=formula,
            class_count=k,
            restarts=restarts,
            max_iterations=max_iterations,
            tolerance=tolerance,
        )
        logger.info(f"Fitting K={k}")
        outcome = backend.fit(spec, data)

        if isinstance(outcome, FitFailure):
            logger.warning(f"K={k} failed: {outcome.message}")
            summary.append(FitResult(class_count=k, annotation=f"fit failed: {outcome.message}"))
            continue

        if not isinstance(outcome, FitSuccess):
            raise TypeError(f"Backend returned {type(outcome).__name__}, expected FitSuccess or FitFailure")

        converged = outcome.iterations < max_iterations
        annotation = None
        if not converged:
            annotation = f"reached iteration cap ({max_iterations}) without meeting tolerance"
            logger.warning(f"K={k}: {annotation}")

        summary.append(FitResult(
            class_count=k,
            aic=outcome.aic,
            bic=outcome.bic,
            converged=converged,
            annotation=annotation,
        ))
        if outcome.model is not None:
            models[k] = outcome.model
        logger.info(f"K={k}: AIC={outcome.aic:.2f}, BIC={outcome.bic:.2f}, iterations={outcome.iterations}")

        if reporter is not None:
            _report(reporter, k, outcome.model, data)

    return summary, models


def _report(reporter: Reporter, class_count: int, model, data: pd.DataFrame) -> None:
    try:
        reporter(class_count, model, data)
    except Exception:
        logger.warning(f"Reporter failed for K={class_count}", exc_info=True)


def run_sweep_from_params(data: pd.DataFrame, formula, params, *,
                          reporter: Optional[Reporter] = None) -> Tuple[SweepSummary, ModelsByClassCount]:
    """Run a sweep described by ``SweepParams`` with a freshly seeded LCA backend."""
    with LCABackend(seed=params.seed) as backend:
        return run_sweep(
            data, formula, params.class_counts,
            params.restarts, params.max_iterations, params.tolerance,
            backend=backend, reporter=reporter,
        )
