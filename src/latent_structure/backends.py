"""
Fitting backends: the seam between the sweep and a mixture-model fitter.

A backend is an explicit handle with a lifecycle (open, fit, close) so that
any state it needs, such as a random generator or a connection to an
external compute process, is acquired and released by the caller rather
than living in module globals. Backends report every fit as a
``FitSuccess`` or ``FitFailure``; errors the fitter raises for a single
candidate never escape ``fit``.
"""

import abc
import logging
import traceback
from typing import Optional

import numpy as np
import pandas as pd

from .data import encode_covariates, encode_manifest, usable_rows
from .exceptions import BackendStateError, FitError
from .models.lca import fit_lca
from .schemas import CandidateSpec, FitFailure, FitOutcome, FitSuccess


logger = logging.getLogger(__name__)

# Errors a single fit may raise that are downgraded to a FitFailure
FIT_ERRORS = (FitError, np.linalg.LinAlgError, FloatingPointError, ValueError)


class FittingBackend(abc.ABC):
    """
    Base class for mixture-model fitters used by the sweep.

    Subclasses implement ``fit``; ``open``/``close`` default to no-ops.
    Use as a context manager to get the acquire/release pairing for free.
    """

    def open(self) -> "FittingBackend":
        return self

    def close(self) -> None:
        pass

    def __enter__(self) -> "FittingBackend":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abc.abstractmethod
    def fit(self, spec: CandidateSpec, data: pd.DataFrame) -> FitOutcome:
        """Fit one candidate and report the outcome."""


class LCABackend(FittingBackend):
    """
    Bundled backend running the package's EM latent class fitter.

    The random generator is created from ``seed`` when the backend is
    opened and shared by every candidate until it is closed, so one
    open/close cycle reproduces one sweep exactly.
    """

    def __init__(self, seed: int = 42):
        self.seed = seed
        self._rng: Optional[np.random.Generator] = None

    @property
    def is_open(self) -> bool:
        return self._rng is not None

    def open(self) -> "LCABackend":
        self._rng = np.random.default_rng(self.seed)
        logger.debug(f"LCABackend opened with seed {self.seed}")
        return self

    def close(self) -> None:
        self._rng = None

    def fit(self, spec: CandidateSpec, data: pd.DataFrame) -> FitOutcome:
        if self._rng is None:
            raise BackendStateError("LCABackend.fit called before open()")

        formula = spec.formula
        try:
            responses, levels = encode_manifest(data, formula.manifest)
            covariates, covariate_names = None, []
            if formula.covariates:
                covariates, covariate_names = encode_covariates(data, formula.covariates)

            keep = usable_rows(responses, covariates)
            dropped = int((~keep).sum())
            if dropped:
                logger.info(f"K={spec.class_count}: dropping {dropped} observations without usable responses")

            model = fit_lca(
                responses[keep],
                n_levels=[len(lv) for lv in levels],
                n_classes=spec.class_count,
                max_iter=spec.max_iterations,
                tol=spec.tolerance,
                n_init=spec.restarts,
                rng=self._rng,
                covariates=None if covariates is None else covariates[keep],
                variables=formula.manifest,
                levels=levels,
                covariate_names=covariate_names,
            )
        except FIT_ERRORS as e:
            return FitFailure(
                class_count=spec.class_count,
                message=f"{type(e).__name__}: {e}",
                traceback=traceback.format_exc(),
            )

        return FitSuccess(
            class_count=spec.class_count,
            aic=float(model.aic),
            bic=float(model.bic),
            iterations=model.n_iter,
            max_iterations=model.max_iter,
            model=model,
        )
