"""
Typed records exchanged between the sweep, its fitting backend and callers.

- CandidateSpec: one sweep step (formula, K, restarts, iteration cap, tolerance)
- FitSuccess / FitFailure: the result-or-error outcome of one fit
- FitResult: one fixed-shape row of the sweep summary
- SweepSummary: ordered rows, one per requested class count
- SweepParams: validated sweep request (CLI and settings driven runs)
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field, model_validator

from .data import Formula


SUMMARY_COLUMNS = ["class_count", "aic", "bic", "converged", "annotation"]


# =============================================================================
# FIT OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class CandidateSpec:
    """Everything the fitting backend needs for one class count."""
    formula: Formula
    class_count: int
    restarts: int
    max_iterations: int
    tolerance: float


@dataclass(frozen=True)
class FitSuccess:
    """A completed fit. Criteria are reported by the fitter, never recomputed."""
    class_count: int
    aic: float
    bic: float
    iterations: int
    max_iterations: int
    model: Any = None


@dataclass(frozen=True)
class FitFailure:
    """A fit that could not produce a model."""
    class_count: int
    message: str
    traceback: Optional[str] = None


FitOutcome = Union[FitSuccess, FitFailure]


# =============================================================================
# SWEEP SUMMARY
# =============================================================================

@dataclass(frozen=True)
class FitResult:
    """
    One summary row.

    ``aic``/``bic`` are None when the fit failed; ``converged`` is None
    (unknown) on failure, otherwise True iff the best restart stopped
    before the iteration cap.
    """
    class_count: int
    aic: Optional[float] = None
    bic: Optional[float] = None
    converged: Optional[bool] = None
    annotation: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.aic is None and self.bic is None


@dataclass
class SweepSummary:
    """Fit results in ascending class-count order, one per requested K."""
    results: List[FitResult] = field(default_factory=list)

    def append(self, result: FitResult) -> None:
        if self.results and result.class_count <= self.results[-1].class_count:
            raise ValueError("Sweep results must be appended in increasing class-count order")
        self.results.append(result)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[FitResult]:
        return iter(self.results)

    def __getitem__(self, index: int) -> FitResult:
        return self.results[index]

    @property
    def class_counts(self) -> List[int]:
        return [r.class_count for r in self.results]

    def get(self, class_count: int) -> Optional[FitResult]:
        """Row for a class count, or None if it was not requested."""
        for result in self.results:
            if result.class_count == class_count:
                return result
        return None

    def to_frame(self) -> pd.DataFrame:
        """
        Summary table with columns class_count, aic, bic, converged, annotation.

        Missing criteria are NaN and ``converged`` uses the nullable
        boolean dtype so unknown stays distinct from False.
        """
        return pd.DataFrame({
            'class_count': pd.Series([r.class_count for r in self.results], dtype="int64"),
            'aic': pd.Series([np.nan if r.aic is None else r.aic for r in self.results], dtype="float64"),
            'bic': pd.Series([np.nan if r.bic is None else r.bic for r in self.results], dtype="float64"),
            'converged': pd.array([r.converged for r in self.results], dtype="boolean"),
            'annotation': pd.Series([r.annotation for r in self.results], dtype="object"),
        }, columns=SUMMARY_COLUMNS)


# =============================================================================
# REQUEST PARAMETERS
# =============================================================================

class SweepParams(BaseModel):
    """Parameters for a sweep over a contiguous range of class counts."""
    min_classes: int = Field(default=2, ge=2, le=20, description="Smallest class count")
    max_classes: int = Field(default=6, ge=2, le=20, description="Largest class count")
    restarts: int = Field(default=10, ge=1, le=500, description="Random restarts per class count")
    max_iterations: int = Field(default=1000, ge=1, le=100000, description="Maximum EM iterations")
    tolerance: float = Field(default=1e-10, gt=0, le=1e-2, description="Convergence tolerance")
    seed: int = Field(default=42, ge=0, description="Seed applied once before the sweep")

    @model_validator(mode="after")
    def _check_range(self) -> "SweepParams":
        if self.max_classes < self.min_classes:
            raise ValueError("max_classes must be >= min_classes")
        return self

    @property
    def class_counts(self) -> List[int]:
        return list(range(self.min_classes, self.max_classes + 1))
