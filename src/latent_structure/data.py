"""
Dataset loading, model formulas and response encoding.

The sweep treats the dataset as a read-only ``pandas.DataFrame`` of
categorical or binary indicators, with ``NaN`` marking a missing
response. This module turns such a frame into the integer-coded arrays
the EM routine works with:

- manifest variables become codes ``0..L-1`` with ``-1`` for missing
- covariates become a standardized numeric matrix (categorical
  covariates are dummy-coded first)

Formulas follow the poLCA convention ``cbind(a, b, c) ~ 1`` where the
left-hand side lists the manifest indicators and the right-hand side
lists covariates predicting class membership (``1`` for none).
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import PreconditionError


logger = logging.getLogger(__name__)

_FORMULA_RE = re.compile(r"^\s*cbind\s*\((?P<lhs>[^)]*)\)\s*~\s*(?P<rhs>.+?)\s*$")


# =============================================================================
# FORMULAS
# =============================================================================

@dataclass(frozen=True)
class Formula:
    """Which variables are modeled jointly, and which predict class membership."""

    manifest: Tuple[str, ...]
    covariates: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "manifest", tuple(self.manifest))
        object.__setattr__(self, "covariates", tuple(self.covariates))
        if not self.manifest:
            raise PreconditionError("Formula needs at least one manifest variable")
        duplicated = sorted({v for v in self.manifest if self.manifest.count(v) > 1})
        if duplicated:
            raise PreconditionError(f"Manifest variables listed more than once: {duplicated}")
        overlap = sorted(set(self.manifest) & set(self.covariates))
        if overlap:
            raise PreconditionError(f"Variables used as both manifest and covariate: {overlap}")

    @classmethod
    def parse(cls, text: str) -> "Formula":
        """
        Parse a poLCA-style formula.

        Accepts ``"cbind(a, b, c) ~ 1"``, ``"cbind(a, b) ~ age + sex"`` or a
        bare comma-separated list of manifest variables (``"a, b, c"``).
        """
        match = _FORMULA_RE.match(text)
        if match is None:
            if "~" in text or "(" in text:
                raise PreconditionError(f"Cannot parse formula: {text!r}")
            return cls(manifest=_split_terms(text, ","))

        manifest = _split_terms(match.group("lhs"), ",")
        rhs = match.group("rhs").strip()
        covariates = () if rhs == "1" else _split_terms(rhs, "+")
        return cls(manifest=manifest, covariates=covariates)

    @classmethod
    def coerce(cls, value: Union["Formula", str, Sequence[str]]) -> "Formula":
        """Accept a Formula, a formula string, or a sequence of manifest names."""
        if isinstance(value, Formula):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        return cls(manifest=tuple(value))

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.manifest + self.covariates

    def __str__(self) -> str:
        rhs = " + ".join(self.covariates) if self.covariates else "1"
        return f"cbind({', '.join(self.manifest)}) ~ {rhs}"


def _split_terms(text: str, sep: str) -> Tuple[str, ...]:
    terms = tuple(term.strip() for term in text.split(sep))
    if any(not term for term in terms):
        raise PreconditionError(f"Empty term in formula section: {text!r}")
    return terms


# =============================================================================
# LOADING AND VALIDATION
# =============================================================================

def load_dataset(path: Union[str, Path], **read_csv_kwargs) -> pd.DataFrame:
    """
    Load a pre-cleaned dataset from CSV.

    Unnamed index columns (as written by R's ``write.csv``) are dropped.
    Any keyword arguments are passed to ``pandas.read_csv``.
    """
    frame = pd.read_csv(path, **read_csv_kwargs)
    unnamed = [c for c in frame.columns if str(c).startswith("Unnamed:")]
    if unnamed:
        frame = frame.drop(columns=unnamed)
    logger.info(f"Loaded {len(frame)} observations x {frame.shape[1]} variables from {path}")
    return frame


def validate_formula(data: pd.DataFrame, formula: Formula) -> None:
    """Raise PreconditionError if the dataset cannot support the formula."""
    if data is None or len(data) == 0:
        raise PreconditionError("Dataset is empty")
    missing = [v for v in formula.variables if v not in data.columns]
    if missing:
        raise PreconditionError(f"Formula references unknown variables: {missing}")
    unobserved = [v for v in formula.manifest if data[v].notna().sum() == 0]
    if unobserved:
        raise PreconditionError(f"Manifest variables with no observed values: {unobserved}")


# =============================================================================
# ENCODING
# =============================================================================

def _sorted_levels(values: pd.Series) -> list:
    observed = pd.unique(values.dropna())
    try:
        return sorted(observed)
    except TypeError:
        # Mixed types: fall back to string ordering
        return sorted(observed, key=str)


def encode_manifest(data: pd.DataFrame, variables: Sequence[str],
                    levels: Optional[Sequence[Sequence]] = None) -> Tuple[np.ndarray, List[tuple]]:
    """
    Encode manifest variables as integer response codes.

    Args:
        data: Dataset containing every variable in ``variables``
        variables: Manifest variable names, in model order
        levels: Optional fixed level labels per variable (e.g. from a fitted
                model). Values outside these levels are treated as missing.

    Returns:
        Tuple of (responses, levels) where:
        - responses: (n_obs, n_variables) int array, -1 for missing
        - levels: list of level-label tuples, one per variable
    """
    codes = np.empty((len(data), len(variables)), dtype=int)
    encoded_levels = []
    for j, name in enumerate(variables):
        column = data[name]
        lv = list(levels[j]) if levels is not None else _sorted_levels(column)
        codes[:, j] = pd.Categorical(column, categories=lv).codes
        encoded_levels.append(tuple(lv))
    return codes, encoded_levels


def encode_covariates(data: pd.DataFrame, covariates: Sequence[str]) -> Tuple[np.ndarray, List[str]]:
    """
    Build a standardized covariate matrix.

    Non-numeric covariates are dummy-coded (first level dropped). Every
    resulting column is z-scored so the multinomial-logit M-step behaves
    the same regardless of covariate scale. Constant columns are centered only.

    Returns:
        Tuple of (matrix, column_names). Rows with missing covariates are NaN.
    """
    parts = []
    for name in covariates:
        column = data[name]
        if pd.api.types.is_numeric_dtype(column):
            parts.append(column.astype(float).to_frame(name))
            continue
        dummies = pd.get_dummies(column, prefix=name, drop_first=True, dtype=float)
        # get_dummies encodes a missing value as the reference level
        dummies.loc[column.isna().to_numpy()] = np.nan
        parts.append(dummies)
    frame = pd.concat(parts, axis=1)
    values = frame.to_numpy(dtype=float)
    mean = np.nanmean(values, axis=0)
    std = np.nanstd(values, axis=0)
    std[std == 0] = 1.0
    return (values - mean) / std, list(frame.columns)


def usable_rows(responses: np.ndarray, covariates: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Boolean mask of observations that can enter the likelihood.

    A row needs at least one observed manifest response and, when covariates
    are modeled, a complete covariate vector.
    """
    keep = (responses >= 0).any(axis=1)
    if covariates is not None:
        keep &= ~np.isnan(covariates).any(axis=1)
    return keep


def level_frequencies(data: pd.DataFrame, variables: Sequence[str],
                      levels: Sequence[Sequence]) -> Dict[str, np.ndarray]:
    """Observed share of each level per variable, ignoring missing values."""
    shares = {}
    for name, lv in zip(variables, levels):
        counts = data[name].value_counts(dropna=True)
        total = counts.sum()
        shares[name] = np.array([counts.get(level, 0) / total if total else np.nan for level in lv])
    return shares
