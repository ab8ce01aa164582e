"""
Command-line entry point: ``latent-sweep``.

Loads a CSV dataset, optionally fills missing values with a low-rank
reconstruction, runs the class-count sweep and prints the summary table.
Defaults come from ``Settings`` (``LATENT_*`` environment variables).
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

import pandas as pd
from pydantic import ValidationError

from .config import configure_logging, get_settings
from .data import Formula, load_dataset, validate_formula
from .exceptions import PreconditionError
from .models.lowrank import impute_low_rank, missing_summary
from .reporting import export_sweep, log_candidate_table, rank_candidates
from .schemas import SweepParams
from .sweep import run_sweep_from_params


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="latent-sweep",
        description="Fit latent class models across a range of class counts and compare AIC/BIC.",
    )
    parser.add_argument("data", help="CSV file with one row per observation")
    parser.add_argument("--formula", default=None,
                        help='poLCA-style formula, e.g. "cbind(a, b, c) ~ 1" (default: all columns)')
    parser.add_argument("--min-classes", type=int, default=None)
    parser.add_argument("--max-classes", type=int, default=None)
    parser.add_argument("--restarts", type=int, default=None)
    parser.add_argument("--max-iter", type=int, default=None)
    parser.add_argument("--tol", type=float, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--impute-rank", type=int, default=None,
                        help="Fill missing values from a rank-N reconstruction before fitting")
    parser.add_argument("--show-tables", action="store_true",
                        help="Log the class profile table of every fitted candidate")
    parser.add_argument("--export", default=None, help="Write a ZIP of all results to this path")
    parser.add_argument("--log-level", default=None)
    return parser


def _pick(value, default):
    return default if value is None else value


def impute_for_sweep(data: pd.DataFrame, formula: Formula, rank: int, seed: int = 42) -> pd.DataFrame:
    """
    Fill missing values in the formula's variables before fitting.

    Manifest indicators are imputed as categories even when numerically
    coded (1/2/3), so filled cells always hold an observed level.
    """
    validate_formula(data, formula)
    columns = list(formula.variables)
    categorical = [
        c for c in columns
        if c in formula.manifest or not pd.api.types.is_numeric_dtype(data[c])
    ]
    return impute_low_rank(data, rank, columns=columns, categorical=categorical,
                           random_state=seed).frame


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(_pick(args.log_level, settings.log_level))

    try:
        params = SweepParams(
            min_classes=_pick(args.min_classes, settings.min_classes),
            max_classes=_pick(args.max_classes, settings.max_classes),
            restarts=_pick(args.restarts, settings.restarts),
            max_iterations=_pick(args.max_iter, settings.max_iterations),
            tolerance=_pick(args.tol, settings.tolerance),
            seed=_pick(args.seed, settings.seed),
        )
    except ValidationError as e:
        print(f"Invalid sweep parameters:\n{e}", file=sys.stderr)
        return 2

    try:
        data = load_dataset(args.data)
        formula = Formula.parse(args.formula) if args.formula else Formula(manifest=tuple(data.columns))

        impute_rank = _pick(args.impute_rank, settings.impute_rank)
        if impute_rank:
            missing = missing_summary(data[list(formula.variables)])
            logger.info(f"Missing values before imputation:\n{missing.to_string()}")
            data = impute_for_sweep(data, formula, impute_rank, seed=params.seed)

        reporter = log_candidate_table if args.show_tables else None
        summary, models = run_sweep_from_params(data, formula, params, reporter=reporter)
    except (PreconditionError, OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    with pd.option_context("display.width", 120):
        print(summary.to_frame().to_string(index=False))
        ranked = rank_candidates(summary, "bic", models)
        if len(ranked):
            print(f"\nLowest BIC among converged candidates: K={int(ranked.loc[0, 'class_count'])}")

    if args.export:
        export_sweep(summary, models, args.export)
    return 0


if __name__ == "__main__":
    sys.exit(main())
