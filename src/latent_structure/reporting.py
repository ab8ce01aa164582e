"""
Reporting helpers for sweep results.

These functions turn fitted models and sweep summaries into tables for
display or export. Nothing here feeds back into the sweep:

- render_table: class-conditional response probabilities for one model
- posterior_table: per-observation class membership
- TableCollector / log_candidate_table: reporters usable by ``run_sweep``
- rank_candidates: converged candidates ordered by an information criterion
- export_sweep: ZIP archive of the summary and every fitted model
"""

import io
import json
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .data import level_frequencies
from .models.lca import LCAModel
from .schemas import SweepSummary


logger = logging.getLogger(__name__)

CRITERIA = ("aic", "bic")


def _class_names(n_classes: int) -> list:
    return [f"Class {c + 1}" for c in range(n_classes)]


def render_table(model: LCAModel, variable_labels: Optional[Mapping[str, str]] = None,
                 data: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """
    Class-conditional response probabilities, one row per (variable, level).

    The first row holds the estimated class sizes. When ``data`` is given,
    an ``Overall`` column shows each level's observed share in that data,
    which makes it easy to see where a class departs from the population.

    Args:
        model: Fitted latent class model
        variable_labels: Optional display names keyed by variable name
        data: Optional dataset (or subset) for the Overall column

    Returns:
        DataFrame indexed by (variable, level) with one column per class
    """
    labels = dict(variable_labels or {})
    class_names = _class_names(model.n_classes)

    index = [("Class size", "")]
    rows = [model.class_probs]
    for name, levels, probs in zip(model.variables, model.levels, model.item_probs):
        label = labels.get(name, name)
        for k, level in enumerate(levels):
            index.append((label, str(level)))
            rows.append(probs[:, k])

    table = pd.DataFrame(
        np.vstack(rows),
        index=pd.MultiIndex.from_tuples(index, names=["variable", "level"]),
        columns=class_names,
    )

    if data is not None:
        shares = level_frequencies(data, model.variables, model.levels)
        overall = [1.0]
        for name in model.variables:
            overall.extend(shares[name])
        table["Overall"] = overall

    return table


def posterior_table(model: LCAModel, index: Optional[pd.Index] = None) -> pd.DataFrame:
    """
    Posterior membership probabilities plus the modal (1-indexed) class.

    ``index`` should be the index of the rows that entered the fit; it
    defaults to a plain range.
    """
    table = pd.DataFrame(model.posterior, columns=_class_names(model.n_classes), index=index)
    table["modal_class"] = model.modal_class + 1
    return table


class TableCollector:
    """Reporter that keeps ``render_table`` output for every fitted class count."""

    def __init__(self, variable_labels: Optional[Mapping[str, str]] = None, include_overall: bool = True):
        self.variable_labels = dict(variable_labels or {})
        self.include_overall = include_overall
        self.tables: Dict[int, pd.DataFrame] = {}

    def __call__(self, class_count: int, model: LCAModel, data: pd.DataFrame) -> None:
        self.tables[class_count] = render_table(
            model, self.variable_labels, data if self.include_overall else None
        )


def log_candidate_table(class_count: int, model: LCAModel, data: pd.DataFrame) -> None:
    """Reporter that logs the profile table of each fitted candidate."""
    table = render_table(model, data=data)
    logger.info(f"Class profiles for K={class_count}:\n{table.round(3).to_string()}")


def rank_candidates(summary: SweepSummary, criterion: str = "bic",
                    models: Optional[Mapping[int, LCAModel]] = None) -> pd.DataFrame:
    """
    Converged candidates ordered by an information criterion, best first.

    Failed and non-converged candidates are left out. This is a reading
    aid for choosing K; ties and AIC/BIC disagreement are left to the analyst.
    With ``models``, an ``entropy`` column is added for classification quality.
    """
    if criterion not in CRITERIA:
        raise ValueError(f"criterion must be one of {CRITERIA}, got {criterion!r}")

    frame = summary.to_frame()
    ranked = frame[frame["converged"].fillna(False).astype(bool) & frame[criterion].notna()]
    ranked = ranked.sort_values([criterion, "class_count"]).reset_index(drop=True)

    if models is not None:
        ranked["entropy"] = [
            models[k].entropy if k in models else np.nan for k in ranked["class_count"]
        ]
    return ranked


def export_sweep(summary: SweepSummary, models: Mapping[int, LCAModel],
                 path: Union[str, Path],
                 variable_labels: Optional[Mapping[str, str]] = None) -> Path:
    """
    Write sweep results to a ZIP archive.

    Contents:
    - sweep_summary.csv: the summary table
    - profiles_K{k}.csv: class-conditional probabilities per fitted model
    - posterior_K{k}.csv: posterior membership per fitted model
    - metadata.json: export time, class counts and per-model statistics

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    metadata = {
        'export_timestamp': datetime.now().isoformat(),
        'class_counts': summary.class_counts,
        'models': {},
        'files_included': [],
    }

    with zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('sweep_summary.csv', summary.to_frame().to_csv(index=False))
        metadata['files_included'].append('sweep_summary.csv')

        for k in sorted(models):
            model = models[k]

            csv_buffer = io.StringIO()
            render_table(model, variable_labels).to_csv(csv_buffer)
            zf.writestr(f'profiles_K{k}.csv', csv_buffer.getvalue())
            metadata['files_included'].append(f'profiles_K{k}.csv')

            zf.writestr(f'posterior_K{k}.csv', posterior_table(model).to_csv(index_label='observation'))
            metadata['files_included'].append(f'posterior_K{k}.csv')

            metadata['models'][str(k)] = {
                'log_likelihood': float(model.log_likelihood),
                'aic': float(model.aic),
                'bic': float(model.bic),
                'n_params': int(model.n_params),
                'n_obs': int(model.n_obs),
                'n_iterations': int(model.n_iter),
                'entropy': None if np.isnan(model.entropy) else float(model.entropy),
            }

        zf.writestr('metadata.json', json.dumps(metadata, indent=2))

    logger.info(f"Exported sweep results for K={summary.class_counts} to {path}")
    return path
