"""
Latent Class Analysis (LCA) for categorical clinical indicators.

LCA posits that each patient belongs to one of K unobserved classes, and
that within a class the observed indicators are independent categorical
draws (local independence). Indicators may be binary or polytomous, and
individual responses may be missing; a missing response simply drops out
of that patient's likelihood.

The model is fit using the Expectation-Maximization (EM) algorithm:
- E-step: Compute posterior probability of class membership for each patient
- M-step: Update class probabilities and response probabilities

When covariates are supplied, the class prior becomes patient specific,
P(class = c | Z_i) = softmax(Z_i @ beta_c), and beta is updated with a
few penalized gradient steps per M-step.

Key outputs:
- class_probs: Prior probability of each class (class sizes)
- item_probs: P(response = level | class), one (K, L_j) matrix per indicator
- posterior: Posterior class membership probabilities
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.special import entr

from ..data import encode_manifest
from ..exceptions import FitError


logger = logging.getLogger(__name__)

# Floor inside logs, keeps empty cells from producing -inf
_EPS = 1e-10


@dataclass
class LCAModel:
    """A fitted latent class model (best of all restarts)."""

    n_classes: int
    class_probs: np.ndarray
    item_probs: List[np.ndarray]
    posterior: np.ndarray
    log_likelihood: float
    n_params: int
    n_obs: int
    aic: float
    bic: float
    n_iter: int
    max_iter: int
    variables: Tuple[str, ...] = ()
    levels: Tuple[tuple, ...] = ()
    beta: Optional[np.ndarray] = None
    covariate_names: Tuple[str, ...] = ()
    restart_log_likelihoods: List[float] = field(default_factory=list)

    @property
    def entropy(self) -> float:
        """
        Relative entropy of the posterior (1 = perfectly separated classes).

        Follows the usual LCA definition 1 - sum(-p log p) / (N log K).
        """
        if self.n_classes < 2 or self.n_obs == 0:
            return float("nan")
        return float(1.0 - entr(self.posterior).sum() / (self.n_obs * np.log(self.n_classes)))

    @property
    def modal_class(self) -> np.ndarray:
        """0-based most likely class per observation."""
        return self.posterior.argmax(axis=1)


# =============================================================================
# INITIALIZATION
# =============================================================================

def initialize_lca_parameters(n_classes: int, n_levels: Sequence[int],
                              rng: np.random.Generator,
                              n_features: int = 0) -> Tuple[np.ndarray, List[np.ndarray], Optional[np.ndarray]]:
    """
    Draw random starting values for one EM restart.

    Class probabilities come from a flat Dirichlet, and each indicator's
    response probabilities from a Dirichlet(2, ..., 2), the polytomous
    generalization of a Beta(2, 2) centered on the uniform profile.

    Args:
        n_classes: Number of latent classes to fit
        n_levels: Number of response levels per indicator
        rng: Generator shared across restarts and candidates
        n_features: Covariate columns including intercept (0 for none)

    Returns:
        Tuple of (class_probs, item_probs, beta); beta is None without covariates
    """
    class_probs = rng.dirichlet(np.ones(n_classes))
    item_probs = [rng.dirichlet(np.full(n_lev, 2.0), size=n_classes) for n_lev in n_levels]
    beta = None
    if n_features:
        beta = rng.standard_normal((n_features, n_classes)) * 0.1
        beta[:, -1] = 0  # Reference class constraint
    return class_probs, item_probs, beta


def response_indicators(responses: np.ndarray, n_levels: Sequence[int]) -> List[np.ndarray]:
    """
    One-hot encode response codes per indicator.

    Rows with a missing response (-1) are all zero, so they contribute
    nothing to either the likelihood or the M-step counts.
    """
    blocks = []
    for j, n_lev in enumerate(n_levels):
        codes = responses[:, j]
        block = np.zeros((len(codes), n_lev))
        observed = np.flatnonzero(codes >= 0)
        block[observed, codes[observed]] = 1.0
        blocks.append(block)
    return blocks


# =============================================================================
# EM ALGORITHM STEPS
# =============================================================================

def softmax(x: np.ndarray) -> np.ndarray:
    """Softmax along the last axis, shifted by the max for stability."""
    x_shifted = x - x.max(axis=-1, keepdims=True)
    exp_x = np.exp(x_shifted)
    return exp_x / exp_x.sum(axis=-1, keepdims=True)


def lca_e_step(indicators: List[np.ndarray], log_prior: np.ndarray,
               item_probs: List[np.ndarray]) -> Tuple[np.ndarray, float]:
    """
    E-step: posterior class membership and observed-data log-likelihood.

    Args:
        indicators: Per-indicator (n_obs, n_levels) one-hot blocks
        log_prior: (n_classes,) or (n_obs, n_classes) log class priors
        item_probs: Per-indicator (n_classes, n_levels) response probabilities

    Returns:
        Tuple of (responsibilities, log_likelihood)
    """
    # log P(x_i | c) = sum_j log P(x_ij | c), computed for all i, c at once
    log_conditional = sum(block @ np.log(probs + _EPS).T
                          for block, probs in zip(indicators, item_probs))
    log_joint = log_prior + log_conditional

    max_log_joint = log_joint.max(axis=1, keepdims=True)
    exp_log_joint = np.exp(log_joint - max_log_joint)
    sum_exp = exp_log_joint.sum(axis=1, keepdims=True)

    responsibilities = exp_log_joint / sum_exp
    log_likelihood = float((max_log_joint + np.log(sum_exp)).sum())
    return responsibilities, log_likelihood


def lca_m_step(indicators: List[np.ndarray], responsibilities: np.ndarray) -> Tuple[np.ndarray, List[np.ndarray]]:
    """
    M-step: update class sizes and response probabilities.

    Response probabilities are normalized over observed responses only,
    so patients missing an indicator do not dilute that indicator's profile.
    """
    class_probs = responsibilities.mean(axis=0)
    item_probs = []
    for block in indicators:
        counts = responsibilities.T @ block  # (n_classes, n_levels)
        item_probs.append(counts / (counts.sum(axis=1, keepdims=True) + _EPS))
    return class_probs, item_probs


def lca_m_step_beta(covariates: np.ndarray, responsibilities: np.ndarray,
                    beta: np.ndarray, learning_rate: float = 0.1,
                    n_steps: int = 10, l2_penalty: float = 0.1) -> np.ndarray:
    """
    M-step for covariate coefficients: regularized multinomial logit.

    A few gradient steps on
        Q(beta) = sum_i sum_c r_ic log P(c | Z_i, beta) - (lambda/2) ||beta||^2
    per EM iteration (generalized EM). The intercept row is not penalized
    and the last class stays the reference.
    """
    n_obs = covariates.shape[0]
    beta = beta.copy()
    for _ in range(n_steps):
        pred_probs = softmax(covariates @ beta)
        gradient = covariates.T @ (responsibilities - pred_probs) / n_obs
        reg_gradient = l2_penalty * beta
        reg_gradient[0, :] = 0
        beta[:, :-1] += learning_rate * (gradient[:, :-1] - reg_gradient[:, :-1])
    return beta


def count_parameters(n_classes: int, n_levels: Sequence[int], n_features: int = 0) -> int:
    """
    Free parameters of the model.

    (K-1) class sizes, or (K-1) coefficients per covariate column including
    the intercept, plus K * (L_j - 1) response probabilities per indicator.
    """
    n_prior = (n_classes - 1) * n_features if n_features else n_classes - 1
    return int(n_prior + n_classes * sum(n_lev - 1 for n_lev in n_levels))


# =============================================================================
# MAIN FITTING FUNCTION
# =============================================================================

def fit_lca(responses: np.ndarray, n_levels: Sequence[int], n_classes: int,
            max_iter: int = 1000, tol: float = 1e-10, n_init: int = 10,
            rng: Optional[np.random.Generator] = None, seed: int = 42,
            covariates: Optional[np.ndarray] = None,
            variables: Sequence[str] = (), levels: Sequence[tuple] = (),
            covariate_names: Sequence[str] = ()) -> LCAModel:
    """
    Fit a latent class model using the EM algorithm.

    Runs ``n_init`` random restarts and keeps the solution with the highest
    log-likelihood to avoid local optima. All restarts draw from the same
    generator; when ``rng`` is given it is never re-seeded here, so the
    caller controls reproducibility across a whole sweep.

    Args:
        responses: (n_obs, n_items) response codes, -1 for missing
        n_levels: Number of levels per item
        n_classes: Number of latent classes to fit
        max_iter: Maximum EM iterations per restart
        tol: Convergence tolerance on log-likelihood change
        n_init: Number of random restarts
        rng: Random generator; a fresh one seeded with ``seed`` if None
        seed: Seed used only when ``rng`` is None
        covariates: Optional (n_obs, n_features) covariate matrix
                    (an intercept column is added automatically)
        variables, levels, covariate_names: Labels stored on the model

    Returns:
        LCAModel of the best restart. ``n_iter`` is that restart's
        iteration count, equal to ``max_iter`` if it never met ``tol``.

    Raises:
        FitError: if the data cannot support the model or the
                  likelihood becomes non-finite
        ValueError: if ``n_init`` or ``max_iter`` is not positive
    """
    if n_init < 1 or max_iter < 1:
        raise ValueError("n_init and max_iter must be positive")
    if rng is None:
        rng = np.random.default_rng(seed)

    n_obs = responses.shape[0]
    if n_obs == 0:
        raise FitError("No observations with an observed response", n_classes)
    if any(n_lev < 1 for n_lev in n_levels):
        raise FitError("Every item needs at least one observed response level", n_classes)
    if n_classes > n_obs:
        raise FitError(f"Cannot fit {n_classes} classes to {n_obs} observations", n_classes)

    design = None
    n_features = 0
    if covariates is not None:
        design = np.column_stack([np.ones(n_obs), covariates])
        n_features = design.shape[1]

    n_params = count_parameters(n_classes, n_levels, n_features)
    if n_params > n_obs:
        logger.warning(f"K={n_classes}: {n_params} free parameters exceed {n_obs} observations")

    indicators = response_indicators(responses, n_levels)

    best_ll = -np.inf
    best = None
    restart_lls = []

    for restart in range(n_init):
        class_probs, item_probs, beta = initialize_lca_parameters(
            n_classes, n_levels, rng, n_features
        )

        prev_ll = -np.inf
        n_iter = max_iter

        for iteration in range(max_iter):
            if design is not None:
                log_prior = np.log(softmax(design @ beta) + _EPS)
            else:
                log_prior = np.log(class_probs + _EPS)

            responsibilities, ll = lca_e_step(indicators, log_prior, item_probs)
            if not np.isfinite(ll):
                raise FitError(f"Non-finite log-likelihood at iteration {iteration + 1}", n_classes)

            class_probs, item_probs = lca_m_step(indicators, responsibilities)
            if design is not None:
                beta = lca_m_step_beta(design, responsibilities, beta)

            if abs(ll - prev_ll) < tol:
                n_iter = iteration + 1
                break
            prev_ll = ll

        # Posterior and likelihood under the parameters actually returned
        if design is not None:
            prior = softmax(design @ beta)
        else:
            prior = class_probs
        responsibilities, ll = lca_e_step(indicators, np.log(prior + _EPS), item_probs)
        if not np.isfinite(ll):
            raise FitError("Non-finite log-likelihood after final M-step", n_classes)
        restart_lls.append(ll)

        logger.debug(f"K={n_classes} restart {restart + 1}/{n_init}: ll={ll:.4f}, iterations={n_iter}")

        if ll > best_ll:
            best_ll = ll
            best = {
                'class_probs': prior.mean(axis=0) if prior.ndim == 2 else prior.copy(),
                'item_probs': [p.copy() for p in item_probs],
                'posterior': responsibilities.copy(),
                'beta': None if beta is None else beta.copy(),
                'n_iter': n_iter,
            }

    return LCAModel(
        n_classes=n_classes,
        class_probs=best['class_probs'],
        item_probs=best['item_probs'],
        posterior=best['posterior'],
        log_likelihood=best_ll,
        n_params=n_params,
        n_obs=n_obs,
        aic=-2 * best_ll + 2 * n_params,
        bic=-2 * best_ll + n_params * np.log(n_obs),
        n_iter=best['n_iter'],
        max_iter=max_iter,
        variables=tuple(variables),
        levels=tuple(tuple(lv) for lv in levels),
        beta=best['beta'],
        covariate_names=tuple(covariate_names),
        restart_log_likelihoods=restart_lls,
    )


# =============================================================================
# POST-PROCESSING UTILITIES
# =============================================================================

def predict_posterior(model: LCAModel, data: pd.DataFrame) -> np.ndarray:
    """
    Posterior class membership for (possibly new) observations.

    Responses are encoded against the model's own levels; unseen levels
    count as missing. Only models fitted without covariates are supported,
    because covariate standardization depends on the fitting sample.

    Returns:
        (n_obs, n_classes) posterior probabilities
    """
    if model.beta is not None:
        raise ValueError("predict_posterior requires a model fitted without covariates")
    responses, _ = encode_manifest(data, model.variables, model.levels)
    indicators = response_indicators(responses, [len(lv) for lv in model.levels])
    posterior, _ = lca_e_step(indicators, np.log(model.class_probs + _EPS), model.item_probs)
    return posterior


def interpret_covariate_effects(model: LCAModel) -> pd.DataFrame:
    """
    Odds ratios of class membership versus the reference (last) class.

    A value above 1 means a one-standard-deviation increase in the
    covariate raises the odds of that class relative to the reference.
    """
    if model.beta is None:
        raise ValueError("Model was fitted without covariates")
    class_names = [f"Class {c + 1}" for c in range(model.n_classes)]
    return pd.DataFrame(
        np.exp(model.beta[:, :-1]),
        index=["Intercept", *model.covariate_names],
        columns=class_names[:-1],
    )
