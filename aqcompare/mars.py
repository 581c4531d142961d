"""
Multivariate Adaptive Regression Splines
========================================

A scikit-learn compatible MARS regressor.

The model is a linear combination of basis terms. Each term is a product of
hinge functions ``max(0, x_v - t)`` or ``max(0, t - x_v)``; the empty product
is the intercept.

    - Forward pass: repeatedly add the mirrored hinge pair (parent term,
      variable, knot) that most reduces the residual sum of squares, until
      ``max_terms`` is reached or the R² gain drops below ``thresh``.
    - Backward pass: repeatedly drop the term whose removal increases RSS the
      least, recording the best subset of every size.
    - Selection: among subsets with at most ``nprune`` terms (intercept
      included) pick the one with the lowest generalized cross-validation
      score, ``GCV = (RSS / n) / (1 - C / n)^2`` with
      ``C = terms + penalty * (terms - 1) / 2``.

The pruning path is kept after ``fit`` so a different ``nprune`` can be
applied with ``set_nprune`` without repeating the forward pass.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.utils.validation import check_array, check_is_fitted, check_X_y

logger = logging.getLogger(__name__)

# (feature index, knot, direction) with direction +1 for max(0, x - t)
# and -1 for max(0, t - x)
Hinge = Tuple[int, float, int]
Term = Tuple[Hinge, ...]


def _hinge(x: np.ndarray, knot: float, direction: int) -> np.ndarray:
    return np.maximum(0.0, direction * (x - knot))


def basis_matrix(X: np.ndarray, terms: Sequence[Term]) -> np.ndarray:
    """Evaluate every term on the rows of X; one column per term."""
    B = np.ones((X.shape[0], len(terms)))
    for j, term in enumerate(terms):
        for feature, knot, direction in term:
            B[:, j] *= _hinge(X[:, feature], knot, direction)
    return B


def _rss(B: np.ndarray, y: np.ndarray) -> float:
    coef, *_ = np.linalg.lstsq(B, y, rcond=None)
    resid = y - B @ coef
    return float(resid @ resid)


class EarthRegressor(RegressorMixin, BaseEstimator):
    """
    MARS regression with forward selection and GCV backward pruning.

    Args:
        max_degree: Maximum interaction order of a term
        max_terms: Maximum number of terms after the forward pass, intercept
            included (default ``min(200, max(20, 2 * n_features)) + 1``)
        nprune: Maximum number of terms kept after pruning. The intercept
            counts as one term, as with the nprune argument of R's earth
            package, so nprune=2 keeps the intercept and one hinge
            (default: no limit beyond max_terms)
        penalty: GCV cost per knot (default 2 for additive models, 3 otherwise)
        thresh: Forward pass stops when the R² gain of a step is below this
        max_knots: Candidate knots per variable and parent term; the interior
            unique values are thinned to this many evenly spaced ranks
    """

    def __init__(
        self,
        max_degree: int = 1,
        max_terms: Optional[int] = None,
        nprune: Optional[int] = None,
        penalty: Optional[float] = None,
        thresh: float = 0.001,
        max_knots: int = 20
    ):
        self.max_degree = max_degree
        self.max_terms = max_terms
        self.nprune = nprune
        self.penalty = penalty
        self.thresh = thresh
        self.max_knots = max_knots

    def _knot_candidates(self, x: np.ndarray) -> np.ndarray:
        values = np.unique(x)
        if len(values) < 2:
            return values[:0]
        interior = values[1:-1]
        if len(interior) == 0:
            # only two distinct values: a single linear term at the lower one
            return values[:1]
        if len(interior) > self.max_knots:
            ranks = np.unique(np.linspace(0, len(interior) - 1, self.max_knots).round().astype(int))
            interior = interior[ranks]
        return interior

    def _forward_pass(self, X: np.ndarray, y: np.ndarray) -> Tuple[List[Term], np.ndarray]:
        n, p = X.shape
        max_terms = self.max_terms or min(200, max(20, 2 * p)) + 1

        terms: List[Term] = [()]
        B = np.ones((n, 1))

        tss = float(((y - y.mean()) ** 2).sum())
        if tss == 0:
            return terms, B
        rss = _rss(B, y)

        while len(terms) + 2 <= max_terms:
            Q, _ = np.linalg.qr(B)
            resid = y - Q @ (Q.T @ y)

            best_gain = 0.0
            best_terms: List[Term] = []
            best_cols = None

            for parent_idx, parent in enumerate(terms):
                if len(parent) >= self.max_degree:
                    continue
                parent_col = B[:, parent_idx]
                active = parent_col > 0
                used = {feature for feature, _, _ in parent}

                for feature in range(p):
                    if feature in used:
                        continue
                    x = X[:, feature]
                    for knot in self._knot_candidates(x[active]):
                        cols = np.column_stack([
                            parent_col * _hinge(x, knot, 1),
                            parent_col * _hinge(x, knot, -1)
                        ])
                        norms = np.sqrt((cols ** 2).sum(axis=0))
                        projected = cols - Q @ (Q.T @ cols)
                        residual_norms = np.sqrt((projected ** 2).sum(axis=0))
                        keep = (norms > 0) & (residual_norms > 1e-8 * norms)
                        if not keep.any():
                            continue

                        coef, *_ = np.linalg.lstsq(projected[:, keep], resid, rcond=None)
                        fitted = projected[:, keep] @ coef
                        gain = float(fitted @ fitted)

                        if gain > best_gain:
                            best_gain = gain
                            best_cols = cols[:, keep]
                            best_terms = [
                                parent + ((feature, float(knot), direction),)
                                for direction, k in zip((1, -1), keep) if k
                            ]

            if best_cols is None or best_gain / tss < self.thresh:
                break

            terms.extend(best_terms)
            B = np.column_stack([B, best_cols])
            rss = _rss(B, y)

            if 1.0 - rss / tss >= 0.999:
                break

        return terms, B

    def _backward_pass(self, B: np.ndarray, y: np.ndarray) -> Dict[int, Tuple[List[int], float]]:
        current = list(range(B.shape[1]))
        path = {len(current): (current, _rss(B[:, current], y))}

        while len(current) > 1:
            best_subset, best_rss = None, np.inf
            # the intercept (column 0) is never dropped
            for j in current[1:]:
                subset = [c for c in current if c != j]
                rss = _rss(B[:, subset], y)
                if rss < best_rss:
                    best_subset, best_rss = subset, rss
            current = best_subset
            path[len(current)] = (current, best_rss)

        return path

    def _gcv(self, n_terms: int, rss: float, n_samples: int) -> float:
        penalty = self.penalty
        if penalty is None:
            penalty = 2.0 if self.max_degree <= 1 else 3.0
        effective = n_terms + penalty * (n_terms - 1) / 2.0
        if effective >= n_samples:
            return np.inf
        return (rss / n_samples) / (1.0 - effective / n_samples) ** 2

    def _select(self) -> None:
        n_samples = self.basis_.shape[0]
        limit = len(self.terms_) if self.nprune is None else max(1, min(self.nprune, len(self.terms_)))

        scores = {
            size: self._gcv(size, self.pruning_path_[size][1], n_samples)
            for size in range(1, limit + 1)
        }
        best_size = min(scores, key=lambda size: (scores[size], size))

        self.selected_ = list(self.pruning_path_[best_size][0])
        self.coef_, *_ = np.linalg.lstsq(self.basis_[:, self.selected_], self.y_, rcond=None)
        self.rss_ = self.pruning_path_[best_size][1]
        self.gcv_ = scores[best_size]

    def fit(self, X, y) -> 'EarthRegressor':
        """
        Fit the forward pass, the pruning path and the final subset.

        Args:
            X: Array of shape (n_samples, n_features)
            y: Array of shape (n_samples,)

        Returns:
            Self for method chaining
        """
        X, y = check_X_y(X, y, dtype=float, y_numeric=True)
        if self.max_degree < 1:
            raise ValueError(f"max_degree must be >= 1, got {self.max_degree}")

        self.n_features_in_ = X.shape[1]
        self.terms_, self.basis_ = self._forward_pass(X, y)
        self.y_ = y
        self.pruning_path_ = self._backward_pass(self.basis_, y)
        self._select()

        logger.debug(
            f"MARS fit: degree={self.max_degree}, forward terms={len(self.terms_)}, "
            f"selected={len(self.selected_)}, GCV={self.gcv_:.4f}"
        )
        return self

    def set_nprune(self, nprune: Optional[int]) -> 'EarthRegressor':
        """Re-select the pruned subset for a new term limit, reusing the fit."""
        check_is_fitted(self, 'pruning_path_')
        self.nprune = nprune
        self._select()
        return self

    @property
    def selected_terms_(self) -> List[Term]:
        check_is_fitted(self, 'selected_')
        return [self.terms_[j] for j in self.selected_]

    def predict(self, X) -> np.ndarray:
        check_is_fitted(self, 'coef_')
        X = check_array(X, dtype=float)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"Expected {self.n_features_in_} features, but got {X.shape[1]}"
            )
        return basis_matrix(X, self.selected_terms_) @ self.coef_

    def summary(self, feature_names: Optional[Sequence[str]] = None) -> str:
        """Human-readable list of selected terms and coefficients."""
        check_is_fitted(self, 'coef_')
        if feature_names is None:
            feature_names = [f"x{i}" for i in range(self.n_features_in_)]

        lines = []
        for term, coef in zip(self.selected_terms_, self.coef_):
            if not term:
                label = "(Intercept)"
            else:
                parts = []
                for feature, knot, direction in term:
                    name = feature_names[feature]
                    parts.append(
                        f"h({name}-{knot:.4g})" if direction > 0 else f"h({knot:.4g}-{name})"
                    )
                label = "*".join(parts)
            lines.append(f"{label:<40} {coef:>12.5g}")
        return "\n".join(lines)
