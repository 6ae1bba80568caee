# -*- coding: utf-8 -*-
"""
lmm/models/correlation.py

Corrélations instantanées entre forwards du LMM :

- matrice pleine à décroissance exponentielle  ρ_ij = exp(-α |T_i - T_j|)
- réduction factorielle (k facteurs principaux) via décomposition spectrale
- mesure de l'erreur introduite par la réduction
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace

import numpy as np
import pandas as pd

from lmm.errors import ConfigurationError
from lmm.market.time_grid import TimeDiscretization


def _as_times(tenor_grid) -> np.ndarray:
    if isinstance(tenor_grid, TimeDiscretization):
        return tenor_grid.as_array()
    return np.asarray(tenor_grid, dtype=float)


def _check_correlation_input(matrix) -> np.ndarray:
    m = np.asarray(matrix, dtype=float)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise ConfigurationError(f"Matrice de corrélation non carrée : shape={m.shape}.")
    if not np.allclose(m, m.T, atol=1e-12):
        raise ConfigurationError("La matrice de corrélation doit être symétrique.")
    return m


def build_exponential_decay(decay: float, tenor_grid) -> np.ndarray:
    """
    Matrice de corrélation pleine ρ_ij = exp(-max(decay, 0) |T_i - T_j|).

    Un paramètre négatif n'a pas de sens : il est ramené à 0 (corrélation
    parfaite), sans erreur.

    Paramètres
    ----------
    decay : float
        Paramètre de décroissance α.
    tenor_grid : TimeDiscretization ou array_like
        Dates T_i indexant les forwards.

    Retourne
    --------
    np.ndarray
        Matrice (n, n) symétrique, diagonale unité, entrées dans [0, 1].
    """
    decay = max(float(decay), 0.0)
    times = _as_times(tenor_grid)

    corr = np.exp(-decay * np.abs(times[:, None] - times[None, :]))
    np.fill_diagonal(corr, 1.0)
    return corr


def factor_loadings(matrix, number_of_factors: int) -> np.ndarray:
    """
    Matrice de facteurs F^r (n, k) de la réduction factorielle :

      1) décomposition spectrale ρ = V Λ V^T
      2) on garde les k plus grandes valeurs propres (tronquées à 0)
      3) F = V_k sqrt(Λ_k), puis normalisation des lignes (norme 1)

    La normalisation garantit une diagonale unité pour F F^T.

    Paramètres
    ----------
    matrix : array_like
        Matrice de corrélation (n, n).
    number_of_factors : int
        Nombre k de facteurs conservés, 1 <= k <= n.
    """
    m = _check_correlation_input(matrix)
    n = m.shape[0]
    k = int(number_of_factors)
    if k < 1 or k > n:
        raise ConfigurationError(f"Nombre de facteurs {k} hors de [1, {n}].")

    eigenvalues, eigenvectors = np.linalg.eigh(m)

    # eigh renvoie les valeurs propres par ordre croissant : on inverse
    order = np.argsort(eigenvalues)[::-1][:k]
    values = np.clip(eigenvalues[order], 0.0, None)
    vectors = eigenvectors[:, order]

    loadings = vectors * np.sqrt(values)[None, :]

    # Normalisation des lignes (diagonale unité pour F F^T)
    norms = np.linalg.norm(loadings, axis=1)
    norms = np.where(norms > 0.0, norms, 1.0)
    return loadings / norms[:, None]


def reduce_rank(matrix, number_of_factors: int) -> np.ndarray:
    """
    Matrice de corrélation réduite : matrice de Gram F F^T des facteurs retenus,
    diagonale forcée à 1.

    Avec k = n on retrouve la matrice initiale (au bruit numérique près).
    """
    loadings = factor_loadings(matrix, number_of_factors)
    reduced = loadings @ loadings.T
    np.fill_diagonal(reduced, 1.0)
    return reduced


def average_absolute_error(original, reduced) -> float:
    """
    Erreur absolue moyenne sur la partie strictement triangulaire inférieure :

        2 / (n (n-1)) * Σ_{i>j} |A_ij - A'_ij|

    Toujours >= 0. Elle décroît typiquement quand k augmente, sans que cela
    soit garanti pour tous les paramètres (cf. DESIGN.md).
    """
    a = _check_correlation_input(original)
    b = _check_correlation_input(reduced)
    if a.shape != b.shape:
        raise ConfigurationError("Les deux matrices doivent avoir la même dimension.")

    n = a.shape[0]
    if n < 2:
        return 0.0

    rows, cols = np.tril_indices(n, k=-1)
    return float(2.0 * np.sum(np.abs(a[rows, cols] - b[rows, cols])) / (n * (n - 1)))


@dataclass(frozen=True)
class ExponentialDecayCorrelationModel:
    """
    Modèle de corrélation à décroissance exponentielle, éventuellement réduit.

    Attributs
    ---------
    tenor_grid : TimeDiscretization
        Structure de tenors T_0 < ... < T_n ; les forwards L_0..L_{n-1}
        sont indexés par leurs dates de fixing T_0..T_{n-1}.
    decay : float
        Paramètre α (négatif => 0).
    number_of_factors : int | None
        k facteurs retenus ; None = pas de réduction (k = n).
    """
    tenor_grid: TimeDiscretization
    decay: float
    number_of_factors: int | None = None
    _cache: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        n = self.number_of_components
        k = self.number_of_factors
        if k is not None and (int(k) < 1 or int(k) > n):
            raise ConfigurationError(f"Nombre de facteurs {k} hors de [1, {n}].")

    @property
    def number_of_components(self) -> int:
        # Un forward par période [T_i, T_{i+1}]
        return self.tenor_grid.number_of_time_steps

    @property
    def factors(self) -> int:
        return self.number_of_components if self.number_of_factors is None else int(self.number_of_factors)

    @property
    def correlation_matrix(self) -> np.ndarray:
        """Matrice pleine (non réduite)."""
        if "full" not in self._cache:
            fixing_times = self.tenor_grid.as_array()[:-1]
            self._cache["full"] = build_exponential_decay(self.decay, fixing_times)
        return self._cache["full"]

    @property
    def factor_loadings(self) -> np.ndarray:
        """F^r de dimension (n, k)."""
        if "loadings" not in self._cache:
            self._cache["loadings"] = factor_loadings(self.correlation_matrix, self.factors)
        return self._cache["loadings"]

    @property
    def reduced_correlation_matrix(self) -> np.ndarray:
        if "reduced" not in self._cache:
            reduced = self.factor_loadings @ self.factor_loadings.T
            np.fill_diagonal(reduced, 1.0)
            self._cache["reduced"] = reduced
        return self._cache["reduced"]

    def correlation(self, i: int, j: int) -> float:
        return float(self.reduced_correlation_matrix[i, j])

    def factor_reduction_error(self) -> float:
        return average_absolute_error(self.correlation_matrix, self.reduced_correlation_matrix)

    def with_decay(self, decay: float) -> "ExponentialDecayCorrelationModel":
        return replace(self, decay=float(decay))

    def with_number_of_factors(self, number_of_factors) -> "ExponentialDecayCorrelationModel":
        return replace(self, number_of_factors=number_of_factors)


def factor_reduction_error_table(decays, factors, tenor_grid) -> pd.DataFrame:
    """
    Tableau des erreurs de réduction factorielle pour une grille (decay, k).

    Retourne
    --------
    pd.DataFrame
        Index = decay, colonnes = nombre de facteurs, valeurs = erreur absolue moyenne.
    """
    times = _as_times(tenor_grid)
    rows = []
    for decay, k in itertools.product(decays, factors):
        original = build_exponential_decay(decay, times)
        reduced = reduce_rank(original, k)
        rows.append({"decay": float(decay), "factors": int(k), "error": average_absolute_error(original, reduced)})

    df = pd.DataFrame(rows)
    return df.pivot(index="decay", columns="factors", values="error")
