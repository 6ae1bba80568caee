from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from lmm.errors import ConfigurationError
from lmm.market.time_grid import TimeDiscretization


class Dynamics(Enum):
    """
    Dynamique des forwards :
      - LOGNORMAL : dL_i = σ_i(t) L_i dW_i
      - NORMAL    : dL_i = σ_i(t) L_i(0) dW_i
    """
    LOGNORMAL = "lognormal"
    NORMAL = "normal"

    @property
    def displacement(self) -> float:
        # Paramètre de "blend" associé : 0 = log-normal pur, 1 = normal pur
        return 0.0 if self is Dynamics.LOGNORMAL else 1.0


def rebonato_volatility(a, b, c, d, time_to_maturity):
    """
    Forme fonctionnelle à 4 paramètres (Rebonato) :

        σ(τ) = d + (a + b τ) exp(-c τ)   pour τ > 0
        σ(τ) = 0                          pour τ <= 0 (forward déjà fixé)
    """
    tau = np.asarray(time_to_maturity, dtype=float)
    vol = d + (a + b * tau) * np.exp(-c * tau)
    return np.where(tau > 0.0, vol, 0.0)


def build_volatility_matrix(
    a: float,
    b: float,
    c: float,
    d: float,
    simulation_grid: TimeDiscretization,
    tenor_grid: TimeDiscretization,
    dynamics: Dynamics = Dynamics.LOGNORMAL,
    initial_forwards=None,
) -> np.ndarray:
    """
    Construit la matrice de volatilité volatility[j, i] = σ_i(t_j).

    Paramètres
    ----------
    a, b, c, d : float
        Paramètres de la forme σ_i(t) = d + (a + b(T_i - t)) exp(-c (T_i - t)).
    simulation_grid : TimeDiscretization
        Dates t_j du schéma d'Euler.
    tenor_grid : TimeDiscretization
        Structure T_0..T_n ; la colonne i correspond au forward fixant en T_i.
    dynamics : Dynamics
        NORMAL => chaque colonne est multipliée par L_i(0) (volatilité absolue).
    initial_forwards : array_like, optionnel
        L_i(0), requis si dynamics = NORMAL.

    Retourne
    --------
    np.ndarray
        Matrice (nombre de dates de simulation, nombre de forwards).
    """
    times = simulation_grid.as_array()
    fixings = tenor_grid.as_array()[:-1]

    # τ_ij = T_i - t_j (négatif ou nul => forward figé, vol nulle)
    tau = fixings[None, :] - times[:, None]
    volatility = rebonato_volatility(a, b, c, d, tau)

    if dynamics is Dynamics.NORMAL:
        if initial_forwards is None:
            raise ConfigurationError("initial_forwards requis pour une dynamique normale.")
        scaling = np.asarray(initial_forwards, dtype=float)
        if scaling.shape != (fixings.size,):
            raise ConfigurationError(
                f"initial_forwards doit être de taille {fixings.size}, reçu {scaling.shape}."
            )
        volatility = volatility * scaling[None, :]

    return volatility


@dataclass(frozen=True)
class FourParameterVolatilityModel:
    """
    Modèle de volatilité (relative) à 4 paramètres sur les grilles du LMM.

    La matrice est calculée une seule fois à la demande ; le modèle est
    immuable, une nouvelle paramétrisation produit un nouvel objet.
    """
    simulation_grid: TimeDiscretization
    tenor_grid: TimeDiscretization
    a: float
    b: float
    c: float
    d: float
    _cache: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    @property
    def parameters(self) -> tuple:
        return (self.a, self.b, self.c, self.d)

    @property
    def matrix(self) -> np.ndarray:
        if "matrix" not in self._cache:
            m = build_volatility_matrix(self.a, self.b, self.c, self.d, self.simulation_grid, self.tenor_grid)
            m.setflags(write=False)
            self._cache["matrix"] = m
        return self._cache["matrix"]

    def volatility(self, time_index: int, component: int) -> float:
        return float(self.matrix[time_index, component])

    def with_parameters(self, **params) -> "FourParameterVolatilityModel":
        unknown = set(params) - {"a", "b", "c", "d"}
        if unknown:
            raise ConfigurationError(f"Paramètres de volatilité inconnus : {sorted(unknown)}")
        return replace(self, **{k: float(v) for k, v in params.items()})


@dataclass(frozen=True, eq=False)
class MatrixVolatilityModel:
    """
    Volatilité donnée directement par une matrice (dates de simulation x forwards).
    """
    simulation_grid: TimeDiscretization
    tenor_grid: TimeDiscretization
    matrix: np.ndarray

    def __post_init__(self):
        m = np.array(self.matrix, dtype=float)
        expected = (self.simulation_grid.number_of_times, self.tenor_grid.number_of_time_steps)
        if m.shape != expected:
            raise ConfigurationError(f"Matrice de volatilité de shape {m.shape}, attendu {expected}.")
        m.setflags(write=False)
        object.__setattr__(self, "matrix", m)

    def volatility(self, time_index: int, component: int) -> float:
        return float(self.matrix[time_index, component])
