# -*- coding: utf-8 -*-
"""
lmm/models/covariance.py

Modèle de covariance du LMM : combine
  - un modèle de volatilité σ_i(t_j) (forme à 4 paramètres ou matrice donnée)
  - un modèle de corrélation (décroissance exponentielle, éventuellement réduit)
  - un paramètre de "blend" β entre dynamique log-normale (β=0) et normale (β=1)

Chargement factoriel absolu du forward i à la date t_j :

    λ_i(t_j, L) = σ_i(t_j) * (β L_i(0) + (1-β) L_i(t_j)) * F_i

où F_i est la ligne i de la matrice de facteurs (k colonnes).

Le modèle est immuable : with_modified(...) renvoie une copie qui partage
par référence tout ce qui n'est pas modifié.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional

import numpy as np

from lmm.errors import ConfigurationError
from lmm.market.time_grid import TIME_TOLERANCE, TimeDiscretization, require_subset
from lmm.models.correlation import ExponentialDecayCorrelationModel
from lmm.models.volatility import Dynamics, FourParameterVolatilityModel

PARAMETER_NAMES = ("a", "b", "c", "d", "correlation_decay", "displacement")


@dataclass(frozen=True)
class LMMParameters:
    """
    Vecteur des paramètres libres du modèle de covariance.
    """
    a: float
    b: float
    c: float
    d: float
    correlation_decay: float
    displacement: float = 0.0

    def as_dict(self) -> dict:
        return {name: float(getattr(self, name)) for name in PARAMETER_NAMES}

    def as_array(self, names=PARAMETER_NAMES) -> np.ndarray:
        return np.array([getattr(self, name) for name in names], dtype=float)

    def with_values(self, names, values) -> "LMMParameters":
        return replace(self, **{name: float(v) for name, v in zip(names, values)})


@dataclass(frozen=True, eq=False)
class CovarianceModel:
    """
    Générateur de covariance du LMM.

    Attributs
    ---------
    simulation_grid : TimeDiscretization
        Grille t_0..t_m du schéma d'Euler.
    tenor_grid : TimeDiscretization
        Structure T_0..T_n (chaque T_i doit être une date de simulation).
    volatility_model :
        Objet exposant `matrix` (m+1, n) de volatilités relatives σ_i(t_j).
    correlation_model : ExponentialDecayCorrelationModel
        Corrélations et facteurs (n, k).
    initial_forwards : np.ndarray
        L_i(0), i = 0..n-1 (niveau de référence du blend).
    displacement : float
        β ∈ [0, 1] : 0 = log-normal, 1 = normal.
    """
    simulation_grid: TimeDiscretization
    tenor_grid: TimeDiscretization
    volatility_model: object
    correlation_model: ExponentialDecayCorrelationModel
    initial_forwards: np.ndarray
    displacement: float = 0.0

    def __post_init__(self):
        # Les dates de fixing doivent coïncider avec des pas de simulation
        require_subset(self.simulation_grid, self.tenor_grid)

        n = self.tenor_grid.number_of_time_steps
        vol = np.asarray(self.volatility_model.matrix)
        expected = (self.simulation_grid.number_of_times, n)
        if vol.shape != expected:
            raise ConfigurationError(f"Matrice de volatilité de shape {vol.shape}, attendu {expected}.")

        corr = np.asarray(self.correlation_model.reduced_correlation_matrix)
        if corr.shape != (n, n):
            raise ConfigurationError(f"Matrice de corrélation de shape {corr.shape}, attendu {(n, n)}.")

        forwards = np.array(self.initial_forwards, dtype=float)
        if forwards.shape != (n,):
            raise ConfigurationError(f"initial_forwards de shape {forwards.shape}, attendu {(n,)}.")
        forwards.setflags(write=False)
        object.__setattr__(self, "initial_forwards", forwards)

        if not np.isfinite(self.displacement):
            raise ConfigurationError("displacement doit être fini.")
        object.__setattr__(self, "displacement", float(self.displacement))

    # -------------------------
    # Dimensions
    # -------------------------

    @property
    def number_of_components(self) -> int:
        return self.tenor_grid.number_of_time_steps

    @property
    def number_of_factors(self) -> int:
        return int(self.correlation_model.factor_loadings.shape[1])

    @property
    def volatility_matrix(self) -> np.ndarray:
        return self.volatility_model.matrix

    @property
    def parameters(self) -> LMMParameters:
        vm = self.volatility_model
        a, b, c, d = vm.parameters if hasattr(vm, "parameters") else (np.nan,) * 4
        return LMMParameters(a, b, c, d, float(self.correlation_model.decay), self.displacement)

    # -------------------------
    # Chargements factoriels
    # -------------------------

    def relative_loadings(self, time_index: int) -> np.ndarray:
        """
        σ_i(t_j) F_i : matrice (n, k) des chargements relatifs à la date t_j.
        """
        sigma = self.volatility_matrix[time_index]
        return sigma[:, None] * self.correlation_model.factor_loadings

    def local_volatility_scale(self, rates: np.ndarray) -> np.ndarray:
        """
        Niveau du blend β L_i(0) + (1-β) L_i(t), vectorisé sur les trajectoires.

        Paramètres
        ----------
        rates : np.ndarray
            Forwards courants, shape (..., n).
        """
        beta = self.displacement
        return beta * self.initial_forwards + (1.0 - beta) * rates

    def factor_loading(self, time_index: int, rates: np.ndarray) -> np.ndarray:
        """
        Chargements absolus λ_i(t_j, L), shape (..., n, k).
        """
        scale = self.local_volatility_scale(np.asarray(rates, dtype=float))
        return scale[..., :, None] * self.relative_loadings(time_index)

    # -------------------------
    # Covariances
    # -------------------------

    def instantaneous_covariance(self, time_index: int, i: int, j: int) -> float:
        """
        σ_i(t_j) σ_k(t_j) ρ_ik (corrélation éventuellement réduite), en volatilités relatives.
        """
        sigma = self.volatility_matrix[time_index]
        rho = self.correlation_model.reduced_correlation_matrix[i, j]
        return float(sigma[i] * sigma[j] * rho)

    def _steps_in(self, from_time: float, to_time: float) -> np.ndarray:
        # Pas [t_k, t_{k+1}] dont le début t_k appartient à [from_time, to_time)
        starts = self.simulation_grid.as_array()[:-1]
        return np.nonzero((starts >= from_time - TIME_TOLERANCE) & (starts < to_time - TIME_TOLERANCE))[0]

    def integrated_covariance(self, i: int, j: int, from_time: float, to_time: float) -> float:
        """
        Covariance intégrée discrète sur la grille de simulation :

            Σ_k σ_i(t_k) σ_j(t_k) ρ_ij (t_{k+1} - t_k)

        pour les pas dont le début t_k est dans [from_time, to_time) (somme, pas
        d'intégration continue).
        """
        if to_time < from_time:
            raise ConfigurationError("to_time doit être >= from_time.")
        steps = self._steps_in(from_time, to_time)
        if steps.size == 0:
            return 0.0

        sigma = self.volatility_matrix[steps]
        dt = self.simulation_grid.time_steps()[steps]
        rho = self.correlation_model.reduced_correlation_matrix[i, j]
        return float(np.sum(sigma[:, i] * sigma[:, j] * dt) * rho)

    def integrated_covariance_matrix(self, to_time: float, from_time: float = 0.0) -> np.ndarray:
        """
        Matrice (n, n) des covariances intégrées sur [from_time, to_time].
        """
        steps = self._steps_in(from_time, to_time)
        n = self.number_of_components
        if steps.size == 0:
            return np.zeros((n, n))
        sigma = self.volatility_matrix[steps]
        dt = self.simulation_grid.time_steps()[steps]
        integrated = (sigma * dt[:, None]).T @ sigma
        return integrated * self.correlation_model.reduced_correlation_matrix

    # -------------------------
    # Copie avec champ modifié
    # -------------------------

    def with_modified(self, **changes) -> "CovarianceModel":
        """
        Renvoie un nouveau modèle où seuls les champs nommés changent.

        Champs acceptés :
          - volatility_model, correlation_model, displacement (remplacement direct)
          - a, b, c, d (nouveau modèle de volatilité à 4 paramètres)
          - correlation_decay, number_of_factors (nouveau modèle de corrélation)

        Les objets non modifiés sont partagés par référence ; l'instance
        d'origine n'est jamais modifiée.
        """
        direct = {f.name for f in fields(self)} - {"simulation_grid", "tenor_grid", "initial_forwards"}
        vol_keys = {"a", "b", "c", "d"}
        corr_keys = {"correlation_decay", "number_of_factors"}

        unknown = set(changes) - direct - vol_keys - corr_keys
        if unknown:
            raise ConfigurationError(f"Champs inconnus pour with_modified : {sorted(unknown)}")

        updates = {k: v for k, v in changes.items() if k in direct}

        vol_changes = {k: v for k, v in changes.items() if k in vol_keys}
        if vol_changes:
            if "volatility_model" in updates:
                raise ConfigurationError("volatility_model et a/b/c/d ne peuvent être modifiés ensemble.")
            base = self.volatility_model
            if not isinstance(base, FourParameterVolatilityModel):
                raise ConfigurationError("a/b/c/d requièrent un modèle de volatilité à 4 paramètres.")
            updates["volatility_model"] = base.with_parameters(**vol_changes)

        corr_changes = {k: v for k, v in changes.items() if k in corr_keys}
        if corr_changes:
            if "correlation_model" in updates:
                raise ConfigurationError("correlation_model et correlation_decay ne peuvent être modifiés ensemble.")
            corr = self.correlation_model
            if "correlation_decay" in corr_changes:
                corr = corr.with_decay(corr_changes["correlation_decay"])
            if "number_of_factors" in corr_changes:
                corr = corr.with_number_of_factors(corr_changes["number_of_factors"])
            updates["correlation_model"] = corr

        return replace(self, **updates)

    def with_parameters(self, parameters: LMMParameters) -> "CovarianceModel":
        return self.with_modified(**parameters.as_dict())


def create_covariance_model(
    simulation_grid: TimeDiscretization,
    tenor_grid: TimeDiscretization,
    initial_forwards,
    a: float,
    b: float,
    c: float,
    d: float,
    correlation_decay: float,
    number_of_factors: Optional[int] = None,
    dynamics: Dynamics = Dynamics.LOGNORMAL,
    displacement: Optional[float] = None,
) -> CovarianceModel:
    """
    Construit un CovarianceModel à partir des paramètres "bruts".

    Si displacement est None, il est déduit de la dynamique
    (0 pour LOGNORMAL, 1 pour NORMAL).
    """
    volatility_model = FourParameterVolatilityModel(simulation_grid, tenor_grid, a, b, c, d)
    correlation_model = ExponentialDecayCorrelationModel(tenor_grid, correlation_decay, number_of_factors)
    beta = dynamics.displacement if displacement is None else float(displacement)

    return CovarianceModel(
        simulation_grid=simulation_grid,
        tenor_grid=tenor_grid,
        volatility_model=volatility_model,
        correlation_model=correlation_model,
        initial_forwards=initial_forwards,
        displacement=beta,
    )
