# -*- coding: utf-8 -*-
"""
lmm/models/lmm.py

LIBOR Market Model : briques "dynamique" utilisées par le simulateur.

Sous une mesure donnée, chaque forward L_i (période [T_i, T_{i+1}], δ_i = T_{i+1} - T_i)
suit :

    dL_i = μ_i(t, L) dt + λ_i(t, L) · dW(t)

avec λ_i le chargement factoriel absolu (cf. CovarianceModel) et :

  - mesure spot (numéraire = compte roulant discret) :
        μ_i = λ_i · Σ_{j=m(t)}^{i}   δ_j λ_j / (1 + δ_j L_j)
  - mesure terminale (numéraire = P(t, T_n)) :
        μ_i = -λ_i · Σ_{j=i+1}^{n-1} δ_j λ_j / (1 + δ_j L_j)

m(t) est l'indice du premier forward non encore fixé ; les forwards fixés
ont un chargement nul, donc les sommes peuvent partir de 0.

Le polymorphisme {SPOT, TERMINAL} x {LOGNORMAL, NORMAL} est traité par deux
tables de stratégies (drift et mise à jour d'Euler).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from lmm.errors import ConfigurationError, TypeMismatchError
from lmm.market.curve import DiscountCurve, ForwardCurve
from lmm.market.time_grid import TIME_TOLERANCE, TimeDiscretization
from lmm.models.covariance import CovarianceModel


class Measure(Enum):
    SPOT = "spot"
    TERMINAL = "terminal"


class StateSpace(Enum):
    """
    Transformation de l'espace d'état utilisée par le schéma d'Euler :
      - LOGNORMAL : on discrétise log L (mise à jour multiplicative)
      - NORMAL    : on discrétise L (mise à jour additive)
    """
    LOGNORMAL = "lognormal"
    NORMAL = "normal"


# ----------------------------------------------------------------------
# Drifts (vectorisés sur les trajectoires)
# ----------------------------------------------------------------------

def _drift_weights(loadings, rates, accruals):
    # δ_j λ_j / (1 + δ_j L_j), shape (p, n, k)
    return (accruals / (1.0 + accruals * rates))[..., None] * loadings


def spot_drift(loadings, rates, accruals):
    """
    μ_i = λ_i · Σ_{j<=i} δ_j λ_j / (1 + δ_j L_j)

    Paramètres
    ----------
    loadings : np.ndarray
        Chargements absolus λ, shape (p, n, k).
    rates : np.ndarray
        Forwards courants, shape (p, n).
    accruals : np.ndarray
        δ_i, shape (n,).
    """
    w = _drift_weights(loadings, rates, accruals)
    cumulative = np.cumsum(w, axis=-2)
    return np.einsum("pnk,pnk->pn", loadings, cumulative)


def terminal_drift(loadings, rates, accruals):
    """
    μ_i = -λ_i · Σ_{j>i} δ_j λ_j / (1 + δ_j L_j)
    """
    w = _drift_weights(loadings, rates, accruals)
    cumulative = np.cumsum(w, axis=-2)
    # Σ_{j>i} = total - Σ_{j<=i}
    tail = cumulative[..., -1:, :] - cumulative
    return -np.einsum("pnk,pnk->pn", loadings, tail)


DRIFTS = {
    Measure.SPOT: spot_drift,
    Measure.TERMINAL: terminal_drift,
}


# ----------------------------------------------------------------------
# Mises à jour d'Euler (par espace d'état)
# ----------------------------------------------------------------------

def normal_euler_step(rates, drift, loadings, increments, dt):
    """
    L(t+dt) = L(t) + μ dt + λ · ΔW
    """
    diffusion = np.einsum("pnk,pk->pn", loadings, increments)
    return rates + drift * dt + diffusion


def lognormal_euler_step(rates, drift, loadings, increments, dt):
    """
    log L(t+dt) = log L(t) + (μ/L - ½ |λ/L|²) dt + (λ/L) · ΔW
    """
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        relative = loadings / rates[..., None]
        log_drift = drift / rates - 0.5 * np.sum(relative * relative, axis=-1)
        diffusion = np.einsum("pnk,pk->pn", relative, increments)
        # Composantes à chargement nul (forwards fixés) : état inchangé
        frozen = np.all(loadings == 0.0, axis=-1)
        exponent = np.where(frozen, 0.0, log_drift * dt + diffusion)
        return rates * np.exp(exponent)


EULER_STEPS = {
    StateSpace.NORMAL: normal_euler_step,
    StateSpace.LOGNORMAL: lognormal_euler_step,
}


# ----------------------------------------------------------------------
# Prix ZC et numéraires à partir des forwards simulés
# ----------------------------------------------------------------------

def bond_from_rates(rates, t, maturity, tenor_grid: TimeDiscretization):
    """
    P(t, T_m) reconstruit à partir des forwards observés en t (vectorisé).

    Pour T_k <= t < T_{k+1} :
        P(t, T_m) = 1/(1 + (T_{k+1} - t) L_k(t)) * Π_{l=k+1}^{m-1} 1/(1 + δ_l L_l(t))

    Paramètres
    ----------
    rates : np.ndarray
        Forwards à la date t, shape (p, n).
    t : float
        Date d'évaluation (<= maturity).
    maturity : float
        T_m, doit appartenir à la structure de tenors.
    """
    m = tenor_grid.time_index(maturity)
    if m < 0:
        raise ConfigurationError(f"La maturité {maturity} n'est pas une date de tenor.")
    if maturity < t - TIME_TOLERANCE:
        raise ConfigurationError("P(t,T) demandé avec T < t.")

    p = rates.shape[0]
    if abs(maturity - t) <= TIME_TOLERANCE:
        return np.ones(p)

    times = tenor_grid.as_array()
    k = tenor_grid.index_before(t)

    # Premier facteur : période courante partiellement écoulée
    bond = 1.0 / (1.0 + (times[k + 1] - t) * rates[:, k])
    if m > k + 1:
        accruals = np.diff(times)[k + 1:m]
        bond = bond / np.prod(1.0 + accruals * rates[:, k + 1:m], axis=1)
    return bond


def spot_numeraire(rates, t, tenor_grid: TimeDiscretization):
    """
    Compte roulant discret : pour T_k <= t < T_{k+1},

        N(t) = Π_{l=0}^{k} (1 + δ_l L_l(T_l)) * P(t, T_{k+1}),   N(0) = 1.

    Les forwards fixés ne bougent plus : L_l(t) = L_l(T_l) pour l <= k.
    """
    times = tenor_grid.as_array()
    accruals = np.diff(times)
    n = accruals.size
    k = tenor_grid.index_before(t)

    if k >= n:
        return np.prod(1.0 + accruals * rates, axis=1)

    accrued = np.prod(1.0 + accruals[: k + 1] * rates[:, : k + 1], axis=1)
    return accrued / (1.0 + (times[k + 1] - t) * rates[:, k])


def terminal_numeraire(rates, t, tenor_grid: TimeDiscretization):
    """
    Numéraire terminal : N(t) = P(t, T_n).
    """
    return bond_from_rates(rates, t, tenor_grid.last, tenor_grid)


NUMERAIRES = {
    Measure.SPOT: spot_numeraire,
    Measure.TERMINAL: terminal_numeraire,
}


@dataclass(frozen=True, eq=False)
class LIBORMarketModel:
    """
    LMM = modèle de covariance + forwards initiaux + mesure + espace d'état.

    Attributs
    ---------
    covariance_model : CovarianceModel
        Volatilités, corrélations, blend.
    measure : Measure
        SPOT ou TERMINAL.
    state_space : StateSpace
        LOGNORMAL (mise à jour multiplicative) ou NORMAL (additive).
    forward_curve : ForwardCurve, optionnel
        Courbe d'origine des forwards initiaux (conservée pour information).
    """
    covariance_model: CovarianceModel
    measure: Measure = Measure.SPOT
    state_space: StateSpace = StateSpace.LOGNORMAL
    forward_curve: ForwardCurve | None = None

    def __post_init__(self):
        if not isinstance(self.measure, Measure):
            raise TypeMismatchError(f"Mesure non supportée : {self.measure!r}")
        if not isinstance(self.state_space, StateSpace):
            raise TypeMismatchError(f"Espace d'état non supporté : {self.state_space!r}")

        # En espace log, tous les forwards initiaux doivent être > 0
        if self.state_space is StateSpace.LOGNORMAL and np.any(self.initial_forwards <= 0.0):
            raise TypeMismatchError(
                "Espace d'état log-normal incompatible avec des forwards initiaux <= 0."
            )

    # --- accès --- #

    @property
    def initial_forwards(self) -> np.ndarray:
        return self.covariance_model.initial_forwards

    @property
    def simulation_grid(self) -> TimeDiscretization:
        return self.covariance_model.simulation_grid

    @property
    def tenor_grid(self) -> TimeDiscretization:
        return self.covariance_model.tenor_grid

    @property
    def accruals(self) -> np.ndarray:
        return self.tenor_grid.time_steps()

    @property
    def number_of_components(self) -> int:
        return self.covariance_model.number_of_components

    @property
    def number_of_factors(self) -> int:
        return self.covariance_model.number_of_factors

    @property
    def discount_curve(self) -> DiscountCurve:
        return DiscountCurve.from_forwards(self.initial_forwards, self.tenor_grid)

    # --- dynamique --- #

    def drift(self, time_index: int, rates: np.ndarray) -> np.ndarray:
        loadings = self.covariance_model.factor_loading(time_index, rates)
        return DRIFTS[self.measure](loadings, rates, self.accruals)

    def euler_step(self, time_index: int, rates: np.ndarray, increments: np.ndarray) -> np.ndarray:
        """
        Un pas d'Euler de t_j à t_{j+1} pour toutes les trajectoires d'un bloc.

        Paramètres
        ----------
        time_index : int
            Indice j de la date de départ.
        rates : np.ndarray
            Forwards en t_j, shape (p, n).
        increments : np.ndarray
            Incréments browniens ΔW, shape (p, k), de variance dt.
        """
        dt = self.simulation_grid.time_step(time_index)
        loadings = self.covariance_model.factor_loading(time_index, rates)
        drift = DRIFTS[self.measure](loadings, rates, self.accruals)
        return EULER_STEPS[self.state_space](rates, drift, loadings, increments, dt)

    def numeraire(self, time_index: int, rates: np.ndarray) -> np.ndarray:
        t = self.simulation_grid.time(time_index)
        return NUMERAIRES[self.measure](rates, t, self.tenor_grid)

    # --- copies --- #

    def with_covariance_model(self, covariance_model: CovarianceModel) -> "LIBORMarketModel":
        return LIBORMarketModel(covariance_model, self.measure, self.state_space, self.forward_curve)
