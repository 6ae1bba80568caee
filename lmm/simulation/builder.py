# -*- coding: utf-8 -*-
"""
lmm/simulation/builder.py

Construction "clé en main" d'un LMM simulé à partir des paramètres bruts :

  1) grille de simulation 0, dt, ..., T_n
  2) structure de tenors 0, δ, ..., T_n
  3) courbe de forwards initiaux (interpolée à partir des forwards observés)
  4) volatilité à 4 paramètres (a, b, c, d)
  5) corrélation exponentielle (+ réduction factorielle éventuelle)
  6) modèle de covariance (blend log-normal / normal selon la dynamique)
  7) LMM (mesure + espace d'état)
  8) schéma d'Euler Monte Carlo
"""

from __future__ import annotations

from typing import Optional

from lmm.market.curve import ForwardCurve
from lmm.market.time_grid import TimeDiscretization
from lmm.models.covariance import create_covariance_model
from lmm.models.lmm import LIBORMarketModel, Measure, StateSpace
from lmm.models.volatility import Dynamics
from lmm.simulation.paths import LIBORPathSimulator, LIBORSimulation


def create_model(
    simulation_time_step: float,
    libor_period_length: float,
    libor_rate_time_horizon: float,
    fixing_for_given_forwards,
    given_forwards,
    correlation_decay: float,
    dynamics: Dynamics,
    measure: Measure,
    a: float,
    b: float,
    c: float,
    d: float,
    number_of_factors: Optional[int] = None,
    state_space: Optional[StateSpace] = None,
    displacement: Optional[float] = None,
) -> LIBORMarketModel:
    """
    Construit un LIBORMarketModel (sans simuler).

    Paramètres
    ----------
    simulation_time_step : float
        Pas du schéma d'Euler.
    libor_period_length : float
        δ = T_{i+1} - T_i (structure de tenors uniforme).
    libor_rate_time_horizon : float
        T_n, dernière maturité.
    fixing_for_given_forwards, given_forwards : array_like
        Forwards observés (les autres sont interpolés).
    correlation_decay : float
        α dans ρ_ij = exp(-α |T_i - T_j|).
    dynamics : Dynamics
        LOGNORMAL ou NORMAL (fixe le blend si displacement est None).
    measure : Measure
        SPOT ou TERMINAL.
    a, b, c, d : float
        Paramètres de volatilité.
    number_of_factors : int, optionnel
        Facteurs retenus ; None = pas de réduction.
    state_space : StateSpace, optionnel
        Par défaut : LOGNORMAL pour une dynamique log-normale, NORMAL sinon.
    displacement : float, optionnel
        Blend explicite β ∈ [0, 1].
    """
    simulation_grid = TimeDiscretization.from_horizon(libor_rate_time_horizon, simulation_time_step)
    tenor_grid = TimeDiscretization.from_horizon(libor_rate_time_horizon, libor_period_length)

    forward_curve = ForwardCurve(fixing_for_given_forwards, given_forwards, libor_period_length)
    initial_forwards = forward_curve.forwards_on(tenor_grid)

    covariance_model = create_covariance_model(
        simulation_grid,
        tenor_grid,
        initial_forwards,
        a,
        b,
        c,
        d,
        correlation_decay,
        number_of_factors=number_of_factors,
        dynamics=dynamics,
        displacement=displacement,
    )

    if state_space is None:
        state_space = StateSpace.LOGNORMAL if dynamics is Dynamics.LOGNORMAL else StateSpace.NORMAL

    return LIBORMarketModel(covariance_model, measure, state_space, forward_curve)


def create_libor_market_model(
    number_of_paths: int,
    simulation_time_step: float,
    libor_period_length: float,
    libor_rate_time_horizon: float,
    fixing_for_given_forwards,
    given_forwards,
    correlation_decay: float,
    dynamics: Dynamics,
    measure: Measure,
    a: float,
    b: float,
    c: float,
    d: float,
    number_of_factors: Optional[int] = None,
    state_space: Optional[StateSpace] = None,
    displacement: Optional[float] = None,
    seed: int = 1897,
    n_workers: int = 1,
) -> LIBORSimulation:
    """
    Construit et simule un LMM ; renvoie la simulation complète.
    """
    model = create_model(
        simulation_time_step,
        libor_period_length,
        libor_rate_time_horizon,
        fixing_for_given_forwards,
        given_forwards,
        correlation_decay,
        dynamics,
        measure,
        a,
        b,
        c,
        d,
        number_of_factors=number_of_factors,
        state_space=state_space,
        displacement=displacement,
    )
    simulator = LIBORPathSimulator(model, number_of_paths=number_of_paths, seed=seed, n_workers=n_workers)
    return simulator.run()
