# -*- coding: utf-8 -*-
"""
lmm/pricers/analytic.py

Formules fermées utilisées comme références pour le Monte Carlo :

- Black (log-normal) et Bachelier (normal) : caplets / floorlets, swaptions
- caplet digital de Black
- floater et caplet "in arrears" (ajustement de convexité)
- volatilité de swaption approchée de Rebonato à partir du modèle de covariance
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.stats import norm

from lmm.errors import ConfigurationError, TypeMismatchError


# ----------------------------
# Formules de base (non actualisées)
# ----------------------------

def black_formula(forward, strike, volatility, expiry, is_call=True):
    """
    E[(F_T - K)^+] (call) ou E[(K - F_T)^+] (put), F log-normal de moyenne forward.

    Si volatility * sqrt(expiry) est nul, on renvoie la valeur intrinsèque.
    """
    w = 1.0 if is_call else -1.0
    std = volatility * np.sqrt(max(expiry, 0.0))
    if std <= 0.0:
        return max(w * (forward - strike), 0.0)
    if forward <= 0.0 or strike <= 0.0:
        raise TypeMismatchError("Black : forward et strike doivent être > 0 (dynamique log-normale).")

    d1 = (np.log(forward / strike) + 0.5 * std * std) / std
    d2 = d1 - std
    return float(w * (forward * norm.cdf(w * d1) - strike * norm.cdf(w * d2)))


def bachelier_formula(forward, strike, volatility, expiry, is_call=True):
    """
    Prix Bachelier non actualisé :
        (F-K) N(d) + σ sqrt(T) n(d)   avec d = (F-K) / (σ sqrt(T))   (call)
    """
    w = 1.0 if is_call else -1.0
    std = volatility * np.sqrt(max(expiry, 0.0))
    if std <= 0.0:
        return max(w * (forward - strike), 0.0)

    d = w * (forward - strike) / std
    return float(w * (forward - strike) * norm.cdf(d) + std * norm.pdf(d))


# ----------------------------
# Caplets / swaptions
# ----------------------------

def black_caplet(forward, strike, volatility, maturity, period_length, discount_factor, notional=1.0, is_floorlet=False):
    """
    Caplet de Black : N δ P(0, T2) Black(L0, K, σ, T1).

    Paramètres
    ----------
    forward : float
        L(0; T1, T2).
    strike : float
        K en taux.
    volatility : float
        Volatilité log-normale de Black.
    maturity : float
        T1 (date de fixing).
    period_length : float
        δ = T2 - T1.
    discount_factor : float
        P(0, T2).
    """
    undiscounted = black_formula(forward, strike, volatility, maturity, is_call=not is_floorlet)
    return notional * period_length * discount_factor * undiscounted


def bachelier_caplet(forward, strike, volatility, maturity, period_length, discount_factor, notional=1.0, is_floorlet=False):
    """
    Caplet de Bachelier : même structure que black_caplet avec une volatilité normale (absolue).
    """
    undiscounted = bachelier_formula(forward, strike, volatility, maturity, is_call=not is_floorlet)
    return notional * period_length * discount_factor * undiscounted


def black_digital_caplet(forward, strike, volatility, maturity, period_length, discount_factor, notional=1.0):
    """
    Caplet digital de Black : N δ P(0, T2) N(d2), paiement N δ si L(T1) > K.

    Volatilité nulle : N δ P(0, T2) 1{L0 > K}.
    """
    std = volatility * np.sqrt(max(maturity, 0.0))
    if std <= 0.0:
        probability = 1.0 if forward > strike else 0.0
    else:
        if forward <= 0.0 or strike <= 0.0:
            raise TypeMismatchError("Black : forward et strike doivent être > 0 (dynamique log-normale).")
        d2 = (np.log(forward / strike) - 0.5 * std * std) / std
        probability = float(norm.cdf(d2))
    return notional * period_length * discount_factor * probability


def black_swaption(swap_rate, strike, volatility, expiry, annuity, notional=1.0, payer=True):
    """
    Swaption de Black : N A(0) Black(S0, K, σ, T_ex).
    """
    return notional * annuity * black_formula(swap_rate, strike, volatility, expiry, is_call=payer)


def bachelier_swaption(swap_rate, strike, volatility, expiry, annuity, notional=1.0, payer=True):
    return notional * annuity * bachelier_formula(swap_rate, strike, volatility, expiry, is_call=payer)


# ----------------------------
# In arrears
# ----------------------------

def floater_in_arrears(forward, volatility, maturity, period_length, bond_start, bond_end, notional=1.0):
    """
    Floater payant N δ L(T1) en T1 (au lieu de T2).

    Sous la mesure T2-forward :
        V = N δ P(0,T2) E[L (1 + δ L)]
          = N (P(0,T1) - P(0,T2)) + N P(0,T2) L0² δ² exp(σ² T1)

    Paramètres
    ----------
    bond_start, bond_end : float
        P(0, T1) et P(0, T2).
    """
    natural = notional * (bond_start - bond_end)
    convexity = notional * bond_end * forward ** 2 * period_length ** 2 * np.exp(volatility ** 2 * maturity)
    return float(natural + convexity)


def caplet_in_arrears(forward, strike, volatility, maturity, period_length, discount_factor, notional=1.0):
    """
    Caplet payant N δ (L(T1) - K)^+ en T1.

        V = N δ P(0,T2) { E[(L-K)^+] + δ E[L (L-K)^+] }

    avec, L log-normal de moyenne L0 :
        E[L (L-K)^+] = L0² e^{σ²T} N(d1 + σ sqrt(T)) - K L0 N(d1)
    """
    std = volatility * np.sqrt(maturity)
    natural = black_formula(forward, strike, volatility, maturity)
    if std <= 0.0:
        second = forward * max(forward - strike, 0.0)
    else:
        d1 = (np.log(forward / strike) + 0.5 * std * std) / std
        second = forward ** 2 * np.exp(std * std) * norm.cdf(d1 + std) - strike * forward * norm.cdf(d1)

    return float(notional * period_length * discount_factor * (natural + period_length * second))


# ----------------------------
# Approximation de Rebonato
# ----------------------------

def _swap_components(tenor_grid, swap_dates: Sequence[float]):
    start = tenor_grid.time_index(swap_dates[0])
    end = tenor_grid.time_index(swap_dates[-1])
    if start < 0 or end < 0 or end <= start:
        raise ConfigurationError("Les dates du swap doivent être des dates de tenor croissantes.")
    return start, end


def _annuity_and_swap_rate(tenor_grid, start, end, discount_curve):
    # A(0) = Σ δ_j P(0, T_{j+1}),  S(0) = (P(0,T_s) - P(0,T_e)) / A(0)
    times = tenor_grid.as_array()
    annuity = float(sum((times[j + 1] - times[j]) * discount_curve.discount(times[j + 1]) for j in range(start, end)))
    floating = float(discount_curve.discount(times[start]) - discount_curve.discount(times[end]))
    return annuity, floating / annuity


def rebonato_normal_volatility(covariance_model, exercise_date, swap_dates, discount_curve):
    """
    Volatilité normale (absolue) de swaption, poids gelés en t=0 :

        σ_N² T_ex = Σ_{i,j} w_i w_j L_i(0) L_j(0) ∫_0^{T_ex} σ_i σ_j ρ_ij dt

    avec w_i = δ_i P(0, T_{i+1}) / A(0). Les forwards sont gelés à L(0), donc le
    blend log-normal / normal n'intervient pas.
    """
    tenor_grid = covariance_model.tenor_grid
    start, end = _swap_components(tenor_grid, swap_dates)
    if exercise_date <= 0.0:
        return 0.0

    times = tenor_grid.as_array()
    accruals = np.diff(times)[start:end]
    bonds = np.array([discount_curve.discount(t) for t in times[start + 1:end + 1]], dtype=float)
    annuity = float(np.sum(accruals * bonds))
    weights = accruals * bonds / annuity

    forwards = covariance_model.initial_forwards[start:end]
    integrated = covariance_model.integrated_covariance_matrix(exercise_date)[start:end, start:end]

    x = weights * forwards
    variance = float(x @ integrated @ x)
    return float(np.sqrt(max(variance, 0.0) / exercise_date))


def rebonato_swaption_volatility(covariance_model, exercise_date, swap_dates, discount_curve):
    """
    Volatilité de Black de Rebonato : σ_N / S(0).
    """
    tenor_grid = covariance_model.tenor_grid
    start, end = _swap_components(tenor_grid, swap_dates)
    _, swap_rate = _annuity_and_swap_rate(tenor_grid, start, end, discount_curve)

    return rebonato_normal_volatility(covariance_model, exercise_date, swap_dates, discount_curve) / swap_rate


def rebonato_swaption_price(covariance_model, swaption, discount_curve):
    """
    Prix approché d'une Swaption (lmm.instruments.rates) :
      - Black avec la volatilité de Rebonato si le blend est plutôt log-normal (β < 1/2)
      - Bachelier avec la volatilité normale sinon
    """
    tenor_grid = covariance_model.tenor_grid
    start, end = _swap_components(tenor_grid, swaption.swap_dates)
    annuity, swap_rate = _annuity_and_swap_rate(tenor_grid, start, end, discount_curve)

    sigma_n = rebonato_normal_volatility(covariance_model, swaption.exercise_date, swaption.swap_dates, discount_curve)
    if covariance_model.displacement < 0.5:
        return black_swaption(
            swap_rate, swaption.strike, sigma_n / swap_rate, swaption.exercise_date, annuity,
            swaption.notional, swaption.payer,
        )
    return bachelier_swaption(
        swap_rate, swaption.strike, sigma_n, swaption.exercise_date, annuity,
        swaption.notional, swaption.payer,
    )
