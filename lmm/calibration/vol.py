# -*- coding: utf-8 -*-
"""
lmm/calibration/vol.py

Volatilités implicites (Black log-normale et Bachelier normale) par inversion brentq.
"""

import numpy as np
from scipy.optimize import brentq

from lmm.pricers.analytic import bachelier_formula, black_formula


def _invert(pricer, price, lower, upper):
    """
    Cherche σ tel que pricer(σ) = price sur [lower, upper] ; NaN si pas de racine.
    """
    def objective(sigma):
        return pricer(sigma) - price

    f_low, f_up = objective(lower), objective(upper)
    if not (np.isfinite(f_low) and np.isfinite(f_up)) or f_low * f_up > 0.0:
        return np.nan
    return float(brentq(objective, lower, upper))


def black_implied_volatility(price, forward, strike, expiry, annuity, notional=1.0, payer=True):
    """
    Volatilité implicite de Black à partir d'un prix (caplet ou swaption).

    Paramètres
    ----------
    price : float
        PV de l'instrument.
    forward : float
        Forward du caplet ou taux de swap forward (en taux décimaux).
    strike : float
        Strike (en taux décimaux).
    expiry : float
        Date de fixing / d'exercice en années.
    annuity : float
        δ P(0,T2) pour un caplet, Σ δ_i P(0,T_{i+1}) pour une swaption.

    Retourne
    --------
    float
        Volatilité log-normale, NaN si le prix est hors des bornes de non-arbitrage.
    """
    if expiry <= 0.0 or annuity <= 0.0:
        return np.nan
    scale = notional * annuity
    return _invert(lambda s: scale * black_formula(forward, strike, s, expiry, payer), price, 1e-8, 5.0)


def normal_implied_volatility(price, forward, strike, expiry, annuity, notional=1.0, payer=True):
    """
    Volatilité implicite normale (Bachelier), en taux (1.0 = 10 000 bps).
    """
    if expiry <= 0.0 or annuity <= 0.0:
        return np.nan
    scale = notional * annuity
    return _invert(lambda s: scale * bachelier_formula(forward, strike, s, expiry, payer), price, 1e-10, 1.0)
