# -*- coding: utf-8 -*-
"""
lmm/instruments/rates.py

Produits de taux évalués par Monte Carlo sur une simulation LMM.

Chaque produit expose values(simulation) : les flux de chaque trajectoire
ramenés en t=0 par le numéraire,

    V_k = payoff_k / N_k(T_paiement) * N_k(0)

La moyenne sur les trajectoires donne le prix (cf. MonteCarloPricer).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from lmm.errors import ConfigurationError
from lmm.instruments.base import Instrument


def _discount_to_today(payoff: np.ndarray, simulation: Any, payment_time: float) -> np.ndarray:
    # payoff / N(T_paiement) * N(0)
    return payoff / simulation.get_numeraire(payment_time) * simulation.get_numeraire(0.0)


def _as_dates(dates: Sequence[float]) -> tuple:
    out = tuple(float(t) for t in dates)
    if len(out) < 2:
        raise ConfigurationError("Il faut au moins deux dates (début et fin).")
    if np.any(np.diff(out) <= 0.0):
        raise ConfigurationError("Les dates doivent être strictement croissantes.")
    return out


@dataclass(frozen=True)
class Caplet(Instrument):
    """
    Caplet (ou floorlet) sur le taux L(T1; T1, T1 + δ), payé en T1 + δ :

        payoff = N δ max(L - K, 0)      (caplet)
        payoff = N δ max(K - L, 0)      (floorlet)
    """
    maturity: float
    period_length: float
    strike: float
    is_floorlet: bool = False
    notional: float = 1.0

    def __post_init__(self):
        if self.maturity < 0.0 or self.period_length <= 0.0:
            raise ConfigurationError("Caplet : maturity >= 0 et period_length > 0 requis.")

    @property
    def payment_date(self) -> float:
        return self.maturity + self.period_length

    def values(self, simulation: Any) -> np.ndarray:
        libor = simulation.libor(self.maturity, self.maturity, self.payment_date)
        spread = self.strike - libor if self.is_floorlet else libor - self.strike
        payoff = self.notional * self.period_length * np.maximum(spread, 0.0)
        return _discount_to_today(payoff, simulation, self.payment_date)

    def describe(self) -> dict:
        return {
            "Product": "Floorlet" if self.is_floorlet else "Caplet",
            "Fixing": self.maturity,
            "End": self.payment_date,
            "Strike": self.strike,
        }


@dataclass(frozen=True)
class DigitalCaplet(Instrument):
    """
    Caplet digital sur L(T1; T1, T1 + δ), payé en T1 + δ :

        payoff = N δ 1{L > K}
    """
    maturity: float
    period_length: float
    strike: float
    notional: float = 1.0

    def __post_init__(self):
        if self.maturity < 0.0 or self.period_length <= 0.0:
            raise ConfigurationError("DigitalCaplet : maturity >= 0 et period_length > 0 requis.")

    @property
    def payment_date(self) -> float:
        return self.maturity + self.period_length

    def values(self, simulation: Any) -> np.ndarray:
        libor = simulation.libor(self.maturity, self.maturity, self.payment_date)
        payoff = self.notional * self.period_length * (libor > self.strike).astype(float)
        return _discount_to_today(payoff, simulation, self.payment_date)

    def describe(self) -> dict:
        return {
            "Product": "DigitalCaplet",
            "Fixing": self.maturity,
            "End": self.payment_date,
            "Strike": self.strike,
        }


@dataclass(frozen=True)
class Swaption(Instrument):
    """
    Swaption européenne sur le swap de dates swap_dates = (T_s, ..., T_e).

    Valeur à l'exercice T_ex (<= T_s) :
        payer    : max(S - K, 0) * A
        receiver : max(K - S, 0) * A
    avec A = Σ δ_j P(T_ex, T_{j+1}) et S le taux de swap observé en T_ex.
    """
    exercise_date: float
    swap_dates: tuple
    strike: float
    payer: bool = True
    notional: float = 1.0

    def __post_init__(self):
        dates = _as_dates(self.swap_dates)
        object.__setattr__(self, "swap_dates", dates)
        if self.exercise_date < 0.0 or self.exercise_date > dates[0]:
            raise ConfigurationError("Swaption : l'exercice doit précéder le début du swap.")

    @property
    def swap_start(self) -> float:
        return self.swap_dates[0]

    @property
    def swap_end(self) -> float:
        return self.swap_dates[-1]

    def annuity(self, simulation: Any) -> np.ndarray:
        """
        A(T_ex) = Σ δ_j P(T_ex, T_{j+1}), par trajectoire.
        """
        t = self.exercise_date
        dates = self.swap_dates
        return sum(
            (dates[j + 1] - dates[j]) * simulation.bond(t, dates[j + 1]) for j in range(len(dates) - 1)
        )

    def swap_rate(self, simulation: Any) -> np.ndarray:
        t = self.exercise_date
        floating = simulation.bond(t, self.swap_start) - simulation.bond(t, self.swap_end)
        return floating / self.annuity(simulation)

    def values(self, simulation: Any) -> np.ndarray:
        annuity = self.annuity(simulation)
        rate = self.swap_rate(simulation)
        spread = rate - self.strike if self.payer else self.strike - rate
        payoff = self.notional * np.maximum(spread, 0.0) * annuity
        return _discount_to_today(payoff, simulation, self.exercise_date)

    def describe(self) -> dict:
        return {
            "Product": "Payer" if self.payer else "Receiver",
            "Fixing": self.exercise_date,
            "End": self.swap_end,
            "Strike": self.strike,
        }


@dataclass(frozen=True)
class ExchangeOption(Instrument):
    """
    Option d'échange entre deux taux LIBOR, payée en fin de seconde période :

        payoff = max(L(T_i; T_i, T_{i+1}) - L(T_k; T_k, T_{k+1}), 0)   en T_{k+1}

    Le payoff n'est pas multiplié par la longueur de période.
    """
    first_start: float
    first_end: float
    second_start: float
    second_end: float

    def __post_init__(self):
        if self.first_end <= self.first_start or self.second_end <= self.second_start:
            raise ConfigurationError("ExchangeOption : chaque période doit avoir end > start.")
        if self.first_start > self.second_end:
            raise ConfigurationError("ExchangeOption : le premier taux doit être fixé avant le paiement.")

    def values(self, simulation: Any) -> np.ndarray:
        first = simulation.libor(self.first_start, self.first_start, self.first_end)
        second = simulation.libor(self.second_start, self.second_start, self.second_end)
        payoff = np.maximum(first - second, 0.0)
        return _discount_to_today(payoff, simulation, self.second_end)

    def describe(self) -> dict:
        return {
            "Product": "ExchangeOption",
            "Fixing": self.first_start,
            "End": self.second_end,
            "Strike": np.nan,
        }


@dataclass(frozen=True)
class Swap(Instrument):
    """
    Swap taux fixe contre LIBOR, flux δ_j (L_j(T_j) - K) payés en T_{j+1}.

    payer=True : on paie le fixe (on reçoit le variable).
    """
    dates: tuple
    fixed_rate: float
    payer: bool = True
    notional: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "dates", _as_dates(self.dates))

    def values(self, simulation: Any) -> np.ndarray:
        sign = 1.0 if self.payer else -1.0
        total = np.zeros(simulation.number_of_paths)
        for start, end in zip(self.dates[:-1], self.dates[1:]):
            libor = simulation.libor(start, start, end)
            cashflow = sign * self.notional * (end - start) * (libor - self.fixed_rate)
            total = total + _discount_to_today(cashflow, simulation, end)
        return total

    def describe(self) -> dict:
        return {
            "Product": "Swap",
            "Fixing": self.dates[0],
            "End": self.dates[-1],
            "Strike": self.fixed_rate,
        }
