# -*- coding: utf-8 -*-
"""
lmm/pricers/swap.py

Swap vanilla sous la courbe initiale et bootstrap de ZC à partir de taux de swap par.

Conventions
-----------
- dates de swap T_1 < ... < T_n, courbe P(0,T_1), ..., P(0,T_n) alignée
- jambe variable : P(0,T_1) - P(0,T_n)
- jambe fixe     : Σ_{i=1}^{n-1} K_i δ_i P(0,T_{i+1})
- valeur (payer) = jambe variable - jambe fixe
"""

from __future__ import annotations

import numpy as np
from scipy.optimize import brentq

from lmm.errors import ConfigurationError
from lmm.market.curve import forwards_to_bonds
from lmm.market.time_grid import TimeDiscretization


class SwapValuation:
    """
    Taux de swap par et valeur d'un swap à partir d'une courbe ZC ou LIBOR.

    Paramètres
    ----------
    swap_dates : array_like ou TimeDiscretization
        T_1, ..., T_n (grille uniforme ou non).
    curve : array_like
        P(0,T_i) si is_bond_curve, sinon forwards L(T_{i-1}, T_i; 0) avec T_0 = 0.
    is_bond_curve : bool
        Nature de la courbe fournie.
    """

    def __init__(self, swap_dates, curve, is_bond_curve: bool = True):
        grid = swap_dates if isinstance(swap_dates, TimeDiscretization) else TimeDiscretization(swap_dates)
        curve = np.asarray(curve, dtype=float)
        if curve.shape != (grid.number_of_times,):
            raise ConfigurationError("La courbe doit avoir une valeur par date de swap.")
        if grid.number_of_times < 2:
            raise ConfigurationError("Un swap demande au moins deux dates.")

        self.swap_dates = grid
        self.bonds = curve if is_bond_curve else forwards_to_bonds(curve, grid.as_array())

    @classmethod
    def from_year_fraction(cls, year_fraction: float, curve, is_bond_curve: bool = True) -> "SwapValuation":
        """
        Dates uniformes δ, 2δ, ..., nδ.
        """
        n = len(curve)
        return cls(TimeDiscretization.from_step(year_fraction, n - 1, year_fraction), curve, is_bond_curve)

    @property
    def annuity(self) -> float:
        return float(np.sum(self.swap_dates.time_steps() * self.bonds[1:]))

    @property
    def floating_leg(self) -> float:
        return float(self.bonds[0] - self.bonds[-1])

    def par_swap_rate(self) -> float:
        """
        S = (P(0,T_1) - P(0,T_n)) / Σ δ_i P(0,T_{i+1})
        """
        return self.floating_leg / self.annuity

    def swap_value(self, swap_rates) -> float:
        """
        Valeur du swap payeur pour un taux fixe unique ou un taux par période.
        """
        rates = np.broadcast_to(np.asarray(swap_rates, dtype=float), (self.swap_dates.number_of_time_steps,))
        fixed_leg = float(np.sum(rates * self.swap_dates.time_steps() * self.bonds[1:]))
        return self.floating_leg - fixed_leg


class ParSwapBootstrap:
    """
    Bootstrap de la courbe ZC à partir de taux de swap par (pas δ constant).

    Les deux premiers ZC sont donnés ; chaque taux par ajoute :
      - next_bond : un ZC (taux de swap à l'échéance suivante)
      - next_two_bonds : deux ZC (taux de swap à deux échéances, ZC intermédiaire
        interpolé log-linéairement, ZC final trouvé par brentq)
    """

    def __init__(self, first_bond: float, second_bond: float, year_fraction: float):
        self.year_fraction = float(year_fraction)
        self.bonds = [float(first_bond), float(second_bond)]

    @property
    def _sum_after_first(self) -> float:
        return float(sum(self.bonds[1:]))

    def next_bond(self, par_swap_rate: float) -> float:
        # P_new = (P_1 - δ S Σ_{i>=2} P_i) / (1 + δ S)
        d = self.year_fraction
        new_bond = (self.bonds[0] - d * par_swap_rate * self._sum_after_first) / (1.0 + par_swap_rate * d)
        self.bonds.append(new_bond)
        return new_bond

    def next_two_bonds(self, par_swap_rate: float):
        last_bond = self.bonds[-1]
        d = self.year_fraction

        def swap_rate_gap(candidate):
            interpolated = np.sqrt(last_bond * candidate)
            annuity = d * (self._sum_after_first + interpolated + candidate)
            return (self.bonds[0] - candidate) / annuity - par_swap_rate

        final_bond = brentq(swap_rate_gap, 1e-4, last_bond)
        interpolated = float(np.sqrt(last_bond * final_bond))
        self.bonds.extend([interpolated, float(final_bond)])
        return interpolated, float(final_bond)
