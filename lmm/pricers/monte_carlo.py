# -*- coding: utf-8 -*-
"""
lmm/pricers/monte_carlo.py

Pricer Monte Carlo générique : moyenne des valeurs actualisées par trajectoire
+ erreur standard.

L'estimateur est réduit par blocs de trajectoires (moyenne et somme des carrés
des écarts de chaque bloc, fusionnées une à une). La
fusion évite la perte de précision de la forme "somme des carrés - n moyenne²"
et ne garde pas plusieurs copies des valeurs en mémoire.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from lmm.errors import SimulationFailure


@dataclass(frozen=True)
class PriceResult:
    """
    Prix Monte Carlo.

    Attributs
    ---------
    value : float
        Moyenne des valeurs actualisées.
    standard_error : float
        Ecart-type empirique / sqrt(nombre de trajectoires).
    number_of_paths : int
        Trajectoires utilisées.
    """
    value: float
    standard_error: float
    number_of_paths: int

    def __float__(self) -> float:
        return float(self.value)

    def confidence_interval(self, z: float = 1.96):
        return self.value - z * self.standard_error, self.value + z * self.standard_error


class MonteCarloPricer:
    """
    Pricer Monte Carlo (aucun état hors configuration).

    Paramètres
    ----------
    block_size : int
        Taille des blocs pour la réduction des sommes.
    """

    def __init__(self, block_size: int = 65_536):
        self.block_size = int(block_size)

    def _reduce(self, values: np.ndarray) -> PriceResult:
        # Fusion par blocs (moyenne, somme des carrés des écarts) : formule de Chan
        n = 0
        mean = 0.0
        m2 = 0.0
        for start in range(0, values.size, self.block_size):
            chunk = values[start:start + self.block_size]
            n_block = chunk.size
            mean_block = float(np.mean(chunk))
            m2_block = float(np.sum((chunk - mean_block) ** 2))

            total = n + n_block
            delta = mean_block - mean
            mean += delta * n_block / total
            m2 += m2_block + delta * delta * n * n_block / total
            n = total

        variance = m2 / (n - 1) if n > 1 else 0.0
        return PriceResult(value=mean, standard_error=float(np.sqrt(variance / n)), number_of_paths=n)

    def price(self, product: Any, simulation: Any) -> PriceResult:
        """
        Prix en t=0 du produit sur la simulation.

        Paramètres
        ----------
        product : Instrument
            Produit exposant values(simulation).
        simulation : LIBORSimulation
            Simulation complète.
        """
        values = np.asarray(product.values(simulation), dtype=float)
        if values.shape != (simulation.number_of_paths,):
            raise ValueError(
                f"values() doit renvoyer {simulation.number_of_paths} valeurs, reçu {values.shape}."
            )
        if not np.all(np.isfinite(values)):
            raise SimulationFailure(
                f"Valeurs non finies pour {type(product).__name__}.",
                paths=np.nonzero(~np.isfinite(values))[0].tolist(),
            )
        return self._reduce(values)

    def price_all(self, products: Sequence[Any], simulation: Any) -> list:
        return [self.price(p, simulation) for p in products]
