# -*- coding: utf-8 -*-
"""
lmm/instruments/base.py

Couche "métier" :
- Instrument (base) : produit évaluable sur une simulation LMM
- CalibrationProduct : instrument + prix cible figé + poids
- CalibrationProductSet : encapsule une liste de produits et produit les
  DataFrames de comparaison modèle / cible

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import pandas as pd


# -------------------------
# Instruments (base)
# -------------------------

@dataclass(frozen=True)
class Instrument:
    """
    Instrument abstrait : expose uniquement une API commune.

    Idée :
    - chaque instrument concret (caplet, swaption, option d'échange, swap)
      implémente values(simulation) : valeurs actualisées en t=0 par trajectoire
      (payoff / N(T_paiement) * N(0))
    - price(simulation) délègue l'estimation (moyenne + erreur standard) au pricer
    """
    def values(self, simulation: Any) -> np.ndarray:
        # Méthode à implémenter par les classes filles
        raise NotImplementedError

    def price(self, simulation: Any):
        from lmm.pricers.monte_carlo import MonteCarloPricer

        return MonteCarloPricer().price(self, simulation)

    def describe(self) -> dict:
        # Colonnes descriptives pour les rapports (surchargées par les produits)
        return {"Product": type(self).__name__}


# -------------------------
# Produits de calibration
# -------------------------

@dataclass(frozen=True)
class CalibrationProduct:
    """
    Instrument de calibration : le prix cible est figé à la création,
    même si le modèle calibré évolue ensuite.
    """
    product: Instrument
    target_value: float
    weight: float = 1.0


@dataclass
class CalibrationProductSet:
    """
    Ensemble de produits de calibration.

    Objectif :
    - fournir une vue tabulaire (DataFrame) des produits et des cibles
    - fournir des helpers de comparaison modèle vs cible
    """
    products: list = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.products)

    def __iter__(self):
        return iter(self.products)

    def __getitem__(self, i) -> CalibrationProduct:
        return self.products[i]

    def append(self, product: CalibrationProduct) -> None:
        self.products.append(product)

    @property
    def targets(self) -> np.ndarray:
        return np.array([p.target_value for p in self.products], dtype=float)

    @property
    def weights(self) -> np.ndarray:
        return np.array([p.weight for p in self.products], dtype=float)

    def to_frame(self) -> pd.DataFrame:
        """
        Une ligne par produit : description + "Target" + "Weight".
        """
        rows = []
        for p in self.products:
            row = dict(p.product.describe())
            row["Target"] = float(p.target_value)
            row["Weight"] = float(p.weight)
            rows.append(row)
        return pd.DataFrame(rows)

    def with_model_prices(self, model_prices: Sequence[float]) -> pd.DataFrame:
        """
        Ajoute les prix modèle et l'erreur relative.

        Sortie :
        - Ajoute deux colonnes :
          * "Model_Price"
          * "Rel_Error" : (Model / Target - 1), NaN si la cible est nulle
        """
        out = self.to_frame()
        out["Model_Price"] = np.asarray(model_prices, dtype=float)

        target = out["Target"].astype(float)
        out["Rel_Error"] = np.where(target != 0.0, out["Model_Price"] / target.where(target != 0.0, 1.0) - 1.0, np.nan)
        return out


# -------------------------
# util simple
# -------------------------

def worst_rows_by_abs_relerr(df: pd.DataFrame, relerr_col: str = "Rel_Error", n: int = 10) -> pd.DataFrame:
    """
    Renvoie les n lignes avec les plus grosses erreurs relatives en valeur absolue.

    Utile pour diagnostiquer une calibration :
    - on repère rapidement les instruments les plus mal "fit"
    - on peut ensuite inspecter leurs caractéristiques (fixing, strike, etc.)
    """
    out = df.copy()
    out["AbsRelErr"] = np.abs(out[relerr_col].astype(float))
    return out.sort_values("AbsRelErr", ascending=False).head(int(n))
