# -*- coding: utf-8 -*-
"""
lmm/errors.py

Hiérarchie d'exceptions du moteur LMM.

- ConfigurationError : incohérence de grilles / dimensions / paramètres,
  levée avant toute simulation.
- TypeMismatchError : combinaison mesure / dynamique / espace d'état invalide.
- SimulationFailure : état non fini pendant le schéma d'Euler.
- CalibrationNonConvergence : budget d'itérations épuisé.
"""

from __future__ import annotations


class LMMError(Exception):
    """Classe de base de toutes les erreurs du moteur."""


class ConfigurationError(LMMError, ValueError):
    """Paramétrage incohérent (grilles, matrices, rang, champs inconnus)."""


class TypeMismatchError(ConfigurationError):
    """Le modèle fourni n'a pas la mesure / dynamique attendue par l'opération."""


class SimulationFailure(LMMError, ArithmeticError):
    """
    Etat non fini (NaN / inf) rencontré pendant la simulation.

    Attributs
    ---------
    paths : list[int]
        Indices des trajectoires concernées.
    time_index : int
        Indice de la date de simulation où l'état est devenu non fini.
    """

    def __init__(self, message, paths=None, time_index=None):
        super().__init__(message)
        self.paths = list(paths) if paths is not None else []
        self.time_index = time_index


class CalibrationNonConvergence(LMMError, RuntimeError):
    """
    Budget d'itérations épuisé sans convergence de l'optimiseur.

    Attributs
    ---------
    result : scipy.optimize.OptimizeResult | None
        Dernier résultat de l'optimiseur (utile pour diagnostic).
    """

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result
