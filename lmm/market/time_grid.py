# -*- coding: utf-8 -*-
"""
lmm/market/time_grid.py

Discrétisations temporelles :
- grille de simulation t_0 < t_1 < ... < t_m (pas du schéma d'Euler)
- structure de tenors T_0 < T_1 < ... < T_n (dates de fixing des forwards)

Les deux grilles partagent la même classe ; seule la finesse diffère.
"""

from __future__ import annotations

from typing import Iterable, Iterator

import numpy as np

from lmm.errors import ConfigurationError

# Tolérance de comparaison des dates (en années)
TIME_TOLERANCE = 1e-10


class TimeDiscretization:
    """
    Suite strictement croissante de dates positives (en années).

    Paramètres
    ----------
    times : array_like
        Dates de la grille. Doivent être >= 0 et strictement croissantes.
    """

    def __init__(self, times: Iterable[float]):
        arr = np.asarray(list(times), dtype=float)

        if arr.ndim != 1 or arr.size == 0:
            raise ConfigurationError("Une grille de temps doit contenir au moins une date.")
        if not np.all(np.isfinite(arr)):
            raise ConfigurationError("Les dates de la grille doivent être finies.")
        if arr[0] < 0.0:
            raise ConfigurationError("Les dates de la grille doivent être >= 0.")
        if arr.size > 1 and np.any(np.diff(arr) <= 0.0):
            raise ConfigurationError("Les dates de la grille doivent être strictement croissantes.")

        # Copie figée : la grille est une valeur immuable
        arr.setflags(write=False)
        self._times = arr

    # --- constructeurs alternatifs --- #

    @classmethod
    def from_step(cls, initial: float, number_of_time_steps: int, time_step: float) -> "TimeDiscretization":
        """
        Grille uniforme : initial, initial + dt, ..., initial + n*dt.
        """
        if number_of_time_steps < 0:
            raise ConfigurationError("Le nombre de pas doit être >= 0.")
        if time_step <= 0.0:
            raise ConfigurationError("Le pas de temps doit être > 0.")
        return cls(initial + time_step * np.arange(number_of_time_steps + 1))

    @classmethod
    def from_horizon(cls, horizon: float, time_step: float) -> "TimeDiscretization":
        """
        Grille uniforme 0, dt, ..., horizon avec n = round(horizon / dt) pas.

        On arrondit (et non tronque) pour éviter de perdre le dernier pas
        à cause d'une division flottante du type 5.0 / 0.1 = 49.999...
        """
        if time_step <= 0.0:
            raise ConfigurationError("Le pas de temps doit être > 0.")
        n = int(round(horizon / time_step))
        if n < 1:
            raise ConfigurationError("L'horizon doit contenir au moins un pas de temps.")
        return cls.from_step(0.0, n, time_step)

    # --- accès --- #

    @property
    def number_of_times(self) -> int:
        return int(self._times.size)

    @property
    def number_of_time_steps(self) -> int:
        return int(self._times.size) - 1

    def time(self, index: int) -> float:
        return float(self._times[index])

    def time_step(self, index: int) -> float:
        """Renvoie t_{i+1} - t_i."""
        return float(self._times[index + 1] - self._times[index])

    def time_steps(self) -> np.ndarray:
        return np.diff(self._times)

    def as_array(self) -> np.ndarray:
        return self._times

    @property
    def first(self) -> float:
        return float(self._times[0])

    @property
    def last(self) -> float:
        return float(self._times[-1])

    def time_index(self, t: float) -> int:
        """
        Indice de la date t dans la grille (à TIME_TOLERANCE près), -1 si absente.
        """
        i = int(np.searchsorted(self._times, t - TIME_TOLERANCE))
        if i < self._times.size and abs(self._times[i] - t) <= TIME_TOLERANCE:
            return i
        return -1

    def contains(self, t: float) -> bool:
        return self.time_index(t) >= 0

    def index_before(self, t: float) -> int:
        """
        Plus grand indice i tel que t_i <= t (à la tolérance près), -1 si t < t_0.
        """
        return int(np.searchsorted(self._times, t + TIME_TOLERANCE, side="right")) - 1

    def require_index(self, t: float) -> int:
        """Comme time_index mais lève ConfigurationError si t n'est pas sur la grille."""
        i = self.time_index(t)
        if i < 0:
            raise ConfigurationError(f"La date {t} n'appartient pas à la grille.")
        return i

    # --- protocole Python --- #

    def __len__(self) -> int:
        return self.number_of_times

    def __iter__(self) -> Iterator[float]:
        return iter(float(t) for t in self._times)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TimeDiscretization):
            return NotImplemented
        return self._times.shape == other._times.shape and bool(
            np.all(np.abs(self._times - other._times) <= TIME_TOLERANCE)
        )

    def __hash__(self) -> int:
        return hash(tuple(np.round(self._times, 10)))

    def __repr__(self) -> str:
        return f"TimeDiscretization({self._times.tolist()})"


def require_subset(simulation_grid: TimeDiscretization, tenor_grid: TimeDiscretization) -> None:
    """
    Vérifie que chaque date de tenor est une date de simulation
    (les forwards doivent être observables sur des pas simulés).
    """
    missing = [t for t in tenor_grid if not simulation_grid.contains(t)]
    if missing:
        raise ConfigurationError(
            f"Dates de tenor absentes de la grille de simulation : {missing}"
        )
