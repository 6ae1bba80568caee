# -*- coding: utf-8 -*-
"""
lmm/simulation/paths.py

Simulation Monte Carlo du LMM par schéma d'Euler.

- LIBORPathSimulator : CONFIGURED -> STEPPING -> COMPLETE
- LIBORSimulation    : résultat (forwards et numéraire par trajectoire et par date)
- SimulationPath     : vue figée d'une trajectoire

Aléa
----
Les trajectoires sont regroupées en blocs de taille fixe ; chaque bloc tire ses
normales dans son propre flux numpy, dérivé de (seed, indice du bloc) via
SeedSequence. Le résultat ne dépend donc pas du nombre de workers : une
exécution multi-thread reproduit exactement une exécution séquentielle.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

import numpy as np

from lmm.errors import ConfigurationError, SimulationFailure
from lmm.market.time_grid import TIME_TOLERANCE
from lmm.models.lmm import LIBORMarketModel, bond_from_rates

FAILURE_POLICIES = ("raise", "drop")


class SimulationState(Enum):
    CONFIGURED = "configured"
    STEPPING = "stepping"
    COMPLETE = "complete"


@dataclass(frozen=True, eq=False)
class SimulationPath:
    """
    Une trajectoire : forwards (dates x composantes) et numéraire (dates).
    """
    index: int
    times: np.ndarray
    rates: np.ndarray
    numeraire: np.ndarray

    def forward(self, time_index: int, component: int) -> float:
        return float(self.rates[time_index, component])


class LIBORSimulation:
    """
    Résultat complet d'une simulation : immuable après création.

    Attributs
    ---------
    model : LIBORMarketModel
        Modèle simulé.
    rates : np.ndarray
        Forwards, shape (nombre de trajectoires, nombre de dates, nombre de forwards).
    numeraire : np.ndarray
        Numéraire, shape (nombre de trajectoires, nombre de dates).
    failed_paths : int
        Nombre de trajectoires écartées (politique "drop").
    on_failure : str
        Politique d'échec de la simulation d'origine, reprise par les clones.
    """

    def __init__(
        self, model: LIBORMarketModel, rates, numeraire, failed_paths=0, seed=None, block_size=None, on_failure="raise"
    ):
        self.model = model
        self.rates = np.asarray(rates, dtype=float)
        self.numeraire = np.asarray(numeraire, dtype=float)
        self.rates.setflags(write=False)
        self.numeraire.setflags(write=False)
        self.failed_paths = int(failed_paths)
        self.seed = seed
        self.block_size = block_size
        self.on_failure = on_failure

    # --- dimensions / grilles --- #

    @property
    def number_of_paths(self) -> int:
        return int(self.rates.shape[0])

    @property
    def simulation_grid(self):
        return self.model.simulation_grid

    @property
    def tenor_grid(self):
        return self.model.tenor_grid

    @property
    def measure(self):
        return self.model.measure

    @property
    def covariance_model(self):
        return self.model.covariance_model

    def _time_index(self, t: float) -> int:
        return self.simulation_grid.require_index(t)

    # --- observables --- #

    def forward(self, time: float, component: int) -> np.ndarray:
        """
        L_i(t) sur toutes les trajectoires (valeur figée après le fixing T_i).
        """
        return self.rates[:, self._time_index(time), component]

    def forwards_at(self, time: float) -> np.ndarray:
        return self.rates[:, self._time_index(time), :]

    def bond(self, evaluation_time: float, maturity: float) -> np.ndarray:
        """
        P(t, T) sur toutes les trajectoires, T date de tenor >= t.
        """
        rates = self.forwards_at(evaluation_time)
        return bond_from_rates(rates, evaluation_time, maturity, self.tenor_grid)

    def libor(self, evaluation_time: float, start: float, end: float) -> np.ndarray:
        """
        Taux simple L(start, end; t) = (P(t,start)/P(t,end) - 1) / (end - start).

        Avec evaluation_time = start on obtient le fixing du taux.
        """
        if end <= start:
            raise ConfigurationError("libor : end doit être > start.")
        p_start = self.bond(evaluation_time, start)
        p_end = self.bond(evaluation_time, end)
        return (p_start / p_end - 1.0) / (end - start)

    def get_numeraire(self, time: float) -> np.ndarray:
        return self.numeraire[:, self._time_index(time)]

    # --- trajectoires --- #

    def path(self, k: int) -> SimulationPath:
        return SimulationPath(
            index=int(k),
            times=self.simulation_grid.as_array(),
            rates=self.rates[k],
            numeraire=self.numeraire[k],
        )

    def paths(self) -> Iterator[SimulationPath]:
        for k in range(self.number_of_paths):
            yield self.path(k)

    # --- clones --- #

    def clone_with_modified_covariance(self, covariance_model, n_workers=1) -> "LIBORSimulation":
        """
        Re-simule avec un nouveau modèle de covariance et les mêmes flux aléatoires.
        """
        model = self.model.with_covariance_model(covariance_model)
        simulator = LIBORPathSimulator(
            model,
            number_of_paths=self.number_of_paths + self.failed_paths,
            seed=self.seed,
            block_size=self.block_size,
            n_workers=n_workers,
            on_failure=self.on_failure,
        )
        return simulator.run()

    def clone_with_modified_correlation(self, decay: float, n_workers=1) -> "LIBORSimulation":
        covariance = self.covariance_model.with_modified(correlation_decay=decay)
        return self.clone_with_modified_covariance(covariance, n_workers=n_workers)


class LIBORPathSimulator:
    """
    Moteur d'Euler pour le LMM.

    Paramètres
    ----------
    model : LIBORMarketModel
        Modèle validé (grilles, mesure, espace d'état).
    number_of_paths : int
        Nombre de trajectoires Monte Carlo.
    seed : int
        Graine ; chaque bloc de trajectoires a son propre flux dérivé de la graine.
    block_size : int
        Nombre de trajectoires par bloc (unité de parallélisme et de flux aléatoire).
    n_workers : int
        Nombre de threads ; 1 = exécution séquentielle.
    on_failure : str
        "raise" : SimulationFailure dès qu'un état non fini apparaît ;
        "drop"  : la trajectoire est écartée et comptée dans failed_paths.
    """

    def __init__(
        self,
        model: LIBORMarketModel,
        number_of_paths: int = 10_000,
        seed: int = 1897,
        block_size: int = 1024,
        n_workers: int = 1,
        on_failure: str = "raise",
    ):
        if not isinstance(model, LIBORMarketModel):
            raise ConfigurationError("model doit être un LIBORMarketModel.")
        if int(number_of_paths) < 1:
            raise ConfigurationError("number_of_paths doit être >= 1.")
        if int(block_size) < 1:
            raise ConfigurationError("block_size doit être >= 1.")
        if int(n_workers) < 1:
            raise ConfigurationError("n_workers doit être >= 1.")
        if on_failure not in FAILURE_POLICIES:
            raise ConfigurationError(f"on_failure doit être dans {FAILURE_POLICIES}.")

        self._check_dimensions(model)

        self.model = model
        self.number_of_paths = int(number_of_paths)
        self.seed = int(seed)
        self.block_size = int(block_size)
        self.n_workers = int(n_workers)
        self.on_failure = on_failure

        self.state = SimulationState.CONFIGURED
        self._result = None

    @staticmethod
    def _check_dimensions(model: LIBORMarketModel) -> None:
        # Contrôle avant tout tirage : aucune simulation partielle en cas d'incohérence
        cov = model.covariance_model
        n = model.tenor_grid.number_of_time_steps
        m = model.simulation_grid.number_of_times

        if cov.volatility_matrix.shape != (m, n):
            raise ConfigurationError(
                f"Volatilité de shape {cov.volatility_matrix.shape}, attendu {(m, n)}."
            )
        loadings = cov.correlation_model.factor_loadings
        if loadings.shape[0] != n:
            raise ConfigurationError(f"Facteurs de corrélation pour {loadings.shape[0]} forwards, attendu {n}.")
        if model.initial_forwards.shape != (n,):
            raise ConfigurationError("Forwards initiaux incohérents avec la structure de tenors.")
        # Au-delà de T_n les ZC (et le numéraire terminal) ne sont plus définis
        if model.simulation_grid.last > model.tenor_grid.last + TIME_TOLERANCE:
            raise ConfigurationError(
                f"La grille de simulation (jusqu'à {model.simulation_grid.last}) dépasse T_n = {model.tenor_grid.last}."
            )

    # -------------------------
    # Aléa
    # -------------------------

    @property
    def number_of_blocks(self) -> int:
        return -(-self.number_of_paths // self.block_size)

    def _block_bounds(self, block: int):
        start = block * self.block_size
        return start, min(start + self.block_size, self.number_of_paths)

    def block_generator(self, block: int) -> np.random.Generator:
        """
        Flux aléatoire indépendant du bloc, fonction seulement de (seed, block).
        """
        return np.random.default_rng(np.random.SeedSequence(self.seed, spawn_key=(int(block),)))

    def brownian_increments(self, block: int) -> np.ndarray:
        """
        Incréments ΔW du bloc, shape (nombre de pas, trajectoires du bloc, facteurs).
        """
        start, end = self._block_bounds(block)
        grid = self.model.simulation_grid
        k = self.model.number_of_factors

        z = self.block_generator(block).standard_normal((grid.number_of_time_steps, end - start, k))
        return z * np.sqrt(grid.time_steps())[:, None, None]

    # -------------------------
    # Simulation d'un bloc
    # -------------------------

    def _simulate_block(self, block: int):
        start, end = self._block_bounds(block)
        p = end - start
        model = self.model
        grid = model.simulation_grid
        m = grid.number_of_times
        n = model.number_of_components

        increments = self.brownian_increments(block)

        rates = np.empty((p, m, n))
        numeraire = np.empty((p, m))
        failed = np.zeros(p, dtype=bool)

        rates[:, 0, :] = model.initial_forwards
        numeraire[:, 0] = model.numeraire(0, rates[:, 0, :])

        # Pas séquentiels : chaque état dépend uniquement du précédent
        for j in range(m - 1):
            current = rates[:, j, :]
            # Un dépassement produit inf / NaN sur la ligne concernée, détecté juste après
            with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
                nxt = model.euler_step(j, current, increments[j])
                num = model.numeraire(j + 1, nxt)

            bad = ~(np.all(np.isfinite(nxt), axis=1) & np.isfinite(num)) & ~failed
            if np.any(bad):
                if self.on_failure == "raise":
                    indices = (start + np.nonzero(bad)[0]).tolist()
                    raise SimulationFailure(
                        f"Etat non fini à t={grid.time(j + 1)} pour {len(indices)} trajectoire(s).",
                        paths=indices,
                        time_index=j + 1,
                    )
                failed |= bad

            # Trajectoires écartées : état gelé pour ne pas propager de NaN
            if np.any(failed):
                nxt[failed] = current[failed]
                num[failed] = numeraire[failed, j]

            rates[:, j + 1, :] = nxt
            numeraire[:, j + 1] = num

        return rates, numeraire, failed

    # -------------------------
    # Point d'entrée
    # -------------------------

    def run(self) -> LIBORSimulation:
        """
        Simule toutes les trajectoires et renvoie un LIBORSimulation.

        Un second appel renvoie le même résultat (état COMPLETE).
        """
        if self.state is SimulationState.COMPLETE:
            return self._result

        self.state = SimulationState.STEPPING
        blocks = range(self.number_of_blocks)

        try:
            if self.n_workers > 1 and self.number_of_blocks > 1:
                with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                    outputs = list(pool.map(self._simulate_block, blocks))
            else:
                outputs = [self._simulate_block(b) for b in blocks]

            rates = np.concatenate([o[0] for o in outputs], axis=0)
            numeraire = np.concatenate([o[1] for o in outputs], axis=0)
            failed = np.concatenate([o[2] for o in outputs], axis=0)

            if np.all(failed):
                raise SimulationFailure("Toutes les trajectoires ont échoué.", paths=range(self.number_of_paths))

            keep = ~failed
            self._result = LIBORSimulation(
                self.model,
                rates[keep],
                numeraire[keep],
                failed_paths=int(np.sum(failed)),
                seed=self.seed,
                block_size=self.block_size,
                on_failure=self.on_failure,
            )
            self.state = SimulationState.COMPLETE
        finally:
            # Echec quelconque : le simulateur redevient relançable
            if self.state is SimulationState.STEPPING:
                self.state = SimulationState.CONFIGURED

        return self._result
