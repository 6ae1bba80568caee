# -*- coding: utf-8 -*-
"""
lmm/calibration/swaption_calibration.py

Calibration des paramètres du modèle de covariance (a, b, c, d, décroissance
de corrélation, blend) à des prix de swaptions.

Déroulé
-------
1) build_instruments : swaptions autour du taux de swap par, prix cibles obtenus
   sur une simulation de référence puis bruités (bruit multiplicatif)
2) calibrate : moindres carrés (scipy.optimize.least_squares) sur
   √w_k (prix modèle_k - cible_k) ; les prix modèle sont obtenus en re-simulant
   avec la graine de la référence (mêmes nombres aléatoires) ou par
   l'approximation de Rebonato
3) calibration_report : comparaison cible / modèle instrument par instrument

Etats : INIT -> BUILD_INSTRUMENTS -> OPTIMIZE -> CALIBRATED | FAILED
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Optional

import numpy as np
import pandas as pd
from scipy.optimize import least_squares

from lmm.calibration.vol import black_implied_volatility
from lmm.errors import CalibrationNonConvergence, ConfigurationError, SimulationFailure
from lmm.instruments.base import CalibrationProduct, CalibrationProductSet, worst_rows_by_abs_relerr
from lmm.instruments.rates import Swaption
from lmm.models.covariance import PARAMETER_NAMES
from lmm.pricers.analytic import rebonato_swaption_price
from lmm.pricers.monte_carlo import MonteCarloPricer
from lmm.pricers.swap import SwapValuation

LAYOUTS = ("single", "grid")
PRICING_METHODS = ("monte_carlo", "rebonato")

# Plages de strikes en multiples du taux de swap par
SINGLE_STRIKE_RANGE = (3.0 / 5.0, 5.0 / 3.0)
GRID_STRIKE_RANGE = (4.0 / 5.0, 5.0 / 4.0)

DEFAULT_INITIAL_PARAMETERS = {
    "a": 0.1,
    "b": 0.1,
    "c": 0.1,
    "d": 0.1,
    "correlation_decay": 0.3,
}

DEFAULT_BOUNDS = {
    "a": (0.0, 2.0),
    "b": (-2.0, 2.0),
    "c": (1e-4, 5.0),
    "d": (0.0, 2.0),
    "correlation_decay": (0.0, 5.0),
    "displacement": (0.0, 1.0),
}


class CalibrationState(Enum):
    INIT = "init"
    BUILD_INSTRUMENTS = "build_instruments"
    OPTIMIZE = "optimize"
    CALIBRATED = "calibrated"
    FAILED = "failed"


class SwaptionCalibrator:
    """
    Calibre le modèle de covariance d'un LMM à des prix de swaptions.

    Paramètres
    ----------
    reference_simulation : LIBORSimulation
        Simulation "vraie" : fournit les prix cibles, la graine et la structure.
    fixed_parameters : dict, optionnel
        Paramètres gelés {nom: valeur} ; les autres sont calibrés.
        Le blend (displacement) est gelé à la valeur de la référence sauf s'il
        figure dans initial_parameters.
    initial_parameters : dict, optionnel
        Point de départ des paramètres libres (défaut : DEFAULT_INITIAL_PARAMETERS).
    rng : np.random.Generator, optionnel
        Générateur du bruit des cibles (défaut : dérivé de la graine de la référence).
    noise : float
        Amplitude du bruit : cible = prix * (1 + noise * (u - 1/2)), u ~ U(0,1).
    pricing : str
        "monte_carlo" (re-simulation, mêmes nombres aléatoires) ou "rebonato".
    n_workers : int
        Threads utilisés pour les re-simulations.
    bounds : dict, optionnel
        Bornes {nom: (min, max)} surchargeant DEFAULT_BOUNDS.
    progress_cb : callable, optionnel
        Appelé à chaque évaluation de l'objectif avec {"iter", "params", "rmse"}.
    verbose : bool
        Impressions console (évaluations + rapport final).
    """

    def __init__(
        self,
        reference_simulation,
        fixed_parameters: Optional[Dict[str, float]] = None,
        initial_parameters: Optional[Dict[str, float]] = None,
        rng: Optional[np.random.Generator] = None,
        noise: float = 0.05,
        pricing: str = "monte_carlo",
        n_workers: int = 1,
        bounds: Optional[Dict[str, tuple]] = None,
        progress_cb: Optional[Callable[[Dict[str, Any]], None]] = None,
        verbose: bool = False,
    ):
        if pricing not in PRICING_METHODS:
            raise ConfigurationError(f"pricing doit être dans {PRICING_METHODS}.")
        if noise < 0.0:
            raise ConfigurationError("noise doit être >= 0.")

        self.reference = reference_simulation
        self.reference_covariance = reference_simulation.covariance_model
        self.pricing = pricing
        self.noise = float(noise)
        self.n_workers = int(n_workers)
        self.progress_cb = progress_cb
        self.verbose = verbose

        if rng is None:
            seed = reference_simulation.seed if reference_simulation.seed is not None else 0
            rng = np.random.default_rng(seed)
        self.rng = rng

        fixed = dict(fixed_parameters or {})
        initial = dict(DEFAULT_INITIAL_PARAMETERS)
        initial.update(initial_parameters or {})
        if "displacement" not in initial and "displacement" not in fixed:
            fixed["displacement"] = self.reference_covariance.displacement

        unknown = (set(fixed) | set(initial)) - set(PARAMETER_NAMES)
        if unknown:
            raise ConfigurationError(f"Paramètres inconnus : {sorted(unknown)}")

        self.fixed_parameters = fixed
        self.free_parameters = tuple(name for name in PARAMETER_NAMES if name not in fixed)
        if not self.free_parameters:
            raise ConfigurationError("Aucun paramètre libre à calibrer.")
        self.initial_parameters = {name: float(initial[name]) for name in self.free_parameters}

        self.bounds = dict(DEFAULT_BOUNDS)
        self.bounds.update(bounds or {})

        self.products = CalibrationProductSet()
        self.pricer = MonteCarloPricer()
        self.history = []
        self.result = None
        self.calibrated_covariance_model = None
        self.state = CalibrationState.INIT

        # Compteur d'évaluations (remonté à progress_cb)
        self._eval_iter = 0

    # -------------------------
    # Instruments
    # -------------------------

    def par_swap_rate(self, swap_dates=None) -> float:
        """
        Taux de swap par des dates swap_dates, depuis la courbe initiale.

        Par défaut : swap T_1..T_n de la disposition "single".
        """
        if swap_dates is None:
            swap_dates = self.reference.tenor_grid.as_array()[1:]
        dates = np.asarray(swap_dates, dtype=float)
        curve = self.reference.model.discount_curve
        return SwapValuation(dates, curve.discount(dates)).par_swap_rate()

    def _strikes(self, swap_dates, number_of_strikes: int, strike_range) -> np.ndarray:
        # Strikes centrés sur le taux par du swap sous-jacent
        swap_rate = self.par_swap_rate(swap_dates)
        low, high = strike_range
        if not 0.0 < low <= high:
            raise ConfigurationError("strike_range doit vérifier 0 < min <= max.")
        return swap_rate * np.linspace(low, high, int(number_of_strikes))

    def _swaption_specs(self, layout: str):
        # (fixing, dates du swap) pour chaque famille de swaptions
        times = self.reference.tenor_grid.as_array()
        n = times.size - 1
        if n < 2:
            raise ConfigurationError("Il faut au moins deux périodes de tenor.")

        if layout == "single":
            return [(times[1], tuple(times[1:]))]

        specs = []
        for i in range(1, n):
            for end in range(n, i, -1):
                specs.append((times[i], tuple(times[i:end + 1])))
        return specs

    def build_instruments(self, number_of_strikes: int = 10, layout: str = "single", strike_range=None):
        """
        Construit les produits de calibration et leurs prix cibles.

        Paramètres
        ----------
        number_of_strikes : int
            Strikes par couple (fixing, swap), répartis uniformément sur strike_range.
        layout : str
            "single" : fixing T_1, swap T_1..T_n.
            "grid"   : chaque fixing T_1..T_{n-1} x chaque fin de swap x strikes.
        strike_range : tuple, optionnel
            (min, max) en multiples du taux par du swap de chaque swaption ; défaut (3/5, 5/3) en "single",
            (4/5, 5/4) en "grid".

        Retourne
        --------
        CalibrationProductSet
        """
        if layout not in LAYOUTS:
            raise ConfigurationError(f"layout doit être dans {LAYOUTS}.")
        if int(number_of_strikes) < 1:
            raise ConfigurationError("number_of_strikes doit être >= 1.")
        if strike_range is None:
            strike_range = SINGLE_STRIKE_RANGE if layout == "single" else GRID_STRIKE_RANGE

        products = CalibrationProductSet()

        for fixing, swap_dates in self._swaption_specs(layout):
            for strike in self._strikes(swap_dates, number_of_strikes, strike_range):
                swaption = Swaption(float(fixing), swap_dates, float(strike))
                reference_price = self.pricer.price(swaption, self.reference).value
                u = self.rng.uniform()
                target = reference_price * (1.0 + self.noise * (u - 0.5))
                products.append(CalibrationProduct(swaption, float(target), 1.0))

        self.products = products
        self.state = CalibrationState.BUILD_INSTRUMENTS
        return products

    # -------------------------
    # Prix modèle
    # -------------------------

    def _parameters_from(self, x) -> Dict[str, float]:
        params = dict(self.fixed_parameters)
        params.update({name: float(v) for name, v in zip(self.free_parameters, x)})
        return params

    def covariance_model_for(self, parameters: Dict[str, float]):
        return self.reference_covariance.with_modified(**parameters)

    def model_prices(self, covariance_model) -> np.ndarray:
        """
        Prix modèle de chaque produit ; NaN si la simulation ou le prix échoue.
        """
        if self.pricing == "rebonato":
            curve = self.reference.model.discount_curve
            return np.array(
                [rebonato_swaption_price(covariance_model, p.product, curve) for p in self.products],
                dtype=float,
            )

        try:
            simulation = self.reference.clone_with_modified_covariance(covariance_model, n_workers=self.n_workers)
        except SimulationFailure:
            return np.full(len(self.products), np.nan)

        prices = []
        for p in self.products:
            try:
                prices.append(self.pricer.price(p.product, simulation).value)
            except SimulationFailure:
                prices.append(np.nan)
        return np.array(prices, dtype=float)

    # -------------------------
    # Objectif + progression
    # -------------------------

    def residuals(self, x) -> np.ndarray:
        """
        √w_k (modèle_k - cible_k) ; un prix non fini contribue 0 pour cette évaluation.

        Si aucun prix n'est fini, l'objectif n'a plus de sens : SimulationFailure.
        """
        params = self._parameters_from(x)
        prices = self.model_prices(self.covariance_model_for(params))
        if not np.any(np.isfinite(prices)):
            raise SimulationFailure(f"Aucun prix modèle fini pour les paramètres {params}.")
        res = np.sqrt(self.products.weights) * (prices - self.products.targets)
        res = np.where(np.isfinite(res), res, 0.0)

        rmse = float(np.sqrt(np.mean(res * res)))
        self.history.append((params, rmse))
        self._report_progress(params, rmse)
        return res

    def _report_progress(self, params, rmse) -> None:
        self._eval_iter += 1

        if self.verbose:
            shown = ", ".join(f"{k}: {params[k]:.6f}" for k in self.free_parameters)
            print(f"[{self._eval_iter:>4}] {shown}, RMSE: {rmse:.5e}")

        # On encapsule dans try/except pour ne jamais casser l'optimisation si le callback plante.
        if self.progress_cb is not None:
            try:
                self.progress_cb({"iter": int(self._eval_iter), "params": dict(params), "rmse": rmse})
            except Exception:
                pass

    # -------------------------
    # Point d'entrée principal
    # -------------------------

    def calibrate(self, max_nfev: int = 200, ftol: float = 1e-8, xtol: float = 1e-8):
        """
        Lance les moindres carrés et renvoie le CovarianceModel calibré.

        Lève CalibrationNonConvergence (état FAILED) si le budget d'évaluations
        est épuisé avant convergence, ou si une évaluation ne produit aucun prix
        modèle fini.
        """
        if self.state is CalibrationState.INIT or len(self.products) == 0:
            raise ConfigurationError("build_instruments doit être appelé avant calibrate.")

        self.state = CalibrationState.OPTIMIZE
        self._eval_iter = 0
        self.history = []

        x0 = np.array([self.initial_parameters[n] for n in self.free_parameters], dtype=float)
        lower = np.array([self.bounds[n][0] for n in self.free_parameters], dtype=float)
        upper = np.array([self.bounds[n][1] for n in self.free_parameters], dtype=float)
        x0 = np.clip(x0, lower, upper)

        try:
            result = least_squares(
                self.residuals,
                x0,
                bounds=(lower, upper),
                method="trf",
                max_nfev=int(max_nfev),
                ftol=ftol,
                xtol=xtol,
            )
        except SimulationFailure as exc:
            self.state = CalibrationState.FAILED
            if self.verbose:
                print("Calibration échouée :", exc)
            raise CalibrationNonConvergence(f"Calibration impossible : {exc}") from exc
        self.result = result

        if result.status <= 0:
            self.state = CalibrationState.FAILED
            if self.verbose:
                print("Calibration échouée :", result.message)
            raise CalibrationNonConvergence(
                f"Calibration non convergée après {result.nfev} évaluations : {result.message}",
                result=result,
            )

        params = self._parameters_from(result.x)
        self.calibrated_covariance_model = self.covariance_model_for(params)
        self.state = CalibrationState.CALIBRATED

        if self.verbose:
            self._print_summary(params)

        return self.calibrated_covariance_model

    # -------------------------
    # Rapports
    # -------------------------

    def products_frame(self) -> pd.DataFrame:
        return self.products.to_frame()

    def calibration_report(self) -> pd.DataFrame:
        """
        Une ligne par swaption : cible, prix modèle calibré, erreur relative
        et volatilités implicites de Black (cible / modèle).
        """
        if self.state is not CalibrationState.CALIBRATED:
            raise ConfigurationError("calibration_report demande une calibration réussie.")

        model_prices = self.model_prices(self.calibrated_covariance_model)
        out = self.products.with_model_prices(model_prices)

        curve = self.reference.model.discount_curve
        target_vols, model_vols = [], []
        for product, model_price in zip(self.products, model_prices):
            swaption = product.product
            dates = np.asarray(swaption.swap_dates)
            valuation = SwapValuation(dates, curve.discount(dates))
            args = (valuation.par_swap_rate(), swaption.strike, swaption.exercise_date, valuation.annuity)
            target_vols.append(black_implied_volatility(product.target_value, *args))
            model_vols.append(black_implied_volatility(model_price, *args))

        out["Target_Vol"] = target_vols
        out["Model_Vol"] = model_vols
        return out

    def _print_summary(self, params) -> None:
        report = self.calibration_report()
        print("\nCalibration réussie :")
        print(f"Evaluations : {self.result.nfev}")
        print(f"Nombre d'instruments : {len(self.products)}")
        print(f"Erreur relative moyenne : {np.nanmean(np.abs(report['Rel_Error'])):>8.3%}\n")
        print("Paramètres :")
        for name in PARAMETER_NAMES:
            print(f"{name} : {params[name]:.6f}")
        print("\nPlus gros écarts :")
        print(worst_rows_by_abs_relerr(report, n=5).to_string(index=False))
