from __future__ import annotations

from scipy.interpolate import interp1d
import numpy as np

from lmm.errors import ConfigurationError
from lmm.market.time_grid import TimeDiscretization


class ForwardCurve:
    """
    Courbe des forwards initiaux L(0; T, T + period) construite à partir
    de quelques fixings observés.

    - interpolation (linéaire par défaut, cubique possible) des forwards observés
    - extrapolation constante en dehors de [premier fixing, dernier fixing]

    Les forwards non observés (points de tenor intermédiaires) sont donc
    déduits par interpolation, comme dans la construction "from forwards".
    """

    def __init__(self, fixings, forwards, period_length, kind="linear"):
        """
        Initialise la courbe.

        Paramètres
        ----------
        fixings : array_like
            Dates de fixing (en années) des forwards observés.
        forwards : array_like
            Forwards observés, même longueur que fixings.
        period_length : float
            Longueur de la période du forward (T_{i+1} - T_i).
        kind : str
            Type d'interpolation scipy ("linear", "quadratic", "cubic").
        """
        self.fixings = np.asarray(fixings, dtype=float)
        self.forwards = np.asarray(forwards, dtype=float)
        self.period_length = float(period_length)
        self.kind = kind

        if self.fixings.ndim != 1 or self.fixings.shape != self.forwards.shape:
            raise ConfigurationError("fixings et forwards doivent avoir la même longueur.")
        if self.fixings.size == 0:
            raise ConfigurationError("Au moins un forward observé est nécessaire.")
        if self.fixings.size > 1 and np.any(np.diff(self.fixings) <= 0):
            raise ConfigurationError("Les fixings doivent être strictement croissants.")
        if self.period_length <= 0:
            raise ConfigurationError("period_length doit être > 0.")

        self._build_interpolator()

    def _build_interpolator(self):
        # Un seul point : courbe plate
        if self.fixings.size == 1:
            value = float(self.forwards[0])
            self._interp = lambda t: np.full(np.shape(t), value, dtype=float)
            return

        # Extrapolation constante : on colle au premier / dernier forward observé
        self._interp = interp1d(
            self.fixings,
            self.forwards,
            kind=self.kind,
            bounds_error=False,
            fill_value=(float(self.forwards[0]), float(self.forwards[-1])),
        )

    def forward(self, t):
        """
        Forward initial L(0; t, t + period_length) interpolé.

        Paramètres
        ----------
        t : float ou array_like
            Date(s) de fixing.
        """
        out = np.asarray(self._interp(np.asarray(t, dtype=float)), dtype=float)
        return float(out) if out.ndim == 0 else out

    def forwards_on(self, tenor_grid: TimeDiscretization) -> np.ndarray:
        """
        Forwards initiaux L_i(0) pour i = 0..n-1 sur une structure de tenors T_0..T_n.

        La période de chaque forward est celle de la grille (T_{i+1} - T_i).
        """
        fixing_times = tenor_grid.as_array()[:-1]
        return np.asarray(self.forward(fixing_times), dtype=float).reshape(-1)


class DiscountCurve:
    """
    Courbe d'actualisation P(0,T) déduite des forwards d'une structure de tenors :

        P(0,T_0) = 1 (T_0 = 0),  P(0,T_{k+1}) = P(0,T_k) / (1 + δ_k L_k(0))

    - log-linéaire entre deux noeuds
    - extrapolation à taux forward constant au-delà du dernier noeud
    """

    def __init__(self, times, discount_factors):
        self.times = np.asarray(times, dtype=float)
        self.discount_factors = np.asarray(discount_factors, dtype=float)

        if self.times.shape != self.discount_factors.shape or self.times.size < 2:
            raise ConfigurationError("times et discount_factors : même longueur (>= 2) attendue.")
        if np.any(self.discount_factors <= 0):
            raise ConfigurationError("Les facteurs d'actualisation doivent être > 0.")

        self._log_df = np.log(self.discount_factors)

    @classmethod
    def from_forward_curve(cls, forward_curve: ForwardCurve, tenor_grid: TimeDiscretization) -> "DiscountCurve":
        if abs(tenor_grid.first) > 1e-12:
            raise ConfigurationError("La structure de tenors doit commencer en T_0 = 0.")
        forwards = forward_curve.forwards_on(tenor_grid)
        bonds = forwards_to_bonds(forwards, tenor_grid.as_array()[1:])
        return cls(tenor_grid.as_array(), np.concatenate([[1.0], bonds]))

    @classmethod
    def from_forwards(cls, forwards, tenor_grid: TimeDiscretization) -> "DiscountCurve":
        bonds = forwards_to_bonds(forwards, tenor_grid.as_array()[1:], start=tenor_grid.first)
        return cls(tenor_grid.as_array(), np.concatenate([[1.0], bonds]))

    def discount(self, t):
        """
        Facteur d'actualisation P(0,t) (log-linéaire).
        """
        t_arr = np.asarray(t, dtype=float)
        log_df = np.interp(t_arr, self.times, self._log_df)

        # Au-delà du dernier noeud : forward constant égal au dernier segment
        slope = (self._log_df[-1] - self._log_df[-2]) / (self.times[-1] - self.times[-2])
        beyond = t_arr > self.times[-1]
        log_df = np.where(beyond, self._log_df[-1] + slope * (t_arr - self.times[-1]), log_df)

        out = np.exp(log_df)
        return float(out) if out.ndim == 0 else out

    def forward_rate(self, T1, T2):
        """
        Forward simple F(0; T1, T2) = ( P(0,T1)/P(0,T2) - 1 ) / (T2 - T1)
        """
        P1 = self.discount(T1)
        P2 = self.discount(T2)
        return (P1 / P2 - 1.0) / (T2 - T1)


# ----------------------------------------------------------------------
# Conversions ZC <-> forwards (structure T_1 < ... < T_n, T_0 implicite)
# ----------------------------------------------------------------------

def bonds_to_forwards(bonds, payment_times, start=0.0) -> np.ndarray:
    """
    Forwards L(T_{k-1}, T_k; 0) à partir des prix ZC P(0,T_k), k = 1..n.

    Avec P(0,T_0) = 1 pour T_0 = start :
        L_k = (P(0,T_{k-1}) - P(0,T_k)) / (P(0,T_k) (T_k - T_{k-1}))

    Paramètres
    ----------
    bonds : array_like
        P(0,T_1), ..., P(0,T_n).
    payment_times : array_like
        T_1, ..., T_n (strictement croissants, > start).
    """
    bonds = np.asarray(bonds, dtype=float)
    times = np.asarray(payment_times, dtype=float)
    if bonds.shape != times.shape:
        raise ConfigurationError("bonds et payment_times doivent avoir la même longueur.")

    previous_bonds = np.concatenate([[1.0], bonds[:-1]])
    accruals = np.diff(np.concatenate([[start], times]))
    if np.any(accruals <= 0):
        raise ConfigurationError("Les dates de paiement doivent être strictement croissantes.")

    return (previous_bonds - bonds) / (bonds * accruals)


def forwards_to_bonds(forwards, payment_times, start=0.0) -> np.ndarray:
    """
    Prix ZC P(0,T_k), k = 1..n, à partir des forwards L(T_{k-1}, T_k; 0) :

        P(0,T_k) = P(0,T_{k-1}) / (1 + L_k (T_k - T_{k-1})),  P(0,T_0) = 1
    """
    forwards = np.asarray(forwards, dtype=float)
    times = np.asarray(payment_times, dtype=float)
    if forwards.shape != times.shape:
        raise ConfigurationError("forwards et payment_times doivent avoir la même longueur.")

    accruals = np.diff(np.concatenate([[start], times]))
    if np.any(accruals <= 0):
        raise ConfigurationError("Les dates de paiement doivent être strictement croissantes.")

    return np.cumprod(1.0 / (1.0 + forwards * accruals))
