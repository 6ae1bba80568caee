import numpy as np
import pytest

from lmm.errors import ConfigurationError
from lmm.market.curve import DiscountCurve, ForwardCurve, bonds_to_forwards, forwards_to_bonds
from lmm.market.time_grid import TimeDiscretization


def test_forward_curve_interpolates_and_extrapolates_flat():
    curve = ForwardCurve([0.5, 1.0, 3.0], [0.04, 0.05, 0.06], 0.5)
    assert curve.forward(0.75) == pytest.approx(0.045)
    assert curve.forward(0.0) == pytest.approx(0.04)
    assert curve.forward(10.0) == pytest.approx(0.06)


def test_forwards_on_tenor_grid_uses_fixing_dates():
    curve = ForwardCurve([0.5, 1.0, 3.0], [0.04, 0.05, 0.06], 0.5)
    tenor = TimeDiscretization.from_horizon(2.0, 0.5)
    assert curve.forwards_on(tenor) == pytest.approx([0.04, 0.04, 0.05, 0.0525])


def test_bonds_and_forwards_round_trip():
    times = np.array([0.5, 1.0, 1.5, 2.0, 3.0, 3.5])
    bonds = np.array([0.98, 0.975, 0.97, 0.965, 0.959, 0.954])
    forwards = bonds_to_forwards(bonds, times)
    assert forwards_to_bonds(forwards, times) == pytest.approx(bonds, abs=1e-12)


def test_first_forward_uses_time_zero_bond():
    forwards = bonds_to_forwards([0.98], [0.5])
    assert forwards[0] == pytest.approx((1.0 / 0.98 - 1.0) / 0.5)


def test_discount_curve_from_forwards():
    tenor = TimeDiscretization.from_horizon(2.0, 0.5)
    curve = DiscountCurve.from_forwards([0.05] * 4, tenor)
    assert curve.discount(0.0) == pytest.approx(1.0)
    assert curve.discount(2.0) == pytest.approx(1.025 ** -4)
    assert curve.forward_rate(0.5, 1.0) == pytest.approx(0.05)
    # Extrapolation à forward constant
    assert curve.discount(2.5) == pytest.approx(1.025 ** -5)


def test_mismatched_lengths_raise():
    with pytest.raises(ConfigurationError):
        bonds_to_forwards([0.98, 0.97], [0.5])
    with pytest.raises(ConfigurationError):
        ForwardCurve([0.5, 1.0], [0.05], 0.5)


def test_discount_curve_from_forward_curve():
    tenor = TimeDiscretization.from_horizon(1.5, 0.5)
    curve = DiscountCurve.from_forward_curve(ForwardCurve([0.5], [0.04], 0.5), tenor)
    assert curve.discount(1.5) == pytest.approx(1.02 ** -3)
    with pytest.raises(ConfigurationError):
        DiscountCurve.from_forward_curve(ForwardCurve([0.5], [0.04], 0.5), TimeDiscretization([0.5, 1.0]))
