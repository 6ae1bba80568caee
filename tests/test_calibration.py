import numpy as np
import pandas as pd
import pytest

from lmm.calibration.swaption_calibration import CalibrationState, SwaptionCalibrator
from lmm.calibration.vol import black_implied_volatility, normal_implied_volatility
from lmm.errors import CalibrationNonConvergence, ConfigurationError
from lmm.instruments.base import worst_rows_by_abs_relerr
from lmm.models.lmm import Measure
from lmm.models.volatility import Dynamics
from lmm.pricers.analytic import bachelier_swaption, black_swaption
from lmm.simulation.builder import create_model
from lmm.simulation.paths import LIBORPathSimulator

TRUE_PARAMETERS = dict(a=0.2, b=0.1, c=0.3, d=0.1)


@pytest.fixture(scope="module")
def reference(model_factory):
    model = model_factory(horizon=2.0, dt=0.5, **TRUE_PARAMETERS)
    return LIBORPathSimulator(model, number_of_paths=2000, seed=1897).run()


def make_calibrator(reference, **kwargs):
    options = dict(
        fixed_parameters={"b": 0.1, "c": 0.3, "correlation_decay": 0.3},
        initial_parameters={"a": 0.1, "d": 0.05},
        rng=np.random.default_rng(42),
        noise=0.0,
    )
    options.update(kwargs)
    return SwaptionCalibrator(reference, **options)


def test_single_layout_products(reference):
    calibrator = make_calibrator(reference, noise=0.05)
    products = calibrator.build_instruments(number_of_strikes=4)
    assert calibrator.state is CalibrationState.BUILD_INSTRUMENTS
    assert len(products) == 4

    par = calibrator.par_swap_rate()
    strikes = [p.product.strike for p in products]
    assert strikes[0] == pytest.approx(par * 3.0 / 5.0)
    assert strikes[-1] == pytest.approx(par * 5.0 / 3.0)
    assert all(p.product.exercise_date == 0.5 for p in products)
    assert all(p.weight == 1.0 for p in products)

    frame = calibrator.products_frame()
    assert isinstance(frame, pd.DataFrame)
    assert list(frame["Strike"]) == pytest.approx(strikes)


def test_noise_is_bounded_and_reproducible(reference):
    kwargs = dict(number_of_strikes=3, strike_range=(0.8, 1.25))
    noiseless = make_calibrator(reference).build_instruments(**kwargs)
    noisy = make_calibrator(reference, noise=0.05).build_instruments(**kwargs)
    again = make_calibrator(reference, noise=0.05).build_instruments(**kwargs)

    ratio = noisy.targets / noiseless.targets
    assert np.all(np.abs(ratio - 1.0) <= 0.025 + 1e-12)
    assert np.array_equal(noisy.targets, again.targets)


def test_grid_layout_spans_fixings_and_ends(reference):
    calibrator = make_calibrator(reference)
    products = calibrator.build_instruments(number_of_strikes=2, layout="grid")
    # n = 4 périodes : fixings 0.5, 1.0, 1.5 avec 3 + 2 + 1 fins de swap
    assert len(products) == 6 * 2
    fixings = sorted({p.product.exercise_date for p in products})
    assert fixings == [0.5, 1.0, 1.5]
    assert all(p.product.swap_start == p.product.exercise_date for p in products)


def test_invalid_configuration(reference):
    with pytest.raises(ConfigurationError):
        make_calibrator(reference, pricing="closed_form")
    with pytest.raises(ConfigurationError):
        make_calibrator(reference, fixed_parameters={"sigma": 0.1})
    with pytest.raises(ConfigurationError):
        make_calibrator(reference).build_instruments(layout="cube")
    with pytest.raises(ConfigurationError):
        make_calibrator(reference).calibrate()


def test_noiseless_calibration_recovers_prices(reference):
    seen = []
    calibrator = make_calibrator(reference, progress_cb=seen.append)
    calibrator.build_instruments(number_of_strikes=3, strike_range=(0.8, 1.25))

    calibrated = calibrator.calibrate(max_nfev=200, ftol=1e-10, xtol=1e-10)

    assert calibrator.state is CalibrationState.CALIBRATED
    assert calibrated.volatility_model.b == 0.1
    assert calibrated.correlation_model.decay == 0.3

    report = calibrator.calibration_report()
    assert np.mean(np.abs(report["Rel_Error"])) < 0.01
    assert {"Target", "Model_Price", "Rel_Error", "Target_Vol", "Model_Vol"} <= set(report.columns)

    worst = worst_rows_by_abs_relerr(report, n=2)
    assert len(worst) == 2

    assert seen and {"iter", "params", "rmse"} <= set(seen[0])
    # La référence n'est jamais modifiée
    assert reference.covariance_model.volatility_model.a == 0.2


def test_failing_progress_callback_does_not_break_calibration(reference):
    def broken(_):
        raise RuntimeError("ui down")

    calibrator = make_calibrator(reference, progress_cb=broken, verbose=True)
    calibrator.build_instruments(number_of_strikes=2, strike_range=(0.8, 1.25))
    calibrator.calibrate(max_nfev=200, ftol=1e-10, xtol=1e-10)
    assert calibrator.state is CalibrationState.CALIBRATED


def test_budget_exhausted_raises(reference):
    calibrator = make_calibrator(reference)
    calibrator.build_instruments(number_of_strikes=3, strike_range=(0.8, 1.25))
    with pytest.raises(CalibrationNonConvergence) as info:
        calibrator.calibrate(max_nfev=1)
    assert calibrator.state is CalibrationState.FAILED
    assert info.value.result is not None


def test_rebonato_pricing_runs(reference):
    calibrator = make_calibrator(reference, pricing="rebonato")
    calibrator.build_instruments(number_of_strikes=3, strike_range=(0.8, 1.25))
    calibrated = calibrator.calibrate(max_nfev=200)
    assert calibrator.state is CalibrationState.CALIBRATED
    assert np.isfinite(calibrated.volatility_model.a)


# ----------------------------
# Volatilités implicites
# ----------------------------

def test_black_implied_volatility_inverts_price():
    price = black_swaption(0.05, 0.055, 0.23, 1.5, 2.7)
    assert black_implied_volatility(price, 0.05, 0.055, 1.5, 2.7) == pytest.approx(0.23, rel=1e-8)


def test_normal_implied_volatility_inverts_price():
    price = bachelier_swaption(0.05, 0.045, 0.008, 2.0, 1.9, payer=False)
    assert normal_implied_volatility(price, 0.05, 0.045, 2.0, 1.9, payer=False) == pytest.approx(0.008, rel=1e-8)


def test_implied_volatility_out_of_bounds_is_nan():
    assert np.isnan(black_implied_volatility(-1.0, 0.05, 0.05, 1.0, 1.0))
    assert np.isnan(black_implied_volatility(0.01, 0.05, 0.05, 0.0, 1.0))


# ----------------------------
# Prix non finis, blend libre, strikes par swap
# ----------------------------

def test_single_non_finite_price_is_ignored(reference, monkeypatch):
    calibrator = make_calibrator(reference)
    calibrator.build_instruments(number_of_strikes=3, strike_range=(0.8, 1.25))
    original = calibrator.model_prices

    def first_price_missing(covariance_model):
        prices = original(covariance_model)
        prices[0] = np.nan
        return prices

    monkeypatch.setattr(calibrator, "model_prices", first_price_missing)
    calibrator.calibrate(max_nfev=200, ftol=1e-10, xtol=1e-10)

    assert calibrator.state is CalibrationState.CALIBRATED
    report = calibrator.calibration_report()
    assert np.isnan(report["Rel_Error"].iloc[0])
    assert np.all(np.abs(report["Rel_Error"].iloc[1:]) < 0.01)


def test_all_prices_non_finite_fails(reference, monkeypatch):
    calibrator = make_calibrator(reference)
    calibrator.build_instruments(number_of_strikes=3, strike_range=(0.8, 1.25))
    monkeypatch.setattr(calibrator, "model_prices", lambda cov: np.full(len(calibrator.products), np.nan))

    with pytest.raises(CalibrationNonConvergence):
        calibrator.calibrate(max_nfev=50)
    assert calibrator.state is CalibrationState.FAILED
    assert calibrator.history == []


def test_exploding_simulation_fails_calibration(model_factory):
    model = model_factory(dynamics=Dynamics.NORMAL, horizon=2.0, dt=0.5)
    normal_reference = LIBORPathSimulator(model, number_of_paths=2000, seed=1897).run()
    calibrator = make_calibrator(
        normal_reference,
        initial_parameters={"a": 1e200, "d": 0.05},
        bounds={"a": (0.0, 1e300)},
    )
    calibrator.build_instruments(number_of_strikes=2, strike_range=(0.8, 1.25))

    with pytest.raises(CalibrationNonConvergence):
        calibrator.calibrate(max_nfev=50)
    assert calibrator.state is CalibrationState.FAILED


def test_displacement_calibrated_as_free_parameter(reference):
    calibrator = make_calibrator(
        reference,
        fixed_parameters={"a": 0.2, "b": 0.1, "c": 0.3, "d": 0.1, "correlation_decay": 0.3},
        initial_parameters={"displacement": 0.6},
    )
    assert calibrator.free_parameters == ("displacement",)
    calibrator.build_instruments(number_of_strikes=2, layout="grid", strike_range=(0.8, 1.25))

    calibrated = calibrator.calibrate(max_nfev=200, ftol=1e-12, xtol=1e-12)

    assert calibrator.state is CalibrationState.CALIBRATED
    # Référence log-normale : β = 0
    assert calibrated.displacement < 0.3
    assert np.mean(np.abs(calibrator.calibration_report()["Rel_Error"])) < 0.01


def _par_rate(curve, dates):
    dates = np.asarray(dates, dtype=float)
    bonds = np.array([curve.discount(t) for t in dates])
    annuity = np.sum(np.diff(dates) * bonds[1:])
    return (bonds[0] - bonds[-1]) / annuity


def test_strikes_centred_on_each_swap_par_rate():
    model = create_model(
        simulation_time_step=0.5,
        libor_period_length=0.5,
        libor_rate_time_horizon=2.0,
        fixing_for_given_forwards=[0.5, 1.0, 2.0, 2.5],
        given_forwards=[0.03, 0.04, 0.05, 0.06],
        correlation_decay=0.3,
        dynamics=Dynamics.LOGNORMAL,
        measure=Measure.SPOT,
        **TRUE_PARAMETERS,
    )
    steep = LIBORPathSimulator(model, number_of_paths=200, seed=5).run()
    curve = steep.model.discount_curve

    single = make_calibrator(steep).build_instruments(number_of_strikes=4)
    assert single[0].product.strike == pytest.approx(_par_rate(curve, steep.tenor_grid.as_array()[1:]) * 0.6)

    grid = make_calibrator(steep).build_instruments(number_of_strikes=2, layout="grid", strike_range=(0.8, 1.25))
    pars = {p.product.swap_dates: _par_rate(curve, p.product.swap_dates) for p in grid}
    assert len({round(v, 10) for v in pars.values()}) > 1
    for p in grid:
        multiple = p.product.strike / pars[p.product.swap_dates]
        assert multiple == pytest.approx(0.8) or multiple == pytest.approx(1.25)
