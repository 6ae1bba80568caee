import numpy as np
import pytest

from lmm.errors import ConfigurationError, SimulationFailure, TypeMismatchError
from lmm.market.time_grid import TimeDiscretization
from lmm.models.covariance import create_covariance_model
from lmm.models.lmm import LIBORMarketModel, Measure, StateSpace
from lmm.models.volatility import Dynamics
from lmm.simulation.paths import LIBORPathSimulator, SimulationPath, SimulationState


def test_results_do_not_depend_on_worker_count(small_model):
    sequential = LIBORPathSimulator(small_model, number_of_paths=1000, seed=7, block_size=128).run()
    threaded = LIBORPathSimulator(small_model, number_of_paths=1000, seed=7, block_size=128, n_workers=3).run()
    assert np.array_equal(sequential.rates, threaded.rates)
    assert np.array_equal(sequential.numeraire, threaded.numeraire)


def test_same_seed_same_paths_other_seed_differs(small_model):
    a = LIBORPathSimulator(small_model, number_of_paths=200, seed=1).run()
    b = LIBORPathSimulator(small_model, number_of_paths=200, seed=1).run()
    c = LIBORPathSimulator(small_model, number_of_paths=200, seed=2).run()
    assert np.array_equal(a.rates, b.rates)
    assert not np.array_equal(a.rates, c.rates)


def test_state_machine_and_result_cached(small_model):
    simulator = LIBORPathSimulator(small_model, number_of_paths=100)
    assert simulator.state is SimulationState.CONFIGURED
    first = simulator.run()
    assert simulator.state is SimulationState.COMPLETE
    assert simulator.run() is first


def test_simulation_shapes_and_initial_state(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=300).run()
    assert simulation.rates.shape == (300, 13, 6)
    assert simulation.numeraire.shape == (300, 13)
    assert simulation.failed_paths == 0
    assert np.allclose(simulation.forwards_at(0.0), small_model.initial_forwards)
    assert np.allclose(simulation.get_numeraire(0.0), 1.0)
    with pytest.raises(ValueError):
        simulation.rates[0, 0, 0] = 1.0


def test_rates_freeze_after_fixing(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=200).run()
    # L_2 fixe en T_2 = 1.0
    fixed = simulation.forward(1.0, 2)
    for t in (1.25, 2.0, 3.0):
        assert np.array_equal(simulation.forward(t, 2), fixed)


def test_lognormal_rates_stay_positive(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=500).run()
    assert np.all(simulation.rates > 0.0)


def test_terminal_numeraire_starts_at_last_bond(model_factory):
    model = model_factory(measure=Measure.TERMINAL)
    simulation = LIBORPathSimulator(model, number_of_paths=50).run()
    assert np.allclose(simulation.get_numeraire(0.0), model.discount_curve.discount(3.0))
    assert np.allclose(simulation.get_numeraire(3.0), 1.0)


def test_libor_at_fixing_matches_state(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=100).run()
    assert np.allclose(simulation.libor(1.5, 1.5, 2.0), simulation.forward(1.5, 3))
    assert np.allclose(simulation.bond(2.0, 2.0), 1.0)


def test_paths_are_frozen_views(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=10).run()
    path = simulation.path(3)
    assert isinstance(path, SimulationPath)
    assert path.forward(0, 1) == pytest.approx(small_model.initial_forwards[1])
    assert len(list(simulation.paths())) == 10


def test_clone_with_modified_correlation_reuses_random_numbers(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=200, seed=11).run()
    same = simulation.clone_with_modified_correlation(0.3)
    other = simulation.clone_with_modified_correlation(2.0)
    assert np.array_equal(same.rates, simulation.rates)
    assert other.covariance_model.correlation_model.decay == 2.0
    assert simulation.covariance_model.correlation_model.decay == 0.3
    assert not np.array_equal(other.rates, simulation.rates)


@pytest.mark.parametrize("kwargs", [{"number_of_paths": 0}, {"block_size": 0}, {"n_workers": 0}, {"on_failure": "ignore"}])
def test_invalid_simulator_configuration(small_model, kwargs):
    with pytest.raises(ConfigurationError):
        LIBORPathSimulator(small_model, **kwargs)


def test_unsupported_measure_or_state_space(small_model):
    with pytest.raises(TypeMismatchError):
        LIBORMarketModel(small_model.covariance_model, measure="spot")
    with pytest.raises(TypeMismatchError):
        LIBORMarketModel(small_model.covariance_model, state_space="log")


def test_lognormal_state_space_needs_positive_forwards(small_model):
    negative = small_model.covariance_model.__class__(
        simulation_grid=small_model.simulation_grid,
        tenor_grid=small_model.tenor_grid,
        volatility_model=small_model.covariance_model.volatility_model,
        correlation_model=small_model.covariance_model.correlation_model,
        initial_forwards=np.full(6, -0.01),
        displacement=1.0,
    )
    with pytest.raises(TypeMismatchError):
        LIBORMarketModel(negative, Measure.SPOT, StateSpace.LOGNORMAL)
    # Espace d'état normal : accepté
    LIBORMarketModel(negative, Measure.SPOT, StateSpace.NORMAL)


@pytest.mark.parametrize("policy", ["raise", "drop"])
def test_non_finite_state_raises(model_factory, policy):
    model = model_factory(dynamics=Dynamics.NORMAL, a=1e200)
    simulator = LIBORPathSimulator(model, number_of_paths=20, on_failure=policy)
    with pytest.raises(SimulationFailure) as info:
        simulator.run()
    assert len(info.value.paths) == 20
    assert simulator.state is SimulationState.CONFIGURED


def test_drift_signs_by_measure(model_factory):
    spot = model_factory(measure=Measure.SPOT)
    terminal = model_factory(measure=Measure.TERMINAL)
    rates = spot.initial_forwards[None, :]
    # Spot : drift positif ; terminal : négatif sauf le dernier forward (nul)
    assert np.all(spot.drift(0, rates)[0, 1:] > 0.0)
    mu = terminal.drift(0, rates)[0]
    assert np.all(mu[1:-1] < 0.0)
    assert mu[-1] == 0.0


def test_simulation_grid_beyond_last_tenor_rejected(small_model):
    tenor = TimeDiscretization.from_horizon(3.0, 0.5)
    cov = create_covariance_model(
        TimeDiscretization.from_horizon(4.0, 0.25), tenor, small_model.initial_forwards,
        a=0.2, b=0.1, c=0.3, d=0.1, correlation_decay=0.3,
    )
    model = LIBORMarketModel(cov, Measure.TERMINAL)
    with pytest.raises(ConfigurationError):
        LIBORPathSimulator(model, number_of_paths=10)


def test_failed_block_leaves_simulator_rerunnable(small_model, monkeypatch):
    simulator = LIBORPathSimulator(small_model, number_of_paths=50)

    def broken(block):
        raise RuntimeError("bloc")

    monkeypatch.setattr(simulator, "_simulate_block", broken)
    with pytest.raises(RuntimeError):
        simulator.run()
    assert simulator.state is SimulationState.CONFIGURED

    monkeypatch.undo()
    assert simulator.run().rates.shape == (50, 13, 6)
    assert simulator.state is SimulationState.COMPLETE


def test_clone_keeps_failure_policy(small_model):
    simulation = LIBORPathSimulator(small_model, number_of_paths=50, on_failure="drop").run()
    assert simulation.on_failure == "drop"
    assert simulation.clone_with_modified_correlation(1.0).on_failure == "drop"


def test_reduced_factor_increments(model_factory):
    model = model_factory(number_of_factors=2)
    simulator = LIBORPathSimulator(model, number_of_paths=64, block_size=32)
    assert simulator.brownian_increments(0).shape == (12, 32, 2)
    assert simulator.run().rates.shape == (64, 13, 6)
