"""Fixtures partagées : petits LMM simulés réutilisés par plusieurs modules de tests."""
import pytest

from lmm.models.lmm import Measure
from lmm.models.volatility import Dynamics
from lmm.simulation.builder import create_libor_market_model, create_model

FIXINGS = [0.5, 1.0, 2.0, 2.5]
FORWARDS = [0.05, 0.05, 0.05, 0.05]
VOL_PARAMETERS = dict(a=0.2, b=0.1, c=0.3, d=0.1)


def build_model(measure=Measure.SPOT, dynamics=Dynamics.LOGNORMAL, horizon=3.0, dt=0.25, decay=0.3, **overrides):
    params = dict(VOL_PARAMETERS)
    params.update(overrides)
    return create_model(
        simulation_time_step=dt,
        libor_period_length=0.5,
        libor_rate_time_horizon=horizon,
        fixing_for_given_forwards=FIXINGS,
        given_forwards=FORWARDS,
        correlation_decay=decay,
        dynamics=dynamics,
        measure=measure,
        **params,
    )


@pytest.fixture
def small_model():
    return build_model()


@pytest.fixture(scope="session")
def model_factory():
    return build_model


@pytest.fixture(scope="session")
def spot_simulation():
    return create_libor_market_model(
        number_of_paths=20_000,
        simulation_time_step=0.25,
        libor_period_length=0.5,
        libor_rate_time_horizon=3.0,
        fixing_for_given_forwards=FIXINGS,
        given_forwards=FORWARDS,
        correlation_decay=0.3,
        dynamics=Dynamics.LOGNORMAL,
        measure=Measure.SPOT,
        **VOL_PARAMETERS,
    )


@pytest.fixture(scope="session")
def terminal_simulation():
    return create_libor_market_model(
        number_of_paths=20_000,
        simulation_time_step=0.25,
        libor_period_length=0.5,
        libor_rate_time_horizon=3.0,
        fixing_for_given_forwards=FIXINGS,
        given_forwards=FORWARDS,
        correlation_decay=0.3,
        dynamics=Dynamics.LOGNORMAL,
        measure=Measure.TERMINAL,
        **VOL_PARAMETERS,
    )


def _normal_simulation(measure):
    return create_libor_market_model(
        number_of_paths=20_000,
        simulation_time_step=0.25,
        libor_period_length=0.5,
        libor_rate_time_horizon=3.0,
        fixing_for_given_forwards=FIXINGS,
        given_forwards=FORWARDS,
        correlation_decay=0.3,
        dynamics=Dynamics.NORMAL,
        measure=measure,
        **VOL_PARAMETERS,
    )


@pytest.fixture(scope="session")
def normal_spot_simulation():
    return _normal_simulation(Measure.SPOT)


@pytest.fixture(scope="session")
def normal_terminal_simulation():
    return _normal_simulation(Measure.TERMINAL)
