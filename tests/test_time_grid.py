import numpy as np
import pytest

from lmm.errors import ConfigurationError
from lmm.market.time_grid import TimeDiscretization, require_subset


def test_from_horizon_keeps_last_step():
    grid = TimeDiscretization.from_horizon(5.0, 0.1)
    assert grid.number_of_time_steps == 50
    assert grid.last == pytest.approx(5.0)


def test_time_index_and_index_before():
    grid = TimeDiscretization([0.0, 0.5, 1.0, 2.0])
    assert grid.time_index(1.0) == 2
    assert grid.time_index(0.75) == -1
    assert grid.index_before(0.75) == 1
    assert grid.index_before(2.0) == 3
    assert grid.time_steps() == pytest.approx([0.5, 0.5, 1.0])


@pytest.mark.parametrize("times", [[], [0.0, 0.0], [1.0, 0.5], [-0.1, 0.5], [0.0, np.nan]])
def test_invalid_grids_are_rejected(times):
    with pytest.raises(ConfigurationError):
        TimeDiscretization(times)


def test_require_index_raises_off_grid():
    grid = TimeDiscretization.from_step(0.0, 4, 0.25)
    with pytest.raises(ConfigurationError):
        grid.require_index(0.3)


def test_grid_is_immutable_and_comparable():
    a = TimeDiscretization.from_step(0.0, 4, 0.25)
    b = TimeDiscretization([0.0, 0.25, 0.5, 0.75, 1.0])
    assert a == b
    assert hash(a) == hash(b)
    with pytest.raises(ValueError):
        a.as_array()[0] = 1.0


def test_require_subset():
    simulation = TimeDiscretization.from_horizon(3.0, 0.25)
    require_subset(simulation, TimeDiscretization.from_horizon(3.0, 0.5))
    with pytest.raises(ConfigurationError):
        require_subset(TimeDiscretization.from_horizon(3.0, 0.3), TimeDiscretization.from_horizon(3.0, 0.5))
